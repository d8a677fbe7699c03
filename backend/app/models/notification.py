"""
订阅消息模型：用户授权次数、发送日志、通知发件箱
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class SubscriptionPermission(Base):
    """订阅消息授权表：每个用户每个模板一行，available_count 为剩余可发送次数"""
    __tablename__ = "subscription_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "template_id", name="uq_subscription_permission_user_template"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    template_id = Column(String(64), nullable=False)
    available_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="subscription_permissions")


class SubscriptionMessageLog(Base):
    """订阅消息发送日志"""
    __tablename__ = "subscription_message_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    template_id = Column(String(64), nullable=True)
    message_type = Column(String(32), nullable=False, index=True)  # 场景编码，如 PAYMENT_SUCCESS
    content = Column(JSON, nullable=True)  # {"templateCode", "templateVariables", "businessId"}
    status = Column(String(20), nullable=False)  # success, failed, no_permission
    error_msg = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class NotificationOutbox(Base):
    """通知发件箱：与业务状态在同一事务写入，提交后异步发送"""
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True, index=True)
    scene_code = Column(String(32), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    business_id = Column(String(64), nullable=True)
    business_data = Column(JSON, nullable=True)
    jump_page = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending, dispatched
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    dispatched_at = Column(DateTime, nullable=True)
