"""
用户模型：小程序用户、收货地址、用户关系
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class User(Base):
    """用户表"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    openid = Column(String(64), unique=True, nullable=True, index=True)  # 小程序 openid，订阅消息接收者
    nickname = Column(String(64), nullable=True)
    avatar = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    role = Column(String(20), default="user")  # user, admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 关系
    orders = relationship("Order", back_populates="user", foreign_keys="Order.user_id")
    addresses = relationship("UserAddress", back_populates="user")
    subscription_permissions = relationship("SubscriptionPermission", back_populates="user")


class UserAddress(Base):
    """收货地址表（字段与微信 chooseAddress 返回值一致）"""
    __tablename__ = "user_addresses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    user_name = Column(String(64), nullable=False)
    tel_number = Column(String(20), nullable=False)
    national_code = Column(String(16), nullable=True)
    national_code_full = Column(String(32), nullable=True)
    postal_code = Column(String(16), nullable=True)
    province_name = Column(String(32), nullable=True)
    city_name = Column(String(32), nullable=True)
    county_name = Column(String(32), nullable=True)
    street_name = Column(String(64), nullable=True)
    detail_info = Column(String(255), nullable=False)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="addresses")


class UserRelation(Base):
    """用户关系表（送礼人 ↔ 收礼人，双向各一行）"""
    __tablename__ = "user_relations"
    __table_args__ = (
        UniqueConstraint("user_id", "friend_user_id", name="uq_user_relation_pair"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    friend_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    relation_type = Column(Integer, default=1)  # 1=好友，其余由前端关系选项定义
    remark = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
