"""
运营审计日志：批量确认、批量发货、礼物领取
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from app.core.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # 操作人：运营账号或领取礼物的用户
    action = Column(String(64), nullable=False, index=True)
    resource_type = Column(String(32), nullable=True, index=True)  # delivery_plan, order
    resource_ids = Column(JSON, nullable=True)  # 请求中的全部 ID，批量操作可能上百个
    detail = Column(JSON, nullable=True)  # 操作结果摘要：确认数、发货编号、完成订单等
    ip = Column(String(64), nullable=True)
    request_id = Column(String(64), nullable=True, index=True)  # 与 X-Request-ID 一致
    created_at = Column(DateTime(timezone=True), server_default=func.now())
