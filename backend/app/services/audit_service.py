"""
运营操作审计：批量确认、批量发货、礼物领取写入 audit_logs 表
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

ACTION_BATCH_CONFIRM = "batch_confirm_delivery"
ACTION_BATCH_SHIP = "batch_ship_delivery"
ACTION_RECEIVE_GIFT = "receive_gift"


async def log_audit(
    db: AsyncSession,
    user_id: int,
    action: str,
    resource_type: Optional[str] = None,
    resource_ids: Optional[List[int]] = None,
    detail: Optional[Dict[str, Any]] = None,
    ip: Optional[str] = None,
    request_id: Optional[str] = None,
) -> None:
    """
    业务提交后追加一条审计记录。

    业务事务已经提交，审计写入失败只记日志，不影响接口返回。
    """
    if not settings.AUDIT_LOG_ENABLED:
        return
    db.add(AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_ids=list(resource_ids) if resource_ids else None,
        detail=jsonable_encoder(detail) if detail else None,
        ip=ip,
        request_id=request_id,
    ))
    try:
        await db.commit()
    except SQLAlchemyError as e:
        logger.warning("审计日志写入失败 action=%s user=%s: %s", action, user_id, e)
        await db.rollback()
