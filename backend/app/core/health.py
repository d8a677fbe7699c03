"""
健康检查：数据库、Redis、通知发件箱积压
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Tuple

from sqlalchemy import func, select, text

from app.core.config import settings

logger = logging.getLogger(__name__)


async def check_db() -> Tuple[bool, str]:
    from app.core.database import engine
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True, "ok"
    except Exception as e:
        logger.warning("健康检查 DB 失败: %s", e)
        return False, str(e)


def check_redis() -> Tuple[bool, str]:
    """access_token 缓存与 Celery broker 共用同一个 Redis"""
    if not settings.REDIS_URL.strip():
        return False, "REDIS_URL 未配置"
    from app.services import cache_service
    try:
        if not cache_service.ping():
            return False, "Redis 客户端未初始化"
        return True, "ok"
    except Exception as e:
        logger.warning("健康检查 Redis 失败: %s", e)
        return False, str(e)


async def check_outbox(stale_minutes: int = 10) -> Tuple[bool, str]:
    """超过 stale_minutes 仍未发送的通知说明 worker 或补偿任务没有在跑"""
    from app.core.database import AsyncSessionLocal
    from app.models.notification import NotificationOutbox

    # created_at 由数据库按 UTC 写入
    threshold = datetime.now(timezone.utc) - timedelta(minutes=stale_minutes)
    try:
        async with AsyncSessionLocal() as db:
            stale = (await db.execute(
                select(func.count())
                .select_from(NotificationOutbox)
                .where(NotificationOutbox.status == "pending", NotificationOutbox.created_at < threshold)
            )).scalar() or 0
    except Exception as e:
        logger.warning("健康检查通知发件箱失败: %s", e)
        return False, str(e)
    if stale:
        return False, f"{stale} 条通知超过 {stale_minutes} 分钟未发送"
    return True, "ok"
