"""
订阅消息异步任务：业务事务提交后发送发件箱中的通知
注意：必须使用任务内创建的 engine/session（create_async_engine_and_session_for_celery），
不能使用全局 AsyncSessionLocal，否则会报 "Future attached to a different loop"。
"""
import asyncio
import logging
from typing import Any, Dict

from app.celery_app import celery_app
from app.core.config import settings
from app.core.database import create_async_engine_and_session_for_celery
from app.services.notification_service import NotificationOutboxService
from app.services.notification_transport import get_transport
from app.services.wechat_service import WechatSubscribeTransport

logger = logging.getLogger(__name__)


def _run_async(coro):
    """在同步上下文中运行异步协程（Celery 任务内使用）"""
    try:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _with_celery_db(async_fn):
    """在任务内创建当前 loop 的 engine/session 与发送通道，执行 async_fn(db, transport)，用完后释放。"""
    async def _run():
        engine, session_factory = create_async_engine_and_session_for_celery()
        # httpx 客户端绑定 event loop，微信通道每个任务新建
        transport = get_transport() if settings.NOTIFICATION_TRANSPORT == "fake" else WechatSubscribeTransport()
        try:
            async with session_factory() as db:
                return await async_fn(db, transport)
        finally:
            if isinstance(transport, WechatSubscribeTransport):
                await transport.aclose()
            await engine.dispose()
    return _run


@celery_app.task(bind=True, name="notifications.dispatch")
def dispatch_notification_task(self, outbox_id: int) -> Dict[str, Any]:
    """发送一条发件箱通知，已发送的直接跳过"""
    async def _run(db, transport):
        sent = await NotificationOutboxService(db).process(outbox_id, transport)
        return {"outbox_id": outbox_id, "processed": sent}

    try:
        return _run_async(_with_celery_db(_run)())
    except Exception as e:
        logger.exception("dispatch_notification_task failed outbox_id=%s: %s", outbox_id, e)
        raise


@celery_app.task(bind=True, name="notifications.drain")
def drain_notifications_task(self) -> Dict[str, Any]:
    """补偿：发送所有仍为 pending 的通知（任务提交失败或 worker 中断时遗留）"""
    async def _run(db, transport):
        processed = await NotificationOutboxService(db).process_pending(transport)
        return {"processed": processed}

    try:
        result = _run_async(_with_celery_db(_run)())
        if result["processed"]:
            logger.info("补发待发送通知 %s 条", result["processed"])
        return result
    except Exception as e:
        logger.exception("drain_notifications_task failed: %s", e)
        raise
