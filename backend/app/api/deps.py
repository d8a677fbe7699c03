"""
通用依赖：当前用户、管理员校验、客户端 IP、通知提交
"""
import asyncio
import logging
from typing import Any, Callable, List, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.schemas.auth import CurrentUser
from app.services.notification_service import NotificationOutboxService
from app.services.notification_transport import get_transport

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _decode_token(token: str) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="无法验证凭据",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        sub = payload.get("sub")
        if sub is None:
            raise credentials_exception
        return CurrentUser(id=int(sub), role=payload.get("role") or "user")
    except (JWTError, ValueError):
        raise credentials_exception


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    """从 Bearer 令牌解析当前用户（令牌由登录服务签发）"""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="未登录",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _decode_token(credentials.credentials)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[CurrentUser]:
    if credentials is None:
        return None
    return _decode_token(credentials.credentials)


async def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """运营接口：仅管理员可调用"""
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="需要管理员权限")
    return current_user


def get_client_ip(request: Request) -> Optional[str]:
    """优先取反向代理透传的真实 IP"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


async def _submit_celery_task(submit_fn: Callable[[], Any]):
    """在线程池中执行 submit_fn（即 task.delay()），超时则抛 asyncio.TimeoutError。"""
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(
        loop.run_in_executor(None, submit_fn),
        timeout=settings.NOTIFICATION_SUBMIT_TIMEOUT,
    )


async def submit_notifications(db: AsyncSession, outbox_ids: List[int]) -> None:
    """
    业务事务提交后发送通知。

    默认提交 Celery 任务；提交超时或 broker 不可用时降级为在当前请求内发送，
    单条失败只记日志，仍为 pending 的由补偿任务处理。
    """
    if not outbox_ids:
        return
    if settings.NOTIFICATION_ASYNC:
        from app.tasks.notification_tasks import dispatch_notification_task
        try:
            for outbox_id in outbox_ids:
                await _submit_celery_task(lambda oid=outbox_id: dispatch_notification_task.delay(oid))
            return
        except asyncio.TimeoutError:
            logger.warning("提交通知任务超时（%ss），降级为同步发送", settings.NOTIFICATION_SUBMIT_TIMEOUT)
        except Exception as e:
            logger.warning("Celery/Redis 不可用，降级为同步发送通知: %s", e)

    outbox = NotificationOutboxService(db)
    transport = get_transport()
    for outbox_id in outbox_ids:
        try:
            await outbox.process(outbox_id, transport)
        except Exception as e:
            logger.exception("发送通知 %s 失败，等待补偿任务处理: %s", outbox_id, e)
            await db.rollback()
