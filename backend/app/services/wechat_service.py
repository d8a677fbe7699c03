"""
微信服务：access_token 获取（Redis 缓存）与订阅消息发送
"""
import asyncio
import logging
from typing import Optional

import httpx

from app.core.config import settings
from app.services import cache_service
from app.services.notification_transport import NotificationTransport, OutboundMessage, SendResult

logger = logging.getLogger(__name__)


class WechatApiError(RuntimeError):
    pass


class WechatSubscribeTransport(NotificationTransport):
    """通过微信小程序订阅消息接口发送"""

    def __init__(
        self,
        appid: Optional[str] = None,
        secret: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.appid = appid or settings.WECHAT_APPID
        self.secret = secret or settings.WECHAT_SECRET
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=settings.WECHAT_API_BASE,
                timeout=settings.WECHAT_HTTP_TIMEOUT,
            )
        return self._client

    async def get_access_token(self, force_refresh: bool = False) -> str:
        """获取 access_token，优先读缓存；刷新锁被占用时等待其他 worker 写回缓存"""
        if not force_refresh:
            cached = await asyncio.to_thread(cache_service.get_access_token, self.appid)
            if cached:
                return cached

        locked = await asyncio.to_thread(cache_service.acquire_refresh_lock, self.appid)
        if not locked:
            for _ in range(settings.WECHAT_TOKEN_WAIT_ROUNDS):
                await asyncio.sleep(0.2)
                cached = await asyncio.to_thread(cache_service.get_access_token, self.appid)
                if cached:
                    return cached
            logger.warning("等待 access_token 刷新超时，直接请求微信接口 appid=%s", self.appid)

        try:
            token = await self._fetch_access_token()
            await asyncio.to_thread(
                cache_service.store_access_token, self.appid, token, settings.WECHAT_ACCESS_TOKEN_TTL
            )
        finally:
            if locked:
                await asyncio.to_thread(cache_service.release_refresh_lock, self.appid)
        return token

    async def _fetch_access_token(self) -> str:
        response = await self._http().get(
            "/cgi-bin/token",
            params={"grant_type": "client_credential", "appid": self.appid, "secret": self.secret},
        )
        response.raise_for_status()
        data = response.json()
        if data.get("errcode"):
            raise WechatApiError(f"获取access_token失败: {data.get('errmsg')}")
        token = data.get("access_token")
        if not token:
            raise WechatApiError("获取access_token失败")
        return token

    async def send(self, message: OutboundMessage) -> SendResult:
        try:
            token = await self.get_access_token()
            payload = {
                "touser": message.recipient,
                "template_id": message.template_id,
                "page": message.page or "",
                "miniprogram_state": settings.WECHAT_MINIPROGRAM_STATE,
                "lang": "zh_CN",
                "data": message.data,
            }
            response = await self._http().post(
                "/cgi-bin/message/subscribe/send",
                params={"access_token": token},
                json=payload,
            )
            response.raise_for_status()
            result = response.json()
        except Exception as e:
            logger.error("发送订阅消息异常: %s", e)
            return SendResult(success=False, error=str(e))

        if result.get("errcode") == 0:
            logger.info("订阅消息发送成功 openid=%s template_id=%s", message.recipient, message.template_id)
            return SendResult(success=True)

        # access_token 失效时清掉缓存，下一条消息重新获取
        if result.get("errcode") in (40001, 42001):
            await asyncio.to_thread(cache_service.invalidate_access_token, self.appid)
        logger.warning("订阅消息发送失败: %s", result)
        return SendResult(success=False, error=f"{result.get('errcode')}: {result.get('errmsg')}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
