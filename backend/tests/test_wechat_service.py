import json

import httpx
import pytest

from app.services import cache_service
from app.services.notification_transport import OutboundMessage
from app.services.wechat_service import WechatApiError, WechatSubscribeTransport


@pytest.fixture
def token_store(monkeypatch):
    """用字典代替 Redis 中的 access_token"""
    store = {}
    monkeypatch.setattr(cache_service, "get_access_token", lambda appid: store.get(appid))
    monkeypatch.setattr(cache_service, "store_access_token", lambda appid, token, ttl: store.__setitem__(appid, token))
    monkeypatch.setattr(cache_service, "invalidate_access_token", lambda appid: store.pop(appid, None))
    monkeypatch.setattr(cache_service, "acquire_refresh_lock", lambda appid: True)
    monkeypatch.setattr(cache_service, "release_refresh_lock", lambda appid: None)
    return store


def _transport(handler):
    client = httpx.AsyncClient(base_url="https://api.weixin.qq.com", transport=httpx.MockTransport(handler))
    return WechatSubscribeTransport(appid="wx-app", secret="s", client=client)


def _message():
    return OutboundMessage(
        recipient="openid-1",
        template_id="tpl",
        page="pages/order/detail/index?orderId=1",
        data={"thing2": {"value": "鲜花"}},
    )


async def test_send_fetches_and_caches_token(token_store):
    calls = []

    def handler(request: httpx.Request):
        calls.append(request.url.path)
        if request.url.path == "/cgi-bin/token":
            return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 7200})
        body = json.loads(request.content)
        assert request.url.params["access_token"] == "tok-1"
        assert body["touser"] == "openid-1"
        assert body["page"] == "pages/order/detail/index?orderId=1"
        return httpx.Response(200, json={"errcode": 0, "errmsg": "ok"})

    transport = _transport(handler)
    first = await transport.send(_message())
    second = await transport.send(_message())
    await transport.aclose()

    assert first.success and second.success
    assert calls.count("/cgi-bin/token") == 1
    assert token_store == {"wx-app": "tok-1"}


async def test_expired_token_is_dropped_from_cache(token_store):
    token_store["wx-app"] = "stale"

    def handler(request: httpx.Request):
        return httpx.Response(200, json={"errcode": 42001, "errmsg": "access_token expired"})

    transport = _transport(handler)
    result = await transport.send(_message())

    assert result.success is False
    assert result.error == "42001: access_token expired"
    assert token_store == {}


async def test_user_refusal_is_reported(token_store):
    token_store["wx-app"] = "tok"

    def handler(request: httpx.Request):
        return httpx.Response(200, json={"errcode": 43101, "errmsg": "user refuse to accept the msg"})

    result = await _transport(handler).send(_message())

    assert result.success is False
    assert result.error.startswith("43101")
    assert token_store == {"wx-app": "tok"}


async def test_token_error_raises(token_store):
    def handler(request: httpx.Request):
        return httpx.Response(200, json={"errcode": 40013, "errmsg": "invalid appid"})

    with pytest.raises(WechatApiError):
        await _transport(handler).get_access_token()


async def test_network_error_becomes_failed_result(token_store):
    def handler(request: httpx.Request):
        raise httpx.ConnectError("boom")

    result = await _transport(handler).send(_message())

    assert result.success is False
    assert "boom" in result.error
