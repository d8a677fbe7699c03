"""
订阅消息发送通道：抽象接口与内存实现

生产环境使用 wechat_service.WechatSubscribeTransport，开发与测试使用 FakeNotificationTransport。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class SendResult:
    success: bool
    error: Optional[str] = None


@dataclass
class OutboundMessage:
    """一条订阅消息"""
    recipient: str  # 接收者 openid
    template_id: str
    page: Optional[str]
    data: Dict[str, Dict[str, str]] = field(default_factory=dict)


class NotificationTransport(ABC):
    """订阅消息发送通道"""

    @abstractmethod
    async def send(self, message: OutboundMessage) -> SendResult:
        """发送消息，失败时返回 success=False 与错误信息，不抛异常"""
        ...


class FakeNotificationTransport(NotificationTransport):
    """在内存中记录发送的消息"""

    def __init__(self):
        self.sent: List[OutboundMessage] = []
        self.should_succeed = True
        self.failure_reason = "43101: user refuse to accept the msg"

    def configure(self, should_succeed: bool = True, failure_reason: Optional[str] = None):
        self.should_succeed = should_succeed
        if failure_reason:
            self.failure_reason = failure_reason

    async def send(self, message: OutboundMessage) -> SendResult:
        if not self.should_succeed:
            return SendResult(success=False, error=self.failure_reason)
        self.sent.append(message)
        return SendResult(success=True)

    def reset(self):
        self.sent.clear()
        self.should_succeed = True


_transport: Optional[NotificationTransport] = None


def get_transport() -> NotificationTransport:
    """按配置返回发送通道（单例）"""
    global _transport
    if _transport is None:
        from app.core.config import settings
        if settings.NOTIFICATION_TRANSPORT == "fake":
            _transport = FakeNotificationTransport()
        else:
            from app.services.wechat_service import WechatSubscribeTransport
            _transport = WechatSubscribeTransport()
    return _transport


def reset_transport() -> None:
    global _transport
    _transport = None
