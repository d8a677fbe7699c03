"""
订单 / 订单项 / 发货计划的状态常量
"""
from enum import Enum, IntEnum


class OrderStatus(IntEnum):
    """订单状态"""
    CREATED = 0  # 待支付
    PAID = 1  # 已支付
    GIFTED = 2  # 已赠送
    COMPLETED = 3  # 已完成
    CANCELLED = 4  # 已取消


class GiftType(IntEnum):
    """赠送类型"""
    SINGLE = 1  # 单人专属
    MULTI = 2  # 多人领取


class GiftStatus(IntEnum):
    """订单项领取状态"""
    PENDING = 0  # 待领取
    RECEIVED = 1  # 已领取


class DeliveryPlanStatus(IntEnum):
    """发货计划状态"""
    PENDING = 0  # 待确认
    CONFIRMED = 1  # 已确认
    SHIPPED = 2  # 已发货
    COMPLETED = 3  # 已完成
    CANCELLED = 4  # 已取消


class DeliveryType(str, Enum):
    """交付类型"""
    ONCE = "once"  # 一次性发货
    INTERVAL = "interval"  # 固定间隔发货
    SOLAR_TERM = "solar_term"  # 节气发货


class PayType(IntEnum):
    WECHAT = 1


class NotificationSendStatus(str, Enum):
    """订阅消息发送结果"""
    SUCCESS = "success"
    FAILED = "failed"
    NO_PERMISSION = "no_permission"


class OutboxStatus(str, Enum):
    """通知发件箱状态"""
    PENDING = "pending"
    DISPATCHED = "dispatched"
