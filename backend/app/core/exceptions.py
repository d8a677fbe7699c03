"""
业务异常：携带面向用户的中文原因，由路由层转换为 HTTP 响应
"""


class BusinessError(ValueError):
    """可预期的业务拒绝，reason 直接返回给调用方"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class OrderNotFound(BusinessError):
    def __init__(self, reason: str = "订单不存在"):
        super().__init__(reason)


class GiftClaimRejected(BusinessError):
    """领取礼物的前置条件不满足"""


class BatchConfirmAborted(BusinessError):
    """批量确认中订阅商品校验失败，整批回滚"""


class InvalidDeliveryConfig(BusinessError):
    """发货计划配置不合法"""
