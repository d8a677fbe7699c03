"""
支付回调Schema
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PaymentSignal(BaseModel):
    """支付结果通知（网关验签、解密在上游完成）"""
    order_no: str = Field(..., description="商户订单号")
    success: bool = Field(..., description="支付是否成功")
    transaction_id: Optional[str] = Field(None, description="支付渠道交易号")
    trade_type: Optional[str] = None
    payer_openid: Optional[str] = Field(None, description="付款人标识")
    success_time: Optional[datetime] = Field(None, description="渠道侧支付成功时间")
    raw: Optional[Dict[str, Any]] = Field(None, description="渠道原始回调数据")


class PaymentNotifyResponse(BaseModel):
    code: str  # SUCCESS / FAIL
    message: str = ""
