"""
支付结果通知API
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.schemas.payment import PaymentNotifyResponse, PaymentSignal
from app.api.deps import submit_notifications
from app.services.fulfillment_service import OrderFulfillmentService

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_notify_token(x_notify_token: Optional[str] = Header(None)) -> None:
    """校验支付网关转发方的共享令牌；未配置时不校验"""
    expected = settings.PAYMENT_NOTIFY_TOKEN
    if expected and not hmac.compare_digest(x_notify_token or "", expected):
        raise HTTPException(status_code=401, detail="通知令牌无效")


@router.post("/notify", response_model=PaymentNotifyResponse, dependencies=[Depends(verify_notify_token)])
async def payment_notify(
    signal: PaymentSignal,
    db: AsyncSession = Depends(get_db),
):
    """支付结果通知（验签、解密后的结果），重复通知直接返回成功"""
    logger.info("收到支付通知: order_no=%s success=%s", signal.order_no, signal.success)
    result = await OrderFulfillmentService(db).confirm_payment(signal)
    await submit_notifications(db, result.outbox_ids)
    if result.skipped_reason == "already_processed":
        return PaymentNotifyResponse(code="SUCCESS", message="订单已处理")
    return PaymentNotifyResponse(code="SUCCESS", message="")
