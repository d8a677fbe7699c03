"""
礼物领取API
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.auth import CurrentUser
from app.schemas.order import (
    DeliveryPlanBrief,
    ReceiveGiftRequest,
    ReceiveGiftResponse,
    ReceivedItem,
    ReceiveStatusResponse,
)
from app.api.deps import get_client_ip, get_current_user, get_optional_user, get_request_id, submit_notifications
from app.services.audit_service import ACTION_RECEIVE_GIFT, log_audit
from app.services.gift_receipt_service import GiftReceiptService

router = APIRouter()


@router.get("/{order_id}/receive-status", response_model=ReceiveStatusResponse)
async def get_receive_status(
    order_id: int,
    current_user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """查询礼物是否可领取（未登录也可查看）"""
    return await GiftReceiptService(db).get_receive_status(
        order_id, current_user.id if current_user else None
    )


@router.post("/{order_id}/receive", response_model=ReceiveGiftResponse)
async def receive_gift(
    order_id: int,
    body: ReceiveGiftRequest,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """领取礼物，不满足条件时返回 400 与具体原因"""
    result = await GiftReceiptService(db).receive(
        order_id,
        current_user.id,
        body.address,
        order_item_id=body.order_item_id,
        profile=body.user_info,
    )
    response = ReceiveGiftResponse(
        order_id=result.order.id,
        order_no=result.order.order_no,
        sender_id=result.order.user_id,
        received_items=[ReceivedItem.model_validate(i) for i in result.received_items],
        delivery_plans=[DeliveryPlanBrief.model_validate(p) for p in result.delivery_plans],
    )
    # 发送失败会回滚会话，审计内容取自已序列化的响应
    audit_detail = {
        "order_item_ids": [i.id for i in response.received_items],
        "plan_count": len(response.delivery_plans),
    }
    await submit_notifications(db, result.outbox_ids)
    await log_audit(
        db,
        user_id=current_user.id,
        action=ACTION_RECEIVE_GIFT,
        resource_type="order",
        resource_ids=[order_id],
        detail=audit_detail,
        ip=get_client_ip(request),
        request_id=get_request_id(request),
    )
    return response
