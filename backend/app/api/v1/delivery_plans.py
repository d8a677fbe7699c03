"""
发货计划运营API：批量确认、批量发货
"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.auth import CurrentUser
from app.schemas.delivery_plan import (
    BatchConfirmRequest,
    BatchConfirmResponse,
    BatchShipRequest,
    BatchShipResponse,
)
from app.api.deps import get_client_ip, get_request_id, require_admin, submit_notifications
from app.services.audit_service import ACTION_BATCH_CONFIRM, ACTION_BATCH_SHIP, log_audit
from app.services.delivery_plan_service import DeliveryPlanService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/batch-confirm", response_model=BatchConfirmResponse)
async def batch_confirm(
    body: BatchConfirmRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """批量确认发货计划：生成发货编号，可选关联订阅商品"""
    result = await DeliveryPlanService(db).batch_confirm(
        body.delivery_plan_ids, body.subscription_product_mappings
    )
    await submit_notifications(db, result.outbox_ids)
    await log_audit(
        db,
        user_id=current_user.id,
        action=ACTION_BATCH_CONFIRM,
        resource_type="delivery_plan",
        resource_ids=body.delivery_plan_ids,
        detail={
            "confirmed_count": result.confirmed_count,
            "delivery_numbers": result.delivery_numbers,
            "subscription_mapping_count": result.subscription_mapping_count,
        },
        ip=get_client_ip(request),
        request_id=get_request_id(request),
    )
    message = f"成功确认 {result.confirmed_count} 个发货计划"
    if result.subscription_mapping_count:
        message += f"，关联 {result.subscription_mapping_count} 个订阅商品"
    return BatchConfirmResponse(
        confirmed_count=result.confirmed_count,
        delivery_numbers=result.delivery_numbers,
        subscription_mapping_count=result.subscription_mapping_count,
        message=message,
    )


@router.post("/batch-ship", response_model=BatchShipResponse)
async def batch_ship(
    body: BatchShipRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """批量发货：登记物流信息，订单全部发完时置为已完成"""
    result = await DeliveryPlanService(db).batch_ship(
        body.delivery_plan_ids, body.express_company, body.express_number, body.remark
    )
    await submit_notifications(db, result.outbox_ids)
    await log_audit(
        db,
        user_id=current_user.id,
        action=ACTION_BATCH_SHIP,
        resource_type="delivery_plan",
        resource_ids=body.delivery_plan_ids,
        detail={
            "shipped_count": result.shipped_count,
            "express_company": body.express_company,
            "express_number": body.express_number,
            "completed_order_ids": result.completed_order_ids,
        },
        ip=get_client_ip(request),
        request_id=get_request_id(request),
    )
    return BatchShipResponse(
        shipped_count=result.shipped_count,
        updated_order_items=result.updated_order_items,
        completed_orders=result.completed_orders,
        message=f"成功发货 {result.shipped_count} 个计划，完成订单 {result.completed_orders} 个",
    )
