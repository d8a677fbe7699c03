"""
订阅消息授权API
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.auth import CurrentUser
from app.schemas.notification import SubscriptionPermissionRequest, SubscriptionPermissionResponse
from app.api.deps import get_current_user
from app.services.notification_service import SubscriptionPermissionService

router = APIRouter()


@router.post("/subscription-permission", response_model=SubscriptionPermissionResponse)
async def record_subscription_permission(
    body: SubscriptionPermissionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """记录小程序端订阅消息授权结果：授权一次可发送一条"""
    counts = await SubscriptionPermissionService(db).record(
        current_user.id, body.granted_templates, body.denied_templates
    )
    return SubscriptionPermissionResponse(**counts)
