"""运营操作审计 API"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.audit_log import AuditLog
from app.schemas.audit import AuditLogItem, AuditLogListResponse
from app.schemas.auth import CurrentUser
from app.api.deps import require_admin

router = APIRouter()


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    action: Optional[str] = Query(None, description="按操作类型筛选"),
    user_id: Optional[int] = Query(None, description="按操作人筛选"),
    resource_type: Optional[str] = Query(None, description="delivery_plan / order"),
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """查询审计日志（管理员）"""
    filters = []
    if action:
        filters.append(AuditLog.action == action)
    if user_id is not None:
        filters.append(AuditLog.user_id == user_id)
    if resource_type:
        filters.append(AuditLog.resource_type == resource_type)
    total = (await db.execute(select(func.count()).select_from(AuditLog).where(*filters))).scalar() or 0
    result = await db.execute(
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return AuditLogListResponse(
        items=[AuditLogItem.model_validate(x) for x in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
    )
