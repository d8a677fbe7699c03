"""
API v1 路由
"""
from fastapi import APIRouter
from app.api.v1 import payment, orders, delivery_plans, notifications, audit

api_router = APIRouter()

# 注册子路由
api_router.include_router(payment.router, prefix="/payment", tags=["支付"])
api_router.include_router(orders.router, prefix="/orders", tags=["礼物领取"])
api_router.include_router(delivery_plans.router, prefix="/admin/delivery-plans", tags=["发货计划"])
api_router.include_router(notifications.router, prefix="/user", tags=["订阅消息"])
api_router.include_router(audit.router, prefix="/admin/audit-logs", tags=["审计"])
