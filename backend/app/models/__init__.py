# Database models
from app.models.user import User, UserAddress, UserRelation
from app.models.product import Product, SubscriptionProduct
from app.models.order import Order, OrderItem
from app.models.solar_term import SolarTerm
from app.models.delivery_plan import DeliveryPlan, DeliveryNoSequence
from app.models.notification import SubscriptionPermission, SubscriptionMessageLog, NotificationOutbox
from app.models.audit_log import AuditLog

__all__ = [
    "User",
    "UserAddress",
    "UserRelation",
    "Product",
    "SubscriptionProduct",
    "Order",
    "OrderItem",
    "SolarTerm",
    "DeliveryPlan",
    "DeliveryNoSequence",
    "SubscriptionPermission",
    "SubscriptionMessageLog",
    "NotificationOutbox",
    "AuditLog",
]
