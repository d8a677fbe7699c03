"""
订单履约服务：处理支付成功信号
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.constants import DeliveryType, GiftStatus, OrderStatus, PayType
from app.core.exceptions import OrderNotFound
from app.models.order import Order, OrderItem
from app.schemas.order import AddressInfo
from app.schemas.payment import PaymentSignal
from app.services.delivery_plan_generator import (
    DeliveryPlanGenerator,
    SolarTermCalendar,
    describe_policy,
    planned_deliveries,
)
from app.services.delivery_plan_service import build_delivery_plans, policy_from_item
from app.services.notification_service import NotificationOutboxService, scene_jump_page

logger = logging.getLogger(__name__)


@dataclass
class FulfillmentResult:
    order_id: Optional[int] = None
    processed: bool = False
    skipped_reason: str = ""
    plan_count: int = 0
    outbox_ids: List[int] = field(default_factory=list)


class OrderFulfillmentService:
    """支付成功后的订单履约"""

    def __init__(self, db: AsyncSession, generator: Optional[DeliveryPlanGenerator] = None):
        self.db = db
        self.generator = generator or DeliveryPlanGenerator(calendar=SolarTermCalendar(db))

    async def confirm_payment(self, signal: PaymentSignal, now: Optional[datetime] = None) -> FulfillmentResult:
        """
        处理支付结果通知。

        只有待支付订单会被处理，重复通知直接返回；
        自购订单立即生成发货计划，礼品订单等待收礼人领取。
        """
        now = now or datetime.now()
        try:
            result = await self.db.execute(
                select(Order)
                .options(selectinload(Order.items).selectinload(OrderItem.product))
                .where(Order.order_no == signal.order_no)
                .with_for_update()
            )
            order = result.scalar_one_or_none()
            if not order:
                raise OrderNotFound()
            order_id, order_no, status = order.id, order.order_no, order.status

            if status != OrderStatus.CREATED.value:
                await self.db.rollback()
                logger.info("订单 %s 已处理（状态 %s），忽略重复的支付通知", order_no, status)
                return FulfillmentResult(order_id=order_id, skipped_reason="already_processed")

            if not signal.success:
                await self.db.rollback()
                logger.warning("订单 %s 支付未成功，交易号: %s", order_no, signal.transaction_id)
                return FulfillmentResult(order_id=order_id, skipped_reason="payment_failed")

            success_time = signal.success_time
            if success_time is not None and success_time.tzinfo is not None:
                # 列为 naive DateTime，统一存本地时间
                success_time = success_time.astimezone().replace(tzinfo=None)

            gate = await self.db.execute(
                update(Order)
                .where(Order.id == order.id, Order.status == OrderStatus.CREATED.value)
                .values(
                    status=OrderStatus.PAID.value,
                    paid_at=now,
                    pay_type=PayType.WECHAT.value,
                    transaction_id=signal.transaction_id,
                    trade_type=signal.trade_type,
                    payer_openid=signal.payer_openid,
                    provider_success_time=success_time,
                    payment_info=signal.model_dump(mode="json"),
                )
                .returning(Order.id)
            )
            if gate.scalar_one_or_none() is None:
                await self.db.rollback()
                return FulfillmentResult(order_id=order_id, skipped_reason="already_processed")

            for item in order.items:
                self._copy_subscription_policy(item, order.is_gift)

            plan_count = 0
            if not order.is_gift:
                plan_count = await self._materialize_self_purchase(order, now)
            else:
                logger.info("礼品订单 %s 等待收礼人领取后生成发货计划", order.order_no)

            entry = await NotificationOutboxService(self.db).enqueue(
                scene_code="PAYMENT_SUCCESS",
                user_id=order.user_id,
                business_id=order.order_no,
                business_data={
                    "productName": "、".join(i.product.product_name for i in order.items if i.product) or "商品",
                    "orderNo": order.order_no,
                    "orderStatus": "已支付",
                    "tips": "您的订单已支付成功，我们将尽快为您处理",
                    "time": now,
                },
                jump_page=scene_jump_page("PAYMENT_SUCCESS", orderId=order.id),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("订单 %s 支付成功，生成发货计划 %s 个", order.order_no, plan_count)
        return FulfillmentResult(order_id=order.id, processed=True, plan_count=plan_count, outbox_ids=[entry.id])

    def _copy_subscription_policy(self, item: OrderItem, is_gift: bool) -> None:
        """把商品当前的发货策略固化到订单项"""
        product = item.product
        if product and product.is_subscription:
            item.is_subscription = True
            item.delivery_type = product.delivery_type or DeliveryType.ONCE.value
            item.max_deliveries = product.max_deliveries or 1
            item.delivery_interval = product.delivery_interval or 0
            if item.delivery_type == DeliveryType.INTERVAL.value and not item.delivery_interval:
                item.delivery_interval = settings.DEFAULT_DELIVERY_INTERVAL_DAYS
        else:
            item.is_subscription = False
            item.delivery_type = DeliveryType.ONCE.value
            item.max_deliveries = 1
            item.delivery_interval = 0
        item.total_deliveries = planned_deliveries(policy_from_item(item), item.quantity or 1)
        item.delivered_count = item.delivered_count or 0
        item.gift_status = GiftStatus.PENDING.value if is_gift else GiftStatus.RECEIVED.value

    async def _materialize_self_purchase(self, order: Order, now: datetime) -> int:
        if not order.address_snapshot:
            logger.error("订单 %s 没有收货地址快照，跳过发货计划生成", order.order_no)
            return 0
        try:
            address = AddressInfo.model_validate(order.address_snapshot)
        except ValidationError as e:
            logger.error("订单 %s 收货地址快照无效，跳过发货计划生成: %s", order.order_no, e)
            return 0

        count = 0
        for item in order.items:
            item.receiver_id = order.user_id
            item.received_at = now
            policy = policy_from_item(item)
            try:
                windows = await self.generator.generate(policy, item.quantity, base_date=now)
                logger.info("订单项 %s：%s", item.id, describe_policy(policy, item.quantity))
            except Exception as e:
                logger.error("订单项 %s 生成发货计划失败，使用备用计划: %s", item.id, e)
                windows = self.generator.fallback(item.quantity, base_date=now)
            # 应发次数以实际生成的计划数为准
            item.total_deliveries = len(windows)
            plans = build_delivery_plans(item, windows, order.user_id, order.user_id, address)
            self.db.add_all(plans)
            count += len(plans)
        await self.db.flush()
        return count
