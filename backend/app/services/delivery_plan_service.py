"""
发货计划服务：生成计划落库、运营批量确认、批量发货
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.constants import DeliveryPlanStatus, DeliveryType, OrderStatus
from app.core.exceptions import BatchConfirmAborted
from app.models.delivery_plan import DeliveryNoSequence, DeliveryPlan
from app.models.order import Order, OrderItem
from app.models.product import SubscriptionProduct
from app.schemas.order import AddressInfo
from app.services.delivery_plan_generator import DeliveryPolicy, DeliveryWindow
from app.services.notification_service import NotificationOutboxService, scene_jump_page

logger = logging.getLogger(__name__)


def policy_from_item(item: OrderItem) -> DeliveryPolicy:
    """订单项上已复制的发货策略"""
    return DeliveryPolicy(
        delivery_type=DeliveryType(item.delivery_type or DeliveryType.ONCE.value),
        max_deliveries=item.max_deliveries or 1,
        delivery_interval=item.delivery_interval or None,
    )


def build_delivery_plans(
    item: OrderItem,
    windows: Iterable[DeliveryWindow],
    user_id: int,
    receiver_id: int,
    address: AddressInfo,
) -> List[DeliveryPlan]:
    """把生成的窗口转成待确认的发货计划，收货信息按当前地址做快照"""
    snapshot = address.to_receiver_snapshot()
    return [
        DeliveryPlan(
            order_item_id=item.id,
            user_id=user_id,
            receiver_id=receiver_id,
            delivery_start_date=w.start,
            delivery_end_date=w.end,
            delivery_sequence=w.sequence,
            solar_term_id=w.solar_term_id,
            status=DeliveryPlanStatus.PENDING.value,
            remark=w.note,
            **snapshot,
        )
        for w in windows
    ]


async def allocate_delivery_numbers(db: AsyncSession, count: int, now: datetime) -> List[str]:
    """
    分配当天连续的发货编号，如 2025010100001。

    每天一行 delivery_no_sequences，UPDATE ... RETURNING 原子推进；
    当天第一次分配时按已有同前缀编号数初始化。
    """
    day = now.strftime("%Y%m%d")
    advance = (
        update(DeliveryNoSequence)
        .where(DeliveryNoSequence.day == day)
        .values(last_value=DeliveryNoSequence.last_value + count)
        .returning(DeliveryNoSequence.last_value)
    )
    last = (await db.execute(advance)).scalar_one_or_none()
    if last is None:
        existing = (await db.execute(
            select(func.count()).select_from(DeliveryPlan).where(DeliveryPlan.delivery_no.startswith(day))
        )).scalar() or 0
        try:
            async with db.begin_nested():
                db.add(DeliveryNoSequence(day=day, last_value=existing + count))
            last = existing + count
        except IntegrityError:
            # 并发事务已初始化当天序号
            last = (await db.execute(advance)).scalar_one()

    width = settings.DELIVERY_NO_PADDING
    return [f"{day}{n:0{width}d}" for n in range(last - count + 1, last + 1)]


@dataclass
class BatchConfirmResult:
    confirmed_count: int = 0
    delivery_numbers: List[str] = field(default_factory=list)
    subscription_mapping_count: int = 0
    outbox_ids: List[int] = field(default_factory=list)


@dataclass
class BatchShipResult:
    shipped_count: int = 0
    updated_order_items: int = 0
    completed_orders: int = 0
    completed_order_ids: List[int] = field(default_factory=list)
    outbox_ids: List[int] = field(default_factory=list)


class DeliveryPlanService:
    """运营批量操作"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _lock_plans(self, plan_ids: List[int], *criteria) -> List[DeliveryPlan]:
        result = await self.db.execute(
            select(DeliveryPlan)
            .options(
                selectinload(DeliveryPlan.order_item).selectinload(OrderItem.order),
                selectinload(DeliveryPlan.order_item).selectinload(OrderItem.product),
            )
            .where(DeliveryPlan.id.in_(plan_ids), *criteria)
            .order_by(DeliveryPlan.id.asc())
            .with_for_update()
        )
        return list(result.scalars().all())

    async def batch_confirm(
        self,
        plan_ids: List[int],
        subscription_product_mappings: Optional[Dict[int, int]] = None,
        now: Optional[datetime] = None,
    ) -> BatchConfirmResult:
        """
        批量确认：为待确认且未编号的计划生成发货编号并置为已确认。

        不满足条件的计划直接跳过；订阅商品映射校验失败则整批回滚。
        """
        now = now or datetime.now()
        mappings = subscription_product_mappings or {}
        try:
            plans = await self._lock_plans(
                plan_ids,
                DeliveryPlan.status == DeliveryPlanStatus.PENDING.value,
                DeliveryPlan.delivery_no.is_(None),
            )
            if not plans:
                await self.db.rollback()
                logger.info("没有找到待确认的发货计划: %s", plan_ids)
                return BatchConfirmResult()

            numbers = await allocate_delivery_numbers(self.db, len(plans), now)
            mapped = 0
            for plan, delivery_no in zip(plans, numbers):
                plan.delivery_no = delivery_no
                plan.status = DeliveryPlanStatus.CONFIRMED.value
                subscription_product_id = mappings.get(plan.id)
                if subscription_product_id:
                    await self._reserve_subscription_product(subscription_product_id)
                    plan.subscription_product_id = subscription_product_id
                    mapped += 1

            outbox = NotificationOutboxService(self.db)
            outbox_ids = []
            for plan in plans:
                item = plan.order_item
                entry = await outbox.enqueue(
                    scene_code="DELIVERY_NOTICE",
                    user_id=plan.receiver_id or item.order.user_id,
                    business_id=item.order.order_no,
                    business_data={
                        "productName": item.product.product_name if item.product else "商品",
                        "orderNo": item.order.order_no,
                        "orderStatus": "商品备货中",
                        "tips": "您的商品正在备货，预计3天左右送达！",
                        "time": now,
                    },
                    jump_page=scene_jump_page("DELIVERY_NOTICE", deliveryPlanId=plan.id),
                )
                outbox_ids.append(entry.id)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if mapped:
            logger.info("成功关联 %s 个发货计划的订阅商品", mapped)
        logger.info("批量确认发货计划 %s 个，编号 %s ~ %s", len(plans), numbers[0], numbers[-1])
        return BatchConfirmResult(
            confirmed_count=len(plans),
            delivery_numbers=numbers,
            subscription_mapping_count=mapped,
            outbox_ids=outbox_ids,
        )

    async def _reserve_subscription_product(self, subscription_product_id: int) -> None:
        """订阅商品存在、上架且有库存时原子扣减一件，否则中止整批"""
        reserved = (await self.db.execute(
            update(SubscriptionProduct)
            .where(
                SubscriptionProduct.id == subscription_product_id,
                SubscriptionProduct.is_active == True,  # noqa: E712
                SubscriptionProduct.stock > 0,
            )
            .values(stock=SubscriptionProduct.stock - 1)
            .returning(SubscriptionProduct.id)
        )).scalar_one_or_none()
        if reserved is not None:
            return

        product = await self.db.get(SubscriptionProduct, subscription_product_id)
        if not product:
            raise BatchConfirmAborted(f"订阅商品 ID {subscription_product_id} 不存在")
        if not product.is_active:
            raise BatchConfirmAborted(f"订阅商品 \"{product.product_name}\" 已下架")
        raise BatchConfirmAborted(f"订阅商品 \"{product.product_name}\" 库存不足")

    async def batch_ship(
        self,
        plan_ids: List[int],
        express_company: str,
        express_number: str,
        remark: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BatchShipResult:
        """批量发货：登记物流信息，累加订单项已发货次数，全部发完的订单置为已完成"""
        now = now or datetime.now()
        try:
            plans = await self._lock_plans(plan_ids, DeliveryPlan.status == DeliveryPlanStatus.CONFIRMED.value)
            if not plans:
                await self.db.rollback()
                logger.info("没有找到可发货的计划: %s", plan_ids)
                return BatchShipResult()

            for plan in plans:
                plan.status = DeliveryPlanStatus.SHIPPED.value
                plan.express_company = express_company
                plan.express_number = express_number
                plan.delivery_date = now
                if remark:
                    plan.remark = remark
            await self.db.flush()

            per_item = Counter(plan.order_item_id for plan in plans)
            fully_delivered_orders = set()
            for order_item_id, shipped in per_item.items():
                row = (await self.db.execute(
                    update(OrderItem)
                    .where(OrderItem.id == order_item_id)
                    .values(delivered_count=OrderItem.delivered_count + shipped)
                    .returning(OrderItem.order_id, OrderItem.delivered_count, OrderItem.total_deliveries)
                )).one()
                if row.delivered_count >= row.total_deliveries:
                    fully_delivered_orders.add(row.order_id)

            completed = []
            for order_id in sorted(fully_delivered_orders):
                if await self._complete_if_delivered(order_id):
                    completed.append(order_id)
                    logger.info("订单 %s 所有商品已发货完成，状态更新为已完成", order_id)

            outbox = NotificationOutboxService(self.db)
            outbox_ids = []
            for plan in plans:
                item = plan.order_item
                entry = await outbox.enqueue(
                    scene_code="SHIPPED",
                    user_id=plan.receiver_id or item.order.user_id,
                    business_id=item.order.order_no,
                    business_data={
                        "productName": item.product.product_name if item.product else "商品",
                        "orderNo": item.order.order_no,
                        "orderStatus": "已发货",
                        "tips": "已发货，请确认收货地址！",
                        "time": now,
                    },
                    jump_page=scene_jump_page("SHIPPED", deliveryPlanId=plan.id),
                )
                outbox_ids.append(entry.id)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return BatchShipResult(
            shipped_count=len(plans),
            updated_order_items=len(per_item),
            completed_orders=len(completed),
            completed_order_ids=completed,
            outbox_ids=outbox_ids,
        )

    async def _complete_if_delivered(self, order_id: int) -> bool:
        result = await self.db.execute(
            select(OrderItem.delivered_count, OrderItem.total_deliveries).where(OrderItem.order_id == order_id)
        )
        rows = result.all()
        if not rows or any(r.delivered_count < r.total_deliveries for r in rows):
            return False
        done = await self.db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status.in_([OrderStatus.PAID.value, OrderStatus.GIFTED.value]),
            )
            .values(status=OrderStatus.COMPLETED.value)
            .returning(Order.id)
        )
        return done.scalar_one_or_none() is not None
