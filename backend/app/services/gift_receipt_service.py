"""
礼物领取服务
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.constants import GiftStatus, GiftType, OrderStatus
from app.core.exceptions import GiftClaimRejected, OrderNotFound
from app.models.delivery_plan import DeliveryPlan
from app.models.order import Order, OrderItem
from app.schemas.order import AddressInfo, ReceiverProfile, ReceiveStatusResponse
from app.services.delivery_plan_generator import DeliveryPlanGenerator, SolarTermCalendar, describe_policy
from app.services.delivery_plan_service import build_delivery_plans, policy_from_item
from app.services.notification_service import NotificationOutboxService, scene_jump_page
from app.services.user_service import UserService

logger = logging.getLogger(__name__)


@dataclass
class GiftReceiptResult:
    order: Order
    received_items: List[OrderItem] = field(default_factory=list)
    delivery_plans: List[DeliveryPlan] = field(default_factory=list)
    outbox_ids: List[int] = field(default_factory=list)


def gift_expired_at(order: Order) -> Optional[datetime]:
    """礼物领取截止时间：支付后 48 小时"""
    if not order.paid_at:
        return None
    return order.paid_at + timedelta(hours=settings.GIFT_CLAIM_EXPIRE_HOURS)


class GiftReceiptService:
    """收礼人领取礼物"""

    def __init__(self, db: AsyncSession, generator: Optional[DeliveryPlanGenerator] = None):
        self.db = db
        self.generator = generator or DeliveryPlanGenerator(calendar=SolarTermCalendar(db))

    async def _load_order(self, order_id: int, lock: bool) -> Optional[Order]:
        stmt = (
            select(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.product))
            .where(Order.id == order_id)
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    def _check_order(self, order: Optional[Order], claimant_id: int, now: datetime) -> None:
        if not order:
            raise OrderNotFound()
        if order.status != OrderStatus.PAID.value:
            raise GiftClaimRejected("订单未支付，无法领取")
        if not order.is_gift:
            raise GiftClaimRejected("该订单不是礼品订单")
        expired_at = gift_expired_at(order)
        if expired_at is None or now > expired_at:
            raise GiftClaimRejected("礼物已过期，无法领取")
        if order.user_id == claimant_id:
            raise GiftClaimRejected("不能领取自己的礼物")

    def _select_items(self, order: Order, claimant_id: int, order_item_id: Optional[int]) -> List[OrderItem]:
        unclaimed = [i for i in order.items if i.gift_status == GiftStatus.PENDING.value]
        if order.gift_type == GiftType.SINGLE.value:
            if not unclaimed:
                raise GiftClaimRejected("礼物已被领取")
            return unclaimed

        if order.gift_type == GiftType.MULTI.value:
            if any(i.receiver_id == claimant_id and i.gift_status == GiftStatus.RECEIVED.value for i in order.items):
                raise GiftClaimRejected("您已经领取过礼物了")
            if order_item_id is not None:
                target = next((i for i in order.items if i.id == order_item_id), None)
                if target is None:
                    raise GiftClaimRejected("指定的商品不存在")
                if target.gift_status != GiftStatus.PENDING.value:
                    raise GiftClaimRejected("该商品已被领取")
                return [target]
            if not unclaimed:
                raise GiftClaimRejected("礼物已被领取完毕")
            return [min(unclaimed, key=lambda i: i.id)]

        raise GiftClaimRejected("无效的赠送类型")

    async def _claim_items(self, item_ids: List[int], claimant_id: int, now: datetime) -> int:
        """gift_status 0→1 的条件更新，返回实际领取到的订单项数"""
        claimed = await self.db.execute(
            update(OrderItem)
            .where(OrderItem.id.in_(item_ids), OrderItem.gift_status == GiftStatus.PENDING.value)
            .values(gift_status=GiftStatus.RECEIVED.value, receiver_id=claimant_id, received_at=now)
            .returning(OrderItem.id)
        )
        return len(claimed.scalars().all())

    async def receive(
        self,
        order_id: int,
        claimant_id: int,
        address: AddressInfo,
        order_item_id: Optional[int] = None,
        profile: Optional[ReceiverProfile] = None,
        now: Optional[datetime] = None,
    ) -> GiftReceiptResult:
        """
        领取礼物。

        订单行锁串行化同一订单上的并发领取，gift_status 0→1 的条件更新作为最终闸门。
        前置条件不满足时抛出 GiftClaimRejected，事务整体回滚。
        """
        now = now or datetime.now()
        try:
            order = await self._load_order(order_id, lock=True)
            self._check_order(order, claimant_id, now)
            items = self._select_items(order, claimant_id, order_item_id)

            item_ids = [i.id for i in items]
            if await self._claim_items(item_ids, claimant_id, now) != len(item_ids):
                raise GiftClaimRejected("礼物已被领取")

            plans: List[DeliveryPlan] = []
            for item in items:
                policy = policy_from_item(item)
                try:
                    windows = await self.generator.generate(policy, item.quantity, base_date=now)
                except Exception as e:
                    logger.error("订单项 %s 生成发货计划失败: %s", item.id, e)
                    continue
                logger.info("订单项 %s：%s", item.id, describe_policy(policy, item.quantity))
                item.total_deliveries = len(windows)
                item_plans = build_delivery_plans(item, windows, order.user_id, claimant_id, address)
                self.db.add_all(item_plans)
                plans.extend(item_plans)
            await self.db.flush()

            await self._maintain_receiver(order.user_id, claimant_id, address, profile)

            names = "、".join(i.product.product_name for i in items if i.product) or "礼物"
            entry = await NotificationOutboxService(self.db).enqueue(
                scene_code="GIFT_RECEIVE",
                user_id=order.user_id,
                business_id=order.order_no,
                business_data={
                    "productName": names,
                    "orderNo": order.order_no,
                    "orderStatus": "礼物已被领取",
                    "tips": "您赠送的礼物已被好友领取",
                    "time": now,
                },
                jump_page=scene_jump_page("GIFT_RECEIVE", orderId=order.id),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "用户 %s 领取订单 %s 的礼物，订单项 %s，发货计划 %s 个",
            claimant_id, order.order_no, item_ids, len(plans),
        )
        return GiftReceiptResult(order=order, received_items=items, delivery_plans=plans, outbox_ids=[entry.id])

    async def _maintain_receiver(
        self,
        sender_id: int,
        receiver_id: int,
        address: AddressInfo,
        profile: Optional[ReceiverProfile],
    ) -> None:
        """维护用户关系和收礼人资料，失败只记录日志，不影响领取"""
        users = UserService(self.db)
        relation_type = profile.selected_relationship if profile else None
        try:
            async with self.db.begin_nested():
                await users.ensure_relation(sender_id, receiver_id, relation_type)
        except Exception as e:
            logger.error("建立用户关系失败 %s ↔ %s: %s", sender_id, receiver_id, e)

        try:
            async with self.db.begin_nested():
                await users.update_profile(receiver_id, address.tel_number, profile)
                await users.upsert_default_address(receiver_id, address)
        except Exception as e:
            logger.error("维护收礼人 %s 资料失败: %s", receiver_id, e)

    async def get_receive_status(
        self,
        order_id: int,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ReceiveStatusResponse:
        """查询礼物可领取状态，不可领取时给出原因"""
        now = now or datetime.now()
        order = await self._load_order(order_id, lock=False)
        if not order:
            raise OrderNotFound()

        total = len(order.items)
        received = sum(1 for i in order.items if i.gift_status == GiftStatus.RECEIVED.value)
        has_received = user_id is not None and any(
            i.receiver_id == user_id and i.gift_status == GiftStatus.RECEIVED.value for i in order.items
        )
        status = ReceiveStatusResponse(
            order_id=order.id,
            order_no=order.order_no,
            gift_type=order.gift_type,
            can_receive=False,
            has_received=has_received,
            available_count=total - received,
            received_count=received,
            total_count=total,
            expired_at=gift_expired_at(order),
        )
        try:
            self._check_order(order, user_id if user_id is not None else -1, now)
            self._select_items(order, user_id if user_id is not None else -1, None)
        except GiftClaimRejected as e:
            status.reason = e.reason
            return status
        status.can_receive = True
        return status
