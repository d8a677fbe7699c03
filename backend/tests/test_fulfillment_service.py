import logging
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from app.core.constants import DeliveryType, GiftStatus, OrderStatus
from app.core.exceptions import OrderNotFound
from app.models.delivery_plan import DeliveryPlan
from app.models.notification import NotificationOutbox
from app.models.order import Order, OrderItem
from app.schemas.payment import PaymentSignal
from app.services.delivery_plan_generator import DeliveryPlanGenerator
from app.services.fulfillment_service import OrderFulfillmentService

NOW = datetime(2025, 1, 1, 10, 0)


def _signal(order, success=True):
    return PaymentSignal(
        order_no=order.order_no,
        success=success,
        transaction_id="4200000001",
        trade_type="JSAPI",
        payer_openid="payer-openid",
        success_time=NOW,
    )


async def _count(session, model, *criteria):
    return (await session.execute(select(func.count()).select_from(model).where(*criteria))).scalar()


async def _items(session, order_id):
    result = await session.execute(select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id))
    return result.scalars().all()


async def test_self_purchase_materializes_plans(session, factory):
    buyer = await factory.user()
    monthly = await factory.product("月度鲜花", DeliveryType.INTERVAL.value, max_deliveries=3, delivery_interval=30)
    vase = await factory.product("花瓶")
    order = await factory.order(buyer, [(monthly, 2), (vase, 1)])

    result = await OrderFulfillmentService(session).confirm_payment(_signal(order), now=NOW)

    assert result.processed is True
    assert result.plan_count == 7
    refreshed = await session.get(Order, order.id)
    assert refreshed.status == OrderStatus.PAID
    assert refreshed.paid_at == NOW
    assert refreshed.transaction_id == "4200000001"

    monthly_item, vase_item = await _items(session, order.id)
    assert monthly_item.is_subscription is True
    assert (monthly_item.max_deliveries, monthly_item.total_deliveries) == (3, 6)
    assert monthly_item.delivery_interval == 30
    assert monthly_item.gift_status == GiftStatus.RECEIVED
    assert (vase_item.delivery_type, vase_item.total_deliveries) == ("once", 1)

    plans = (await session.execute(
        select(DeliveryPlan).where(DeliveryPlan.order_item_id == monthly_item.id).order_by(DeliveryPlan.id)
    )).scalars().all()
    assert len(plans) == 6
    assert all(p.status == 0 and p.delivery_no is None for p in plans)
    assert {p.receiver_name for p in plans} == {"张三"}
    assert [p.delivery_sequence for p in plans] == [1, 2, 3, 1, 2, 3]


async def test_product_changes_after_payment_do_not_touch_item(session, factory):
    buyer = await factory.user()
    monthly = await factory.product("月度鲜花", DeliveryType.INTERVAL.value, max_deliveries=2, delivery_interval=30)
    order = await factory.order(buyer, [(monthly, 1)])
    await OrderFulfillmentService(session).confirm_payment(_signal(order), now=NOW)

    monthly.max_deliveries = 12
    monthly.delivery_interval = 7
    await session.commit()

    [item] = await _items(session, order.id)
    assert (item.max_deliveries, item.delivery_interval, item.total_deliveries) == (2, 30, 2)


async def test_duplicate_signal_is_a_no_op(session, factory, fake_transport):
    buyer = await factory.user()
    product = await factory.product()
    order = await factory.order(buyer, [(product, 1)])
    service = OrderFulfillmentService(session)

    first = await service.confirm_payment(_signal(order), now=NOW)
    second = await service.confirm_payment(_signal(order), now=NOW + timedelta(minutes=5))

    assert first.processed and not second.processed
    assert second.skipped_reason == "already_processed"
    assert second.outbox_ids == []
    assert await _count(session, DeliveryPlan) == 1
    assert await _count(session, NotificationOutbox) == 1


async def test_gift_order_defers_plans(session, factory):
    sender = await factory.user()
    product = await factory.product()
    order = await factory.order(sender, [(product, 2)], is_gift=True, gift_type=1, address=None)

    result = await OrderFulfillmentService(session).confirm_payment(_signal(order), now=NOW)

    assert result.processed and result.plan_count == 0
    [item] = await _items(session, order.id)
    assert item.gift_status == GiftStatus.PENDING
    assert item.total_deliveries == 2
    assert await _count(session, DeliveryPlan) == 0


async def test_missing_address_snapshot_skips_plans(session, factory):
    buyer = await factory.user()
    product = await factory.product()
    order = await factory.order(buyer, [(product, 1)], address=None)

    result = await OrderFulfillmentService(session).confirm_payment(_signal(order), now=NOW)

    assert result.processed is True
    assert result.plan_count == 0
    assert (await session.get(Order, order.id)).status == OrderStatus.PAID


async def test_failed_payment_leaves_order_unpaid(session, factory):
    buyer = await factory.user()
    product = await factory.product()
    order = await factory.order(buyer, [(product, 1)])
    order_id = order.id

    result = await OrderFulfillmentService(session).confirm_payment(_signal(order, success=False), now=NOW)

    assert result.skipped_reason == "payment_failed"
    refreshed = (await session.execute(select(Order.status).where(Order.id == order_id))).scalar()
    assert refreshed == OrderStatus.CREATED


async def test_unknown_order_raises(session):
    with pytest.raises(OrderNotFound):
        await OrderFulfillmentService(session).confirm_payment(
            PaymentSignal(order_no="NOPE", success=True), now=NOW
        )


async def test_generator_error_falls_back_to_single_window(session, factory):
    class ExplodingGenerator(DeliveryPlanGenerator):
        async def generate(self, policy, quantity, base_date=None):
            raise RuntimeError("calendar bug")

    buyer = await factory.user()
    monthly = await factory.product("季度鲜花", DeliveryType.INTERVAL.value, max_deliveries=4, delivery_interval=90)
    order = await factory.order(buyer, [(monthly, 2)])

    result = await OrderFulfillmentService(session, generator=ExplodingGenerator()).confirm_payment(
        _signal(order), now=NOW
    )

    assert result.plan_count == 2
    [item] = await _items(session, order.id)
    assert item.total_deliveries == 2
    remarks = (await session.execute(select(DeliveryPlan.remark))).scalars().all()
    assert all("备用发货计划" in r for r in remarks)


async def test_payment_success_notification_is_enqueued(session, factory):
    buyer = await factory.user()
    flowers = await factory.product("鲜花")
    tea = await factory.product("茶叶")
    order = await factory.order(buyer, [(flowers, 1), (tea, 1)])

    result = await OrderFulfillmentService(session).confirm_payment(_signal(order), now=NOW)

    entry = await session.get(NotificationOutbox, result.outbox_ids[0])
    assert entry.scene_code == "PAYMENT_SUCCESS"
    assert entry.user_id == buyer.id
    assert entry.status == "pending"
    assert entry.business_data["productName"] == "鲜花、茶叶"
    assert entry.jump_page == f"pages/order/detail/index?orderId={order.id}"


async def test_offset_success_time_is_stored_as_local_time(session, factory):
    buyer = await factory.user()
    order = await factory.order(buyer, [(await factory.product(), 1)])
    order_id = order.id
    paid_in_shanghai = datetime(2025, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=8)))
    signal = _signal(order).model_copy(update={"success_time": paid_in_shanghai})

    await OrderFulfillmentService(session).confirm_payment(signal, now=NOW)

    stored = (await session.execute(select(Order.provider_success_time).where(Order.id == order_id))).scalar()
    assert stored.tzinfo is None
    assert stored == paid_in_shanghai.astimezone().replace(tzinfo=None)


async def test_gift_once_item_expects_one_delivery_per_unit(session, factory):
    sender = await factory.user()
    bouquet = await factory.product("花束", DeliveryType.ONCE.value, max_deliveries=3)
    order = await factory.order(sender, [(bouquet, 2)], is_gift=True, gift_type=1, address=None)

    await OrderFulfillmentService(session).confirm_payment(_signal(order), now=NOW)

    [item] = await _items(session, order.id)
    assert (item.max_deliveries, item.total_deliveries) == (3, 2)


async def test_plan_summary_is_logged(session, factory, caplog):
    caplog.set_level(logging.INFO, logger="app.services.fulfillment_service")
    buyer = await factory.user()
    monthly = await factory.product("月度鲜花", DeliveryType.INTERVAL.value, max_deliveries=3, delivery_interval=30)
    order = await factory.order(buyer, [(monthly, 2)])

    await OrderFulfillmentService(session).confirm_payment(_signal(order), now=NOW)

    assert "固定间隔发货，每30天发货一次，共3次，总计6个发货计划" in caplog.text
