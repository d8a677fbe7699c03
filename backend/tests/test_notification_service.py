from datetime import date, datetime

import pytest
from sqlalchemy import select

from app.core.config import settings
from app.core.constants import OutboxStatus
from app.models.notification import NotificationOutbox, SubscriptionMessageLog, SubscriptionPermission
from app.services.notification_service import (
    NotificationDispatcher,
    NotificationOutboxService,
    SubscriptionPermissionService,
    NOTIFICATION_TEMPLATES,
    build_template_params,
    scene_jump_page,
)

ORDER_TEMPLATE_ID = NOTIFICATION_TEMPLATES["ORDER_STATUS_CHANGE"]["template_id"]

BUSINESS_DATA = {
    "productName": "月度鲜花",
    "orderNo": "ORD000001",
    "orderStatus": "支付成功",
    "tips": "感谢您的购买",
    "time": datetime(2025, 1, 1, 8, 5, 9),
}


async def _logs(session, user_id):
    result = await session.execute(
        select(SubscriptionMessageLog).where(SubscriptionMessageLog.user_id == user_id).order_by(SubscriptionMessageLog.id)
    )
    return result.scalars().all()


async def _available(session, user_id, template_id=ORDER_TEMPLATE_ID):
    result = await session.execute(
        select(SubscriptionPermission.available_count).where(
            SubscriptionPermission.user_id == user_id,
            SubscriptionPermission.template_id == template_id,
        )
    )
    return result.scalar_one_or_none()


def test_template_params_format_and_truncate():
    params = build_template_params(
        {
            "productName": "一" * 25,
            "orderNo": "ORD000001",
            "orderStatus": "礼物已被领取",
            "tips": "短提示",
            "time": datetime(2025, 1, 1, 8, 5, 9),
        },
        "ORDER_STATUS_CHANGE",
    )

    assert params["thing2"]["value"] == "一" * 17 + "..."
    assert params["phrase3"]["value"] == "礼物已被领"
    assert params["character_string1"]["value"] == "ORD000001"
    assert params["thing4"]["value"] == "短提示"
    assert params["time7"]["value"] == "2025/1/1 08:05:09"


def test_template_params_skip_missing_fields():
    params = build_template_params({"orderNo": "ORD1", "time": "2025-03-04T09:00:00"}, "ORDER_STATUS_CHANGE")

    assert set(params) == {"character_string1", "time7"}
    assert params["time7"]["value"] == "2025/3/4 09:00:00"


def test_template_params_dates():
    params = build_template_params(
        {"productName": "花束", "quantity": 2, "getAt": date(2025, 2, 1), "endAt": "下周", "remark": "限时"},
        "PROMOTION_NOTICE",
    )

    assert params["date3"]["value"] == "2025/2/1"
    assert params["date4"]["value"] == "下周"
    assert params["number2"]["value"] == "2"


def test_scene_jump_page():
    assert scene_jump_page("SHIPPED") == "pages/order/delivery-plan/index"
    assert scene_jump_page("PAYMENT_SUCCESS", orderId=7) == "pages/order/detail/index?orderId=7"


async def test_send_without_permission_logs_and_skips(session, factory, fake_transport):
    user = await factory.user()

    await NotificationDispatcher(session, fake_transport).send("PAYMENT_SUCCESS", user.id, "ORD1", BUSINESS_DATA)
    await session.commit()

    [log] = await _logs(session, user.id)
    assert log.status == "no_permission"
    assert fake_transport.sent == []


async def test_send_consumes_one_credit(session, factory, fake_transport):
    user = await factory.user(openid="wx-openid")
    await factory.permission(user, count=2)

    await NotificationDispatcher(session, fake_transport).send(
        "PAYMENT_SUCCESS", user.id, "ORD1", BUSINESS_DATA, jump_page="pages/order/detail/index?orderId=1"
    )
    await session.commit()

    assert await _available(session, user.id) == 1
    [message] = fake_transport.sent
    assert message.recipient == "wx-openid"
    assert message.template_id == ORDER_TEMPLATE_ID
    assert message.page == "pages/order/detail/index?orderId=1"
    assert message.data["phrase3"] == {"value": "支付成功"}
    [log] = await _logs(session, user.id)
    assert log.status == "success"
    assert log.message_type == "PAYMENT_SUCCESS"
    assert log.content["businessId"] == "ORD1"


async def test_failed_send_still_consumes_credit(session, factory, fake_transport):
    user = await factory.user()
    await factory.permission(user, count=1)
    fake_transport.configure(should_succeed=False, failure_reason="43101: user refuse")

    await NotificationDispatcher(session, fake_transport).send("SHIPPED", user.id, "ORD1", BUSINESS_DATA)
    await session.commit()

    assert await _available(session, user.id) == 0
    [log] = await _logs(session, user.id)
    assert log.status == "failed"
    assert log.error_msg == "43101: user refuse"


async def test_missing_openid_is_logged_as_failure(session, factory, fake_transport):
    user = await factory.user(openid=None)
    await factory.permission(user, count=1)

    await NotificationDispatcher(session, fake_transport).send("SHIPPED", user.id, "ORD1", BUSINESS_DATA)
    await session.commit()

    [log] = await _logs(session, user.id)
    assert log.status == "failed"
    assert "OpenID" in log.error_msg
    assert await _available(session, user.id) == 1


async def test_unknown_scene_is_ignored(session, factory, fake_transport):
    user = await factory.user()
    await factory.permission(user, count=1)

    await NotificationDispatcher(session, fake_transport).send("NO_SUCH_SCENE", user.id)

    assert await _logs(session, user.id) == []
    assert await _available(session, user.id) == 1


async def test_outbox_entry_is_sent_once(session, factory, fake_transport):
    user = await factory.user()
    await factory.permission(user, count=5)
    outbox = NotificationOutboxService(session)
    entry = await outbox.enqueue("PAYMENT_SUCCESS", user.id, "ORD1", BUSINESS_DATA)
    await session.commit()
    entry_id = entry.id

    assert await outbox.process(entry_id, fake_transport) is True
    assert await outbox.process(entry_id, fake_transport) is False

    assert len(fake_transport.sent) == 1
    stored = await session.get(NotificationOutbox, entry_id)
    assert stored.status == OutboxStatus.DISPATCHED
    assert stored.attempts == 1
    assert stored.business_data["time"] == "2025-01-01T08:05:09"


async def test_outbox_skips_sending_when_disabled(session, factory, fake_transport, monkeypatch):
    monkeypatch.setattr(settings, "NOTIFICATION_ENABLED", False)
    user = await factory.user()
    await factory.permission(user, count=1)
    outbox = NotificationOutboxService(session)
    entry = await outbox.enqueue("SHIPPED", user.id, "ORD1", BUSINESS_DATA)
    await session.commit()

    assert await outbox.process(entry.id, fake_transport) is True
    assert fake_transport.sent == []
    assert await _available(session, user.id) == 1


async def test_process_pending_drains_leftovers(session, factory, fake_transport):
    user = await factory.user()
    await factory.permission(user, count=5)
    outbox = NotificationOutboxService(session)
    for scene in ("PAYMENT_SUCCESS", "DELIVERY_NOTICE", "SHIPPED"):
        await outbox.enqueue(scene, user.id, "ORD1", BUSINESS_DATA)
    await session.commit()

    assert await outbox.process_pending(fake_transport) == 3
    assert await outbox.process_pending(fake_transport) == 0
    assert len(fake_transport.sent) == 3
    assert await _available(session, user.id) == 2


async def test_record_grants_and_denials(session, factory):
    user = await factory.user()
    user_id = user.id
    await factory.permission(user, count=2, template_id="tpl-existing")
    await factory.permission(user, count=4, template_id="tpl-denied")
    service = SubscriptionPermissionService(session)

    counts = await service.record(user_id, ["tpl-existing", "tpl-new", "tpl-new"], ["tpl-denied", "tpl-unknown"])

    assert counts == {"created_count": 1, "updated_count": 1, "denied_count": 1}
    assert await _available(session, user_id, "tpl-existing") == 3
    assert await _available(session, user_id, "tpl-new") == 1
    assert await _available(session, user_id, "tpl-denied") == 0


@pytest.mark.parametrize("rounds,expected", [(1, 1), (3, 3)])
async def test_each_grant_adds_one_credit(session, factory, rounds, expected):
    user = await factory.user()
    user_id = user.id
    service = SubscriptionPermissionService(session)

    for _ in range(rounds):
        await service.record(user_id, [ORDER_TEMPLATE_ID], [])

    assert await _available(session, user_id) == expected


async def test_submit_notifications_uses_celery(session, factory, fake_transport, monkeypatch):
    from app.api.deps import submit_notifications
    from app.tasks import notification_tasks

    monkeypatch.setattr(settings, "NOTIFICATION_ASYNC", True)
    submitted = []
    monkeypatch.setattr(notification_tasks.dispatch_notification_task, "delay", submitted.append)
    user = await factory.user()
    entry = await NotificationOutboxService(session).enqueue("SHIPPED", user.id, "ORD1", BUSINESS_DATA)
    await session.commit()

    await submit_notifications(session, [entry.id])

    assert submitted == [entry.id]
    assert (await session.get(NotificationOutbox, entry.id)).status == OutboxStatus.PENDING


async def test_submit_notifications_falls_back_inline(session, factory, fake_transport, monkeypatch):
    from app.api.deps import submit_notifications
    from app.tasks import notification_tasks

    def broker_down(outbox_id):
        raise ConnectionError("redis unavailable")

    monkeypatch.setattr(settings, "NOTIFICATION_ASYNC", True)
    monkeypatch.setattr(notification_tasks.dispatch_notification_task, "delay", broker_down)
    user = await factory.user()
    await factory.permission(user, count=1)
    entry = await NotificationOutboxService(session).enqueue("SHIPPED", user.id, "ORD1", BUSINESS_DATA)
    await session.commit()
    entry_id = entry.id

    await submit_notifications(session, [entry_id])

    assert len(fake_transport.sent) == 1
    assert (await session.get(NotificationOutbox, entry_id)).status == OutboxStatus.DISPATCHED
