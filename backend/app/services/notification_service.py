"""
订阅消息服务：按用户授权次数发送微信订阅消息

- 通知在业务事务内写入 notification_outbox，提交后由 Celery 任务逐条发送
- 发送前检查 (user_id, template_id) 的剩余次数，无论发送成功与否都消耗一次
- 每次尝试都写 subscription_message_logs
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.constants import NotificationSendStatus, OutboxStatus
from app.models.notification import NotificationOutbox, SubscriptionMessageLog, SubscriptionPermission
from app.models.user import User
from app.services.notification_transport import NotificationTransport, OutboundMessage

logger = logging.getLogger(__name__)


# 固定的通知模版：模板字段 -> 业务字段
NOTIFICATION_TEMPLATES = {
    # 订单状态变更通知
    "ORDER_STATUS_CHANGE": {
        "template_id": "UXitKzFcB8zlW6Q_cHN2YZRwmYYmpRXSujjkF0gvKfQ",
        "param_mapping": {
            "character_string1": "orderNo",  # 订单号
            "thing2": "productName",  # 项目名称
            "phrase3": "orderStatus",  # 订单状态
            "thing4": "tips",  # 温馨提示
            "time7": "time",  # 更新时间
        },
    },
    # 订单发货通知
    "DELIVERY_NOTICE": {
        "template_id": "PTnCLoWbKXu6iFMDebEYFb6d3iHlMKvtgCkm1t2qAwQ",
        "param_mapping": {
            "thing1": "productName",
            "character_string2": "orderNo",
            "thing3": "address",
        },
    },
    # 促销优惠通知
    "PROMOTION_NOTICE": {
        "template_id": "Yy-6b5Xn4ahLRxSugcJqJ7Xetevo6q10HqakVIiog6k",
        "param_mapping": {
            "thing1": "productName",
            "number2": "quantity",
            "date3": "getAt",
            "date4": "endAt",
            "thing5": "remark",
        },
    },
}

# 通知场景：场景关联模版，不同场景的跳转页面不同
NOTIFICATION_SCENES = {
    "PAYMENT_SUCCESS": {"template_code": "ORDER_STATUS_CHANGE", "jump_page": "pages/order/detail/index"},
    "GIFT_RECEIVE": {"template_code": "ORDER_STATUS_CHANGE", "jump_page": "pages/order/detail/index"},
    "DELIVERY_NOTICE": {"template_code": "ORDER_STATUS_CHANGE", "jump_page": "pages/order/delivery-plan/index"},
    "SHIPPED": {"template_code": "ORDER_STATUS_CHANGE", "jump_page": "pages/order/delivery-plan/index"},
    "AUTO_REFUND": {"template_code": "ORDER_STATUS_CHANGE", "jump_page": "pages/order/detail/index"},
    "CONTINUE_PURCHASE": {"template_code": "ORDER_STATUS_CHANGE", "jump_page": "pages/order/detail/index"},
    "REFUND_SUCCESS": {"template_code": "ORDER_STATUS_CHANGE", "jump_page": "pages/order/detail/index"},
}

# 微信模板字段长度限制：前缀 -> (最大长度, 截断后保留长度, 后缀)
FIELD_LIMITS = {
    "thing": (20, 17, "..."),
    "character_string": (32, 29, "..."),
    "phrase": (5, 5, ""),
}


def scene_jump_page(scene_code: str, **query: Any) -> str:
    """场景默认跳转页面，附带查询参数"""
    page = NOTIFICATION_SCENES[scene_code]["jump_page"]
    if not query:
        return page
    return page + "?" + "&".join(f"{k}={v}" for k, v in query.items())


def format_locale_time(value: datetime) -> str:
    """与小程序端一致的中文时间格式，如 2025/1/1 08:00:00"""
    return f"{value.year}/{value.month}/{value.day} {value:%H:%M:%S}"


def _format_value(template_field: str, value: Any) -> str:
    if "time" in template_field or template_field.startswith("date"):
        if isinstance(value, datetime):
            value = format_locale_time(value)
        elif isinstance(value, date):
            value = f"{value.year}/{value.month}/{value.day}"
        elif isinstance(value, str):
            try:
                value = format_locale_time(datetime.fromisoformat(value))
            except ValueError:
                pass  # 非 ISO 格式保持原值
    text = str(value)
    for prefix, (max_len, keep, suffix) in FIELD_LIMITS.items():
        if template_field.startswith(prefix):
            if len(text) > max_len:
                text = text[:keep] + suffix
            break
    return text


def build_template_params(business_data: Dict[str, Any], template_code: str) -> Dict[str, Dict[str, str]]:
    """按模板字段映射构建订阅消息参数，缺失的业务字段跳过"""
    mapping = NOTIFICATION_TEMPLATES[template_code]["param_mapping"]
    params = {}
    for template_field, business_field in mapping.items():
        value = business_data.get(business_field)
        if value is None:
            logger.debug("业务数据中缺少字段: %s", business_field)
            continue
        params[template_field] = {"value": _format_value(template_field, value)}
    return params


def _jsonable(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        k: (v.isoformat() if isinstance(v, (datetime, date)) else v)
        for k, v in (data or {}).items()
    }


class NotificationDispatcher:
    """订阅消息发送：检查授权次数 -> 构建参数 -> 消耗次数 -> 发送 -> 记录日志。不向调用方抛异常。"""

    def __init__(self, db: AsyncSession, transport: NotificationTransport):
        self.db = db
        self.transport = transport

    async def send(
        self,
        scene_code: str,
        user_id: int,
        business_id: Optional[str] = None,
        business_data: Optional[Dict[str, Any]] = None,
        jump_page: Optional[str] = None,
    ) -> None:
        scene = NOTIFICATION_SCENES.get(scene_code)
        if not scene:
            logger.warning("通知场景不存在: %s", scene_code)
            return
        template_code = scene["template_code"]
        template_id = NOTIFICATION_TEMPLATES[template_code]["template_id"]

        try:
            openid = await self._get_openid(user_id)

            available = await self.get_available_count(user_id, template_id)
            if available <= 0:
                logger.info("用户 %s 没有模板 %s 的订阅权限", user_id, template_id)
                await self._log(user_id, scene_code, template_code, template_id, business_id, None,
                                NotificationSendStatus.NO_PERMISSION, "用户未授权订阅消息")
                return

            params = build_template_params(business_data or {}, template_code)

            # 无论是否发送成功，都消耗一次
            if not await self.consume_permission(user_id, template_id):
                await self._log(user_id, scene_code, template_code, template_id, business_id, None,
                                NotificationSendStatus.NO_PERMISSION, "用户未授权订阅消息")
                return

            result = await self.transport.send(OutboundMessage(
                recipient=openid,
                template_id=template_id,
                page=jump_page or scene["jump_page"],
                data=params,
            ))
            await self._log(
                user_id, scene_code, template_code, template_id, business_id, params,
                NotificationSendStatus.SUCCESS if result.success else NotificationSendStatus.FAILED,
                None if result.success else result.error,
            )
        except Exception as e:
            logger.exception("发送通知失败 [%s] user_id=%s: %s", scene_code, user_id, e)
            try:
                await self._log(user_id, scene_code, template_code, template_id, business_id, None,
                                NotificationSendStatus.FAILED, str(e))
            except Exception as log_error:
                logger.error("记录通知发送日志失败: %s", log_error)

    async def get_available_count(self, user_id: int, template_id: str) -> int:
        result = await self.db.execute(
            select(SubscriptionPermission.available_count).where(
                SubscriptionPermission.user_id == user_id,
                SubscriptionPermission.template_id == template_id,
            )
        )
        return result.scalar_one_or_none() or 0

    async def consume_permission(self, user_id: int, template_id: str) -> bool:
        """原子扣减一次授权，次数已为 0 时返回 False"""
        result = await self.db.execute(
            update(SubscriptionPermission)
            .where(
                SubscriptionPermission.user_id == user_id,
                SubscriptionPermission.template_id == template_id,
                SubscriptionPermission.available_count > 0,
            )
            .values(available_count=SubscriptionPermission.available_count - 1)
            .returning(SubscriptionPermission.available_count)
        )
        remaining = result.scalar_one_or_none()
        if remaining is None:
            logger.warning("没有可用授权次数 user_id=%s template_id=%s", user_id, template_id)
            return False
        logger.debug("授权已消耗 user_id=%s template_id=%s 剩余=%s", user_id, template_id, remaining)
        return True

    async def _get_openid(self, user_id: int) -> str:
        result = await self.db.execute(select(User.openid).where(User.id == user_id))
        openid = result.scalar_one_or_none()
        if not openid:
            raise ValueError(f"用户 {user_id} 的 OpenID 不存在")
        return openid

    async def _log(
        self,
        user_id: int,
        scene_code: str,
        template_code: str,
        template_id: str,
        business_id: Optional[str],
        params: Optional[Dict[str, Any]],
        status: NotificationSendStatus,
        error: Optional[str],
    ) -> None:
        self.db.add(SubscriptionMessageLog(
            user_id=user_id,
            template_id=template_id,
            message_type=scene_code,
            content={"templateCode": template_code, "templateVariables": params, "businessId": business_id},
            status=status.value,
            error_msg=error,
        ))
        await self.db.flush()


class NotificationOutboxService:
    """通知发件箱"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def enqueue(
        self,
        scene_code: str,
        user_id: int,
        business_id: Optional[str] = None,
        business_data: Optional[Dict[str, Any]] = None,
        jump_page: Optional[str] = None,
    ) -> NotificationOutbox:
        """在当前事务内登记一条待发送通知，随业务一起提交"""
        entry = NotificationOutbox(
            scene_code=scene_code,
            user_id=user_id,
            business_id=business_id,
            business_data=_jsonable(business_data),
            jump_page=jump_page,
            status=OutboxStatus.PENDING.value,
            attempts=0,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def process(self, outbox_id: int, transport: NotificationTransport) -> bool:
        """发送一条待发送通知并标记完成；已处理过的直接跳过。返回是否实际发送。"""
        result = await self.db.execute(
            select(NotificationOutbox).where(NotificationOutbox.id == outbox_id).with_for_update()
        )
        entry = result.scalar_one_or_none()
        if not entry or entry.status != OutboxStatus.PENDING.value:
            await self.db.rollback()
            return False

        entry.attempts = (entry.attempts or 0) + 1
        if settings.NOTIFICATION_ENABLED:
            await NotificationDispatcher(self.db, transport).send(
                scene_code=entry.scene_code,
                user_id=entry.user_id,
                business_id=entry.business_id,
                business_data=entry.business_data,
                jump_page=entry.jump_page,
            )
        entry.status = OutboxStatus.DISPATCHED.value
        entry.dispatched_at = datetime.now()
        await self.db.commit()
        return True

    async def pending_ids(self, limit: int) -> List[int]:
        result = await self.db.execute(
            select(NotificationOutbox.id)
            .where(NotificationOutbox.status == OutboxStatus.PENDING.value)
            .order_by(NotificationOutbox.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def process_pending(self, transport: NotificationTransport, limit: Optional[int] = None) -> int:
        """补偿：发送所有仍为 pending 的通知，单条失败不影响其他"""
        processed = 0
        for outbox_id in await self.pending_ids(limit or settings.NOTIFICATION_DRAIN_BATCH):
            try:
                if await self.process(outbox_id, transport):
                    processed += 1
            except Exception as e:
                logger.exception("处理待发送通知 %s 失败: %s", outbox_id, e)
                await self.db.rollback()
        return processed


class SubscriptionPermissionService:
    """记录用户在小程序端授权/拒绝的订阅消息模板"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, user_id: int, granted: List[str], denied: List[str]) -> Dict[str, int]:
        """授权的模板次数 +1（无记录则创建为 1），拒绝的模板次数清零"""
        created = updated = 0
        try:
            for template_id in dict.fromkeys(granted):
                if await self._increment(user_id, template_id):
                    updated += 1
                    continue
                try:
                    async with self.db.begin_nested():
                        self.db.add(SubscriptionPermission(user_id=user_id, template_id=template_id, available_count=1))
                    created += 1
                except IntegrityError:
                    # 并发请求已创建该行
                    await self._increment(user_id, template_id)
                    updated += 1

            denied_count = 0
            if denied:
                result = await self.db.execute(
                    update(SubscriptionPermission)
                    .where(
                        SubscriptionPermission.user_id == user_id,
                        SubscriptionPermission.template_id.in_(denied),
                    )
                    .values(available_count=0)
                )
                denied_count = result.rowcount or 0
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("用户 %s 订阅授权: 新增=%s 累加=%s 拒绝=%s", user_id, created, updated, denied_count)
        return {"created_count": created, "updated_count": updated, "denied_count": denied_count}

    async def _increment(self, user_id: int, template_id: str) -> bool:
        result = await self.db.execute(
            update(SubscriptionPermission)
            .where(
                SubscriptionPermission.user_id == user_id,
                SubscriptionPermission.template_id == template_id,
            )
            .values(available_count=SubscriptionPermission.available_count + 1)
            .returning(SubscriptionPermission.id)
        )
        return result.scalar_one_or_none() is not None
