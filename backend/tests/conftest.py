from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  注册全部表
from app.core.config import settings
from app.core.database import Base, enable_sqlite_savepoints
from app.models.delivery_plan import DeliveryPlan
from app.models.notification import SubscriptionPermission
from app.models.order import Order, OrderItem
from app.models.product import Product, SubscriptionProduct
from app.models.solar_term import SolarTerm
from app.models.user import User
from app.services import notification_transport
from app.services.notification_service import NOTIFICATION_TEMPLATES
from app.services.notification_transport import FakeNotificationTransport

ORDER_TEMPLATE_ID = NOTIFICATION_TEMPLATES["ORDER_STATUS_CHANGE"]["template_id"]

SENDER_ADDRESS = {
    "userName": "张三",
    "telNumber": "13800000000",
    "provinceName": "广东省",
    "cityName": "深圳市",
    "countyName": "南山区",
    "detailInfo": "科技园 1 号",
}

RECEIVER_ADDRESS = {
    "userName": "李四",
    "telNumber": "13900000000",
    "provinceName": "浙江省",
    "cityName": "杭州市",
    "countyName": "西湖区",
    "detailInfo": "文三路 2 号",
}


@pytest_asyncio.fixture
async def engine():
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(test_engine)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as db:
        yield db


@pytest.fixture(autouse=True)
def fake_transport(monkeypatch):
    """所有测试使用内存发送通道，请求内直接发送通知"""
    transport = FakeNotificationTransport()
    monkeypatch.setattr(notification_transport, "_transport", transport)
    monkeypatch.setattr(settings, "NOTIFICATION_TRANSPORT", "fake")
    monkeypatch.setattr(settings, "NOTIFICATION_ASYNC", False)
    monkeypatch.setattr(settings, "NOTIFICATION_ENABLED", True)
    monkeypatch.setattr(settings, "PAYMENT_NOTIFY_TOKEN", "")
    return transport


class Factory:
    """测试数据构造"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    async def user(self, openid: Optional[str] = "auto", **fields) -> User:
        n = self._next()
        user = User(openid=f"openid-{n}" if openid == "auto" else openid, nickname=f"用户{n}", **fields)
        self.db.add(user)
        await self.db.commit()
        return user

    async def product(
        self,
        name: str = "鲜花",
        delivery_type: Optional[str] = None,
        max_deliveries: Optional[int] = None,
        delivery_interval: Optional[int] = None,
    ) -> Product:
        product = Product(
            product_name=name,
            price=Decimal("99.00"),
            is_subscription=delivery_type is not None,
            delivery_type=delivery_type,
            max_deliveries=max_deliveries,
            delivery_interval=delivery_interval,
        )
        self.db.add(product)
        await self.db.commit()
        return product

    async def order(
        self,
        owner: User,
        lines: Iterable[Tuple[Product, int]],
        is_gift: bool = False,
        gift_type: Optional[int] = None,
        address: Optional[dict] = SENDER_ADDRESS,
        status: int = 0,
        paid_at: Optional[datetime] = None,
    ) -> Order:
        order = Order(
            order_no=f"ORD{self._next():06d}",
            user_id=owner.id,
            amount=Decimal("0"),
            status=status,
            is_gift=is_gift,
            gift_type=gift_type,
            address_snapshot=address,
            paid_at=paid_at,
        )
        for product, quantity in lines:
            order.items.append(OrderItem(product=product, product_id=product.id, quantity=quantity, price=product.price))
        self.db.add(order)
        await self.db.commit()
        return order

    async def permission(self, user: User, count: int, template_id: str = ORDER_TEMPLATE_ID) -> SubscriptionPermission:
        permission = SubscriptionPermission(user_id=user.id, template_id=template_id, available_count=count)
        self.db.add(permission)
        await self.db.commit()
        return permission

    async def solar_term(self, name: str, start: datetime, end: datetime, is_active: bool = True) -> SolarTerm:
        term = SolarTerm(name=name, start_time=start, end_time=end, year=start.year, is_active=is_active)
        self.db.add(term)
        await self.db.commit()
        return term

    async def subscription_product(self, name: str = "春季花束", stock: int = 10, is_active: bool = True) -> SubscriptionProduct:
        product = SubscriptionProduct(product_name=name, stock=stock, is_active=is_active)
        self.db.add(product)
        await self.db.commit()
        return product

    async def plan(self, item: OrderItem, user: User, status: int = 0, delivery_no: Optional[str] = None, sequence: int = 1) -> DeliveryPlan:
        plan = DeliveryPlan(
            order_item_id=item.id,
            user_id=user.id,
            receiver_id=user.id,
            receiver_name="张三",
            receiver_phone="13800000000",
            receiver_address="科技园 1 号",
            delivery_start_date=datetime(2025, 1, 1),
            delivery_end_date=datetime(2025, 1, 4),
            delivery_sequence=sequence,
            status=status,
            delivery_no=delivery_no,
        )
        self.db.add(plan)
        await self.db.commit()
        return plan


@pytest.fixture
def factory(session):
    return Factory(session)


@pytest.fixture
def receiver_address():
    return dict(RECEIVER_ADDRESS)
