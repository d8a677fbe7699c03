"""
发货计划生成器：根据交付类型、发货次数、发货间隔生成发货窗口

每份商品（quantity）都独立生成一组窗口，序号按份重新从 1 开始。
节气日历由 CalendarProvider 提供，查询失败时按固定间隔兜底，不影响下单。
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.constants import DeliveryType
from app.core.exceptions import InvalidDeliveryConfig
from app.models.solar_term import SolarTerm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalendarPeriod:
    """节气周期"""
    id: int
    name: str
    start_time: datetime
    end_time: datetime


@dataclass
class DeliveryWindow:
    """一次发货的时间窗口"""
    start: datetime
    end: datetime
    sequence: int
    solar_term_id: Optional[int] = None
    note: str = ""


@dataclass(frozen=True)
class DeliveryPolicy:
    """订单项上的发货策略快照"""
    delivery_type: DeliveryType
    max_deliveries: int = 1
    delivery_interval: Optional[int] = None


class CalendarProvider(Protocol):
    async def find_upcoming(self, base_date: datetime, limit: int) -> Sequence[CalendarPeriod]:
        ...


class SolarTermCalendar:
    """从 solar_terms 表读取当年与次年的活跃节气"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_upcoming(self, base_date: datetime, limit: int) -> List[CalendarPeriod]:
        years = [base_date.year, base_date.year + 1]
        # 放在保存点内，查询失败不会中止外层事务
        async with self.db.begin_nested():
            result = await self.db.execute(
                select(SolarTerm)
                .where(
                    SolarTerm.year.in_(years),
                    SolarTerm.is_active == True,  # noqa: E712
                    SolarTerm.start_time >= base_date,
                )
                .order_by(SolarTerm.start_time.asc())
                .limit(limit)
            )
        return [
            CalendarPeriod(id=t.id, name=t.name, start_time=t.start_time, end_time=t.end_time)
            for t in result.scalars().all()
        ]


def validate_policy(policy: DeliveryPolicy, quantity: int) -> None:
    """校验发货计划配置，不合法时抛出 InvalidDeliveryConfig"""
    try:
        delivery_type = DeliveryType(policy.delivery_type)
    except ValueError:
        raise InvalidDeliveryConfig("无效的交付类型")
    if not policy.max_deliveries or policy.max_deliveries < 1:
        raise InvalidDeliveryConfig("发货次数必须大于0")
    if delivery_type == DeliveryType.INTERVAL and (not policy.delivery_interval or policy.delivery_interval < 1):
        raise InvalidDeliveryConfig("固定间隔发货必须设置有效的间隔天数")
    if not quantity or quantity < 1:
        raise InvalidDeliveryConfig("购买数量必须大于0")


def planned_deliveries(policy: DeliveryPolicy, quantity: int) -> int:
    """策略实际生成的发货计划数：一次性发货每份只发一次，与 max_deliveries 无关"""
    if policy.delivery_type == DeliveryType.ONCE:
        return quantity
    return quantity * policy.max_deliveries


def describe_policy(policy: DeliveryPolicy, quantity: int) -> str:
    """发货计划摘要"""
    total = planned_deliveries(policy, quantity)
    if policy.delivery_type == DeliveryType.ONCE:
        return f"一次性发货，共{quantity}份商品"
    if policy.delivery_type == DeliveryType.INTERVAL:
        return (
            f"固定间隔发货，每{policy.delivery_interval}天发货一次，"
            f"共{policy.max_deliveries}次，总计{total}个发货计划"
        )
    if policy.delivery_type == DeliveryType.SOLAR_TERM:
        return f"节气发货，按节气时间发货，共{policy.max_deliveries}次，总计{total}个发货计划"
    return f"未知发货类型：{policy.delivery_type}"


class DeliveryPlanGenerator:
    """发货计划生成器"""

    def __init__(
        self,
        calendar: Optional[CalendarProvider] = None,
        cutoff_hour: Optional[int] = None,
        fallback_interval_days: Optional[int] = None,
    ):
        self.calendar = calendar
        self.cutoff_hour = settings.ONCE_CUTOFF_HOUR if cutoff_hour is None else cutoff_hour
        self.fallback_interval_days = (
            settings.SOLAR_TERM_FALLBACK_INTERVAL_DAYS if fallback_interval_days is None else fallback_interval_days
        )

    async def generate(
        self,
        policy: DeliveryPolicy,
        quantity: int,
        base_date: Optional[datetime] = None,
    ) -> List[DeliveryWindow]:
        """
        生成发货窗口列表。

        Args:
            policy: 交付类型 + 每份发货次数 + 间隔天数
            quantity: 购买数量，每份独立生成一组窗口
            base_date: 基准时间，默认当前时间

        Returns:
            按份、按序号排列的窗口，总数 = quantity × 每份次数
        """
        validate_policy(policy, quantity)
        base_date = base_date or datetime.now()
        delivery_type = DeliveryType(policy.delivery_type)

        periods: Sequence[CalendarPeriod] = []
        if delivery_type == DeliveryType.SOLAR_TERM:
            periods = await self._load_periods(base_date, policy.max_deliveries)

        windows: List[DeliveryWindow] = []
        for unit in range(quantity):
            if delivery_type == DeliveryType.ONCE:
                windows.extend(self._once(base_date, unit))
            elif delivery_type == DeliveryType.INTERVAL:
                windows.extend(self._interval(base_date, policy.max_deliveries, policy.delivery_interval, unit))
            else:
                windows.extend(self._solar_term(base_date, policy.max_deliveries, periods, unit))
        return windows

    def fallback(self, quantity: int, base_date: Optional[datetime] = None) -> List[DeliveryWindow]:
        """生成失败时的备用计划：每份一个一次性发货窗口"""
        base_date = base_date or datetime.now()
        windows = []
        for unit in range(max(quantity, 1)):
            window = self._once(base_date, unit)[0]
            window.note = f"第{unit + 1}份商品 - 备用发货计划"
            windows.append(window)
        return windows

    async def _load_periods(self, base_date: datetime, limit: int) -> Sequence[CalendarPeriod]:
        if self.calendar is None:
            logger.warning("未配置节气日历，回退到固定间隔发货")
            return []
        try:
            return list(await self.calendar.find_upcoming(base_date, limit))
        except Exception as e:
            logger.error("查询节气数据失败，回退到固定间隔发货: %s", e)
            return []

    def _once(self, base_date: datetime, unit: int) -> List[DeliveryWindow]:
        start = base_date
        # 16:00 之后下单顺延到下一天
        if base_date.hour >= self.cutoff_hour:
            start = base_date + timedelta(days=1)
        return [DeliveryWindow(
            start=start,
            end=start + timedelta(days=settings.ONCE_WINDOW_DAYS),
            sequence=1,
            note=f"第{unit + 1}份商品 - 一次性发货",
        )]

    def _interval(
        self,
        base_date: datetime,
        count: int,
        interval_days: Optional[int],
        unit: int,
        first_sequence: int = 1,
        note_suffix: Optional[str] = None,
    ) -> List[DeliveryWindow]:
        interval_days = interval_days or settings.DEFAULT_DELIVERY_INTERVAL_DAYS
        windows = []
        for k in range(count):
            start = base_date + timedelta(days=k * interval_days)
            sequence = first_sequence + k
            windows.append(DeliveryWindow(
                start=start,
                end=start + timedelta(days=settings.INTERVAL_WINDOW_DAYS),
                sequence=sequence,
                note=f"第{unit + 1}份商品 - 第{sequence}次发货（{note_suffix or f'间隔{interval_days}天'}）",
            ))
        return windows

    def _solar_term(
        self,
        base_date: datetime,
        count: int,
        periods: Sequence[CalendarPeriod],
        unit: int,
    ) -> List[DeliveryWindow]:
        if not periods:
            return self._interval(base_date, count, self.fallback_interval_days, unit)

        windows = [
            DeliveryWindow(
                start=p.start_time,
                end=p.end_time,
                sequence=k + 1,
                solar_term_id=p.id,
                note=f"第{unit + 1}份商品 - {p.name}节气发货",
            )
            for k, p in enumerate(periods[:count])
        ]
        # 节气不足时从最后一个窗口结束时间起按固定间隔补齐，序号连续
        if len(windows) < count:
            windows.extend(self._interval(
                windows[-1].end,
                count - len(windows),
                self.fallback_interval_days,
                unit,
                first_sequence=len(windows) + 1,
                note_suffix="节气补充",
            ))
        return windows
