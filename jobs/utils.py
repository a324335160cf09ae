"""支付任务共用的时间与资格判断工具

所有函数均为纯函数，当前时间总是由调用方传入。天数按精确时间差向上取整，
距到期日 2 天零 1 秒计为 3 天。
"""
import calendar
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional

from .types import UrgencyLevel

DEFAULT_REMINDER_DAYS = [7, 3, 1]
DEFAULT_OVERDUE_DAYS = [1, 3, 7, 15, 30]

ONE_DAY = timedelta(days=1)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def clamped_date(year: int, month: int, day: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(day, last_day))


def due_date_for_period(day: int, month: int, year: int) -> datetime:
    """计算账期月份内的到期日

    当月天数不足 ``day`` 时取当月最后一天。
    """
    return clamped_date(year, month, day)


def next_payment_due_date(day: int, base_date: datetime) -> datetime:
    """相对 ``base_date`` 计算下一个每月 ``day`` 日的到期日

    ``base_date`` 已到达或超过 ``day`` 时顺延到下个月（12 月顺延到次年 1 月）。
    结果为当天零点，并截断到当月最后一天。

    Args:
        day: 每月到期日（1-31）。
        base_date: 参考时间。

    Returns:
        到期日。
    """
    year, month = base_date.year, base_date.month
    if base_date.day >= day:
        if month == 12:
            year, month = year + 1, 1
        else:
            month += 1
    return clamped_date(year, month, day)


def billing_period(month: int, year: int) -> str:
    return f"{year:04d}-{month:02d}"


def _ceil_days(delta: timedelta) -> int:
    return -((-delta) // ONE_DAY)


def days_until_due(due_date: datetime, now: datetime) -> int:
    return _ceil_days(due_date - now)


def days_overdue(due_date: datetime, now: datetime) -> int:
    return _ceil_days(now - due_date)


def is_reminder_day(due_date: datetime, reminder_days: Iterable[int],
                    now: datetime) -> bool:
    return days_until_due(due_date, now) in set(reminder_days)


def is_overdue_check_day(due_date: datetime, overdue_days: Iterable[int],
                         now: datetime) -> bool:
    return days_overdue(due_date, now) in set(overdue_days)


def sent_within_window(last_sent: Optional[datetime], now: datetime,
                       window_days: int) -> bool:
    """判断最近一次通知是否在 ``window_days`` 天之内"""
    if last_sent is None:
        return False
    return _ceil_days(now - last_sent) < window_days


def is_payment_system_active(config, now: datetime) -> bool:
    """判断支付任务在 ``now`` 时是否可以执行

    没有配置视为未启用；配置未设置开始日期时不受其限制。
    """
    if config is None or not config.is_enabled:
        return False
    if config.start_date is None:
        return True
    return now >= config.start_date


def is_customer_excluded(config, customer_id: int,
                         customer_settings=None) -> bool:
    if config is not None and customer_id in (config.excluded_customers or []):
        return True
    return bool(customer_settings is not None and customer_settings.excluded_from_system)


def notifications_enabled(customer_settings) -> bool:
    if customer_settings is None:
        return True
    return customer_settings.notifications_enabled is not False


def _normalize_days(days: Optional[Iterable[Any]]) -> List[int]:
    result = []
    for day in days or []:
        # 存储的列表中可能是 {"days": n} 形式
        if isinstance(day, dict):
            day = day.get("days")
        if isinstance(day, int) and not isinstance(day, bool):
            result.append(day)
    return result


def resolve_reminder_days(config, customer_settings=None) -> List[int]:
    """依次取顾客自定义天数、全局配置、默认值"""
    if customer_settings is not None:
        custom = _normalize_days(customer_settings.custom_reminder_days)
        if custom:
            return custom
    if config is not None:
        configured = _normalize_days(config.reminder_days)
        if configured:
            return configured
    return list(DEFAULT_REMINDER_DAYS)


def resolve_overdue_days(config) -> List[int]:
    if config is not None:
        configured = _normalize_days(config.overdue_check_days)
        if configured:
            return configured
    return list(DEFAULT_OVERDUE_DAYS)


def urgency_for_days_overdue(days: int) -> UrgencyLevel:
    if days < 7:
        return UrgencyLevel.LOW
    if days < 15:
        return UrgencyLevel.MEDIUM
    if days < 30:
        return UrgencyLevel.HIGH
    return UrgencyLevel.CRITICAL

