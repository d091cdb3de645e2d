from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import NotificationSetting

logger = logging.getLogger("app.notification_settings")

SETTING_KEY_DAILY = "daily_reminder"
SETTING_KEY_WEEKLY = "weekly_reminder"
SETTING_KEY_MONTHLY = "monthly_reminder"
SETTING_KEY_QUARTERLY = "quarterly_reminder"
SETTING_KEY_YEARLY = "yearly_reminder"
SETTING_KEYS = (
    SETTING_KEY_DAILY,
    SETTING_KEY_WEEKLY,
    SETTING_KEY_MONTHLY,
    SETTING_KEY_QUARTERLY,
    SETTING_KEY_YEARLY,
)


@dataclass(frozen=True, slots=True)
class DailyReminderConfig:
    reminder_hour: int = 18


@dataclass(frozen=True, slots=True)
class WeeklyReminderConfig:
    # 0 = Sunday, 1 = Monday
    reminder_day: int = 1
    reminder_hour: int = 9


@dataclass(frozen=True, slots=True)
class MonthlyReminderConfig:
    deadline_day: int = 25
    reminder_days: tuple[int, ...] = (3, 5, 7)


@dataclass(frozen=True, slots=True)
class PeriodReminderConfig:
    reminder_days_before: tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class ReminderConfig:
    daily: DailyReminderConfig = field(default_factory=DailyReminderConfig)
    weekly: WeeklyReminderConfig = field(default_factory=WeeklyReminderConfig)
    monthly: MonthlyReminderConfig = field(default_factory=MonthlyReminderConfig)
    quarterly: PeriodReminderConfig = field(default_factory=lambda: PeriodReminderConfig((7, 15, 30)))
    yearly: PeriodReminderConfig = field(default_factory=lambda: PeriodReminderConfig((15, 30, 60)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "daily": {"reminder_hour": self.daily.reminder_hour},
            "weekly": {
                "reminder_day": self.weekly.reminder_day,
                "reminder_hour": self.weekly.reminder_hour,
            },
            "monthly": {
                "deadline_day": self.monthly.deadline_day,
                "reminder_days": list(self.monthly.reminder_days),
            },
            "quarterly": {"reminder_days_before": list(self.quarterly.reminder_days_before)},
            "yearly": {"reminder_days_before": list(self.yearly.reminder_days_before)},
        }


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return default


def _as_int_tuple(value: Any, default: tuple[int, ...]) -> tuple[int, ...]:
    if not isinstance(value, list):
        return default
    items: list[int] = []
    for item in value:
        parsed = _as_int(item, -1)
        if parsed < 0:
            return default
        items.append(parsed)
    return tuple(items)


def _as_object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def build_reminder_config(raw_settings: dict[str, Any]) -> ReminderConfig:
    """Merge stored setting values over the built-in defaults.

    Keys that are missing, null or not JSON objects keep their defaults;
    individual fields with the wrong type fall back field by field.
    """
    defaults = ReminderConfig()
    daily = _as_object(raw_settings.get(SETTING_KEY_DAILY))
    weekly = _as_object(raw_settings.get(SETTING_KEY_WEEKLY))
    monthly = _as_object(raw_settings.get(SETTING_KEY_MONTHLY))
    quarterly = _as_object(raw_settings.get(SETTING_KEY_QUARTERLY))
    yearly = _as_object(raw_settings.get(SETTING_KEY_YEARLY))

    return ReminderConfig(
        daily=DailyReminderConfig(
            reminder_hour=_as_int(daily.get("reminder_hour"), defaults.daily.reminder_hour),
        ),
        weekly=WeeklyReminderConfig(
            reminder_day=_as_int(weekly.get("reminder_day"), defaults.weekly.reminder_day),
            reminder_hour=_as_int(weekly.get("reminder_hour"), defaults.weekly.reminder_hour),
        ),
        monthly=MonthlyReminderConfig(
            deadline_day=_as_int(monthly.get("deadline_day"), defaults.monthly.deadline_day),
            reminder_days=_as_int_tuple(monthly.get("reminder_days"), defaults.monthly.reminder_days),
        ),
        quarterly=PeriodReminderConfig(
            reminder_days_before=_as_int_tuple(
                quarterly.get("reminder_days_before"),
                defaults.quarterly.reminder_days_before,
            ),
        ),
        yearly=PeriodReminderConfig(
            reminder_days_before=_as_int_tuple(
                yearly.get("reminder_days_before"),
                defaults.yearly.reminder_days_before,
            ),
        ),
    )


def load_reminder_config(session: Session) -> ReminderConfig:
    try:
        rows = session.scalars(
            select(NotificationSetting).where(NotificationSetting.setting_key.in_(SETTING_KEYS))
        ).all()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning(
            "notification_settings_unavailable",
            extra={"error": str(exc)[:500]},
        )
        return ReminderConfig()

    raw_settings = {row.setting_key: row.setting_value for row in rows if row.setting_value is not None}
    return build_reminder_config(raw_settings)
