from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from app.models import MetricFrequency
from app.services.notification_settings import ReminderConfig

FREQUENCY_ORDER = (
    MetricFrequency.DAILY,
    MetricFrequency.WEEKLY,
    MetricFrequency.MONTHLY,
    MetricFrequency.QUARTERLY,
    MetricFrequency.YEARLY,
)

PERIOD_LABELS = {
    MetricFrequency.DAILY: "hoje",
    MetricFrequency.WEEKLY: "desta semana",
    MetricFrequency.MONTHLY: "deste mês",
    MetricFrequency.QUARTERLY: "deste trimestre",
    MetricFrequency.YEARLY: "deste ano",
}

FREQUENCY_ADJECTIVES = {
    MetricFrequency.DAILY: "diária(s)",
    MetricFrequency.WEEKLY: "semanal(is)",
    MetricFrequency.MONTHLY: "mensal(is)",
    MetricFrequency.QUARTERLY: "trimestral(is)",
    MetricFrequency.YEARLY: "anual(is)",
}


@dataclass(frozen=True, slots=True)
class PeriodWindow:
    frequency: MetricFrequency
    start: date
    end: date
    label: str

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def js_weekday(value: date) -> int:
    """Weekday numbered from Sunday = 0, as stored in reminder settings."""
    return value.isoweekday() % 7


def month_end(value: date) -> date:
    return value.replace(day=calendar.monthrange(value.year, value.month)[1])


def quarter_bounds(value: date) -> tuple[date, date]:
    quarter = (value.month - 1) // 3
    start = date(value.year, quarter * 3 + 1, 1)
    end = month_end(date(value.year, quarter * 3 + 3, 1))
    return start, end


def period_window(frequency: MetricFrequency, today: date) -> PeriodWindow:
    if frequency == MetricFrequency.DAILY:
        start, end = today, today
    elif frequency == MetricFrequency.WEEKLY:
        start = today - timedelta(days=today.weekday())
        end = start + timedelta(days=6)
    elif frequency == MetricFrequency.MONTHLY:
        start, end = today.replace(day=1), month_end(today)
    elif frequency == MetricFrequency.QUARTERLY:
        start, end = quarter_bounds(today)
    else:
        start, end = date(today.year, 1, 1), date(today.year, 12, 31)
    return PeriodWindow(frequency=frequency, start=start, end=end, label=PERIOD_LABELS[frequency])


def days_until_quarter_end(today: date) -> int:
    return (quarter_bounds(today)[1] - today).days


def days_until_year_end(today: date) -> int:
    return (date(today.year, 12, 31) - today).days


def due_frequencies(now_local: datetime, config: ReminderConfig) -> list[MetricFrequency]:
    """Return the frequency classes whose reminders fire at ``now_local``.

    Each rule is evaluated on its own; several classes may be due in the same run.
    """
    today = now_local.date()
    hour = now_local.hour
    due: list[MetricFrequency] = []

    if hour == config.daily.reminder_hour:
        due.append(MetricFrequency.DAILY)
    if js_weekday(today) == config.weekly.reminder_day and hour == config.weekly.reminder_hour:
        due.append(MetricFrequency.WEEKLY)
    if (config.monthly.deadline_day - today.day) in config.monthly.reminder_days:
        due.append(MetricFrequency.MONTHLY)
    if days_until_quarter_end(today) in config.quarterly.reminder_days_before:
        due.append(MetricFrequency.QUARTERLY)
    if days_until_year_end(today) in config.yearly.reminder_days_before:
        due.append(MetricFrequency.YEARLY)
    return due
