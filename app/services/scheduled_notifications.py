from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.audit import write_log
from app.db import SessionLocal
from app.models import (
    BroadcastTarget,
    LogLevel,
    MetricDefinition,
    MetricValue,
    NotificationType,
    ScheduledNotification,
    ScheduleType,
)
from app.services.broadcasts import send_broadcast
from app.services.notification_center import (
    department_label,
    department_names,
    has_recent_notification,
    list_active_admins,
    normalize_utc,
    notify_managers,
)
from app.services.reminder_windows import month_end
from app.settings import get_app_timezone

logger = logging.getLogger("app.scheduled_notifications")

STALE_METRIC_CHECK_TIME = time(9, 0)
STALE_METRIC_AGE = timedelta(days=7)
STALE_METRIC_DEDUP_WINDOW = timedelta(days=1)
ALERT_METRIC_OVERDUE = "metric_overdue"
UNKNOWN_STALE_DAYS = "mais de 30"


@dataclass(frozen=True, slots=True)
class StaleMetric:
    metric: MetricDefinition
    last_value_date: date | None
    days_since_update: int | None


def _parse_schedule_time(raw: str | None) -> time | None:
    try:
        hour_text, minute_text = (raw or "").strip().split(":")
        return time(int(hour_text), int(minute_text))
    except ValueError:
        return None


def _week_start_local(now_local: datetime) -> datetime:
    days_since_sunday = now_local.isoweekday() % 7
    start = now_local - timedelta(days=days_since_sunday)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def current_occurrence(
    schedule: ScheduledNotification,
    *,
    now_local: datetime,
) -> tuple[datetime, datetime] | None:
    """Return ``(period_start, occurrence)`` of a recurring schedule in local time.

    Weekly periods start on Sunday 00:00 and monthly ones on the first of the
    month. A monthly day past the end of the month falls on its last day.
    """
    run_time = _parse_schedule_time(schedule.schedule_time)
    if run_time is None:
        return None
    tz = now_local.tzinfo
    today_start = now_local.replace(hour=0, minute=0, second=0, microsecond=0)

    if schedule.schedule_type == ScheduleType.DAILY.value:
        period_start = today_start
        run_date = now_local.date()
    elif schedule.schedule_type == ScheduleType.WEEKLY.value:
        if schedule.schedule_day is None or not 0 <= schedule.schedule_day <= 6:
            return None
        period_start = _week_start_local(now_local)
        run_date = period_start.date() + timedelta(days=schedule.schedule_day)
    elif schedule.schedule_type == ScheduleType.MONTHLY.value:
        if schedule.schedule_day is None or schedule.schedule_day < 1:
            return None
        period_start = today_start.replace(day=1)
        last_day = month_end(now_local.date()).day
        run_date = period_start.date().replace(day=min(schedule.schedule_day, last_day))
    else:
        return None

    return period_start, datetime.combine(run_date, run_time, tzinfo=tz)


def is_schedule_due(schedule: ScheduledNotification, *, now_utc: datetime) -> bool:
    """A schedule is due once its occurrence in the current period has passed
    and nothing was sent since the period started."""
    tz = get_app_timezone()
    reference_utc = normalize_utc(now_utc)
    last_sent_utc = normalize_utc(schedule.last_sent_at) if schedule.last_sent_at is not None else None

    if schedule.schedule_type == ScheduleType.ONCE.value:
        if schedule.scheduled_for is None:
            return False
        return normalize_utc(schedule.scheduled_for) <= reference_utc and last_sent_utc is None

    now_local = reference_utc.astimezone(tz)
    occurrence = current_occurrence(schedule, now_local=now_local)
    if occurrence is None:
        return False
    period_start, run_at = occurrence
    if now_local < run_at:
        return False
    return last_sent_utc is None or last_sent_utc.astimezone(tz) < period_start


def _resolve_target(schedule: ScheduledNotification) -> BroadcastTarget:
    try:
        return BroadcastTarget((schedule.target_type or "").strip().lower())
    except ValueError:
        return BroadcastTarget.ALL


def _resolve_type(raw: str | None) -> NotificationType:
    try:
        return NotificationType((raw or "").strip().lower())
    except ValueError:
        return NotificationType.INFO


def stale_check_started_at(now_utc: datetime) -> datetime | None:
    """Return today's check time in UTC once the local clock has reached it."""
    now_local = normalize_utc(now_utc).astimezone(get_app_timezone())
    check_at = datetime.combine(now_local.date(), STALE_METRIC_CHECK_TIME, tzinfo=now_local.tzinfo)
    if now_local < check_at:
        return None
    return check_at.astimezone(timezone.utc)


def find_stale_metrics(session: Session, *, now_utc: datetime) -> list[StaleMetric]:
    today = normalize_utc(now_utc).astimezone(get_app_timezone()).date()
    threshold = today - STALE_METRIC_AGE
    latest_dates = (
        select(
            MetricValue.metrics_definition_id.label("metric_id"),
            func.max(MetricValue.date).label("last_date"),
        )
        .group_by(MetricValue.metrics_definition_id)
        .subquery()
    )
    rows = session.execute(
        select(MetricDefinition, latest_dates.c.last_date)
        .outerjoin(latest_dates, latest_dates.c.metric_id == MetricDefinition.id)
        .where(MetricDefinition.is_active.is_(True))
        .order_by(MetricDefinition.id.asc())
    ).all()

    stale: list[StaleMetric] = []
    for metric, last_date in rows:
        if last_date is None:
            stale.append(StaleMetric(metric=metric, last_value_date=None, days_since_update=None))
            continue
        if last_date < threshold:
            stale.append(
                StaleMetric(
                    metric=metric,
                    last_value_date=last_date,
                    days_since_update=(today - last_date).days,
                )
            )
    return stale


def notify_stale_metrics(
    session: Session,
    *,
    now_utc: datetime,
    since_utc: datetime | None = None,
) -> tuple[int, int]:
    """Warn admins about metrics not updated for more than a week.

    A metric already reported at or after ``since_utc`` (default: one day
    back) is skipped. Returns (stale metrics, notifications).
    """
    stale_metrics = find_stale_metrics(session, now_utc=now_utc)
    if not stale_metrics:
        return 0, 0

    admins = list_active_admins(session)
    names = department_names(session, [item.metric.department_id for item in stale_metrics])
    since_utc = since_utc or now_utc - STALE_METRIC_DEDUP_WINDOW
    sent = 0
    for item in stale_metrics:
        if has_recent_notification(
            session,
            alert_type=ALERT_METRIC_OVERDUE,
            since_utc=since_utc,
            metric_id=item.metric.id,
        ):
            continue
        department_name = department_label(names, item.metric.department_id)
        days_label: Any = item.days_since_update if item.days_since_update is not None else UNKNOWN_STALE_DAYS
        created = notify_managers(
            session,
            admins,
            title="Métrica em Atraso",
            message=(
                f'A métrica "{item.metric.name}" do departamento "{department_name}" '
                f"não foi atualizada há {days_label} dias"
            ),
            notification_type=NotificationType.WARNING,
            metadata={
                "alert_type": ALERT_METRIC_OVERDUE,
                "metric_id": item.metric.id,
                "metric_name": item.metric.name,
                "department_id": item.metric.department_id,
                "department_name": department_name,
                "days_overdue": days_label,
                "last_value_date": item.last_value_date.isoformat() if item.last_value_date else None,
            },
            created_at=now_utc,
        )
        sent += len(created)
    if sent:
        session.commit()
    return len(stale_metrics), sent


def run_scheduled_notifications(
    now_utc: datetime | None = None,
    db: Session | None = None,
) -> dict[str, Any]:
    if db is None:
        with SessionLocal() as managed_db:
            return run_scheduled_notifications(now_utc, db=managed_db)

    session = db
    reference_utc = normalize_utc(now_utc or datetime.now(timezone.utc))
    schedules = list(
        session.scalars(
            select(ScheduledNotification)
            .options(selectinload(ScheduledNotification.template))
            .where(ScheduledNotification.is_active.is_(True))
            .order_by(ScheduledNotification.id.asc())
        ).all()
    )

    sent_count = 0
    for schedule in schedules:
        template = schedule.template
        if template is None or not template.is_active:
            continue
        if not is_schedule_due(schedule, now_utc=reference_utc):
            continue

        try:
            created = send_broadcast(
                session,
                title=template.title,
                message=template.message,
                notification_type=_resolve_type(template.type),
                target_type=_resolve_target(schedule),
                department_id=schedule.target_id,
                now_utc=reference_utc,
                extra_metadata={
                    "direct_broadcast": False,
                    "template_id": template.id,
                    "scheduled_notification_id": schedule.id,
                },
                commit=False,
            )
        except Exception as exc:
            session.rollback()
            logger.exception(
                "scheduled_notification_broadcast_failed",
                extra={"scheduled_notification_id": schedule.id, "template_id": template.id},
            )
            write_log(
                session,
                level=LogLevel.ERROR,
                message=f"Falha ao enviar notificação agendada {schedule.id}: {exc}",
                details={"scheduled_notification_id": schedule.id, "template_id": template.id},
            )
            continue

        schedule.last_sent_at = reference_utc
        if schedule.schedule_type == ScheduleType.ONCE.value:
            schedule.is_active = False
        session.commit()
        sent_count += created
        logger.info(
            "scheduled_notification_sent",
            extra={
                "scheduled_notification_id": schedule.id,
                "template_id": template.id,
                "schedule_type": schedule.schedule_type,
                "recipients": created,
            },
        )

    overdue_metrics = 0
    check_started_at = stale_check_started_at(reference_utc)
    if check_started_at is not None:
        try:
            overdue_metrics, overdue_sent = notify_stale_metrics(
                session,
                now_utc=reference_utc,
                since_utc=check_started_at,
            )
        except SQLAlchemyError:
            session.rollback()
            logger.exception("stale_metric_check_failed")
        else:
            sent_count += overdue_sent

    return {
        "sent_notifications": sent_count,
        "overdue_metrics": overdue_metrics,
        "timestamp": reference_utc.isoformat(),
    }
