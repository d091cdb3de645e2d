from __future__ import annotations

import logging
import traceback
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.audit import write_log
from app.db import SessionLocal
from app.models import (
    JustificationStatus,
    LogLevel,
    MetricDefinition,
    MetricFrequency,
    MetricJustification,
    MetricValue,
    NotificationType,
)
from app.services.notification_center import (
    AUDIT_DEDUP_WINDOW,
    REMINDER_DEDUP_WINDOW,
    department_label,
    department_names,
    has_recent_notification,
    list_active_admins,
    list_department_managers,
    normalize_utc,
    notify_managers,
)
from app.services.notification_settings import ReminderConfig, load_reminder_config
from app.services.reminder_windows import (
    FREQUENCY_ADJECTIVES,
    FREQUENCY_ORDER,
    PeriodWindow,
    due_frequencies,
    period_window,
)
from app.settings import get_app_timezone

logger = logging.getLogger("app.automatic_notifications")

STRATEGY_NAME = "expanded_frequency_notifications"
PENDING_JUSTIFICATION_AGE = timedelta(days=3)

ALERT_METRICS_WITHOUT_TARGETS = "metrics_without_targets"
ALERT_DEPARTMENT_GOALS_ACHIEVED = "department_goals_achieved"
ALERT_ADMIN_UNACHIEVED_SUMMARY = "admin_unachieved_goals_summary"
ALERT_PENDING_JUSTIFICATIONS = "pending_justifications"


def reminder_alert_type(frequency: MetricFrequency) -> str:
    return f"{frequency.value}_metrics_reminder"


@dataclass(slots=True)
class GoalAuditResult:
    achieved: dict[int | None, list[MetricDefinition]] = field(default_factory=dict)
    unachieved: dict[int | None, list[MetricDefinition]] = field(default_factory=dict)
    notifications_sent: int = 0

    @property
    def achieved_count(self) -> int:
        return sum(len(items) for items in self.achieved.values())

    @property
    def unachieved_count(self) -> int:
        return sum(len(items) for items in self.unachieved.values())


@dataclass(slots=True)
class AutomaticNotificationSummary:
    processed_at: datetime
    notifications_sent: int = 0
    achievements_found: int = 0
    pending_justifications: int = 0
    metrics_without_targets: int = 0
    overdue_missed_count: int = 0
    due_frequencies: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "notifications_sent": self.notifications_sent,
            "achievements_found": self.achievements_found,
            "pending_justifications": self.pending_justifications,
            "metrics_without_targets": self.metrics_without_targets,
            "overdue_missed_count": self.overdue_missed_count,
            "processed_at": self.processed_at.isoformat(),
            "status": "success",
            "strategy": STRATEGY_NAME,
        }


def _group_by_department(metrics: Iterable[MetricDefinition]) -> dict[int | None, list[MetricDefinition]]:
    grouped: dict[int | None, list[MetricDefinition]] = defaultdict(list)
    for metric in metrics:
        grouped[metric.department_id].append(metric)
    return dict(grouped)


def _department_count_summary(
    grouped: dict[int | None, list[MetricDefinition]],
    names: dict[int, str],
) -> str:
    parts = sorted(
        (department_label(names, department_id), len(items))
        for department_id, items in grouped.items()
        if items
    )
    return "; ".join(f"{label}: {count}" for label, count in parts)


def _metric_names(metrics: Iterable[MetricDefinition]) -> str:
    return ", ".join(metric.name for metric in metrics)


def has_value_in_window(session: Session, metric_id: int, window: PeriodWindow) -> bool:
    existing = session.scalar(
        select(MetricValue.id)
        .where(
            MetricValue.metrics_definition_id == metric_id,
            MetricValue.date >= window.start,
            MetricValue.date <= window.end,
        )
        .limit(1)
    )
    return existing is not None


def load_active_metrics(session: Session, frequency: MetricFrequency) -> list[MetricDefinition]:
    return list(
        session.scalars(
            select(MetricDefinition)
            .where(
                MetricDefinition.is_active.is_(True),
                MetricDefinition.frequency == frequency.value,
            )
            .order_by(MetricDefinition.id.asc())
        ).all()
    )


def find_pending_metrics(
    session: Session,
    metrics: list[MetricDefinition],
    window: PeriodWindow,
) -> dict[int | None, list[MetricDefinition]]:
    pending: dict[int | None, list[MetricDefinition]] = {}
    for department_id, items in _group_by_department(metrics).items():
        missing = [metric for metric in items if not has_value_in_window(session, metric.id, window)]
        if missing:
            pending[department_id] = missing
    return pending


def _reminder_text(
    frequency: MetricFrequency,
    *,
    department_label: str,
    pending: list[MetricDefinition],
    window: PeriodWindow,
    config: ReminderConfig,
) -> tuple[str, str]:
    count = len(pending)
    names = _metric_names(pending)
    if frequency == MetricFrequency.MONTHLY:
        title = f"Lembrete: {count} métrica(s) pendente(s)"
        message = (
            f"O departamento {department_label} ainda não registrou valores {window.label} para: {names}. "
            f"Registre os valores até o dia {config.monthly.deadline_day}."
        )
        return title, message

    title = f"Lembrete: {count} métrica(s) {FREQUENCY_ADJECTIVES[frequency]} pendente(s)"
    message = f"O departamento {department_label} ainda não registrou valores {window.label} para: {names}."
    return title, message


def dispatch_frequency_reminders(
    session: Session,
    frequency: MetricFrequency,
    *,
    config: ReminderConfig,
    today: date,
    now_utc: datetime,
) -> int:
    """Remind department managers about metrics of ``frequency`` lacking a value this period.

    Returns the number of notifications inserted. A failure while loading the
    definitions only aborts this frequency class.
    """
    window = period_window(frequency, today)
    alert_type = reminder_alert_type(frequency)
    try:
        metrics = load_active_metrics(session, frequency)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(
            "metric_reminder_definitions_unavailable",
            extra={"frequency": frequency.value, "error": str(exc)[:500]},
        )
        return 0

    pending_by_department = find_pending_metrics(session, metrics, window)
    if not pending_by_department:
        return 0

    names = department_names(session, pending_by_department.keys())
    since_utc = now_utc - REMINDER_DEDUP_WINDOW
    sent = 0
    for department_id, pending in pending_by_department.items():
        department_name = department_label(names, department_id)
        if has_recent_notification(
            session,
            alert_type=alert_type,
            since_utc=since_utc,
            department_id=department_id,
            match_department=True,
        ):
            logger.info(
                "metric_reminder_recently_sent",
                extra={"frequency": frequency.value, "department_id": department_id},
            )
            continue

        if department_id is None:
            logger.info(
                "metric_reminder_without_department",
                extra={"frequency": frequency.value, "pending_metrics": [metric.id for metric in pending]},
            )
            continue

        managers = list_department_managers(session, department_id)
        if not managers:
            continue

        title, message = _reminder_text(
            frequency,
            department_label=department_name,
            pending=pending,
            window=window,
            config=config,
        )
        created = notify_managers(
            session,
            managers,
            title=title,
            message=message,
            notification_type=NotificationType.WARNING,
            metadata={
                "alert_type": alert_type,
                "department_id": department_id,
                "department_name": department_name,
                "frequency": frequency.value,
                "pending_metrics": [metric.name for metric in pending],
                "period_start": window.start.isoformat(),
                "period_end": window.end.isoformat(),
            },
            created_at=now_utc,
        )
        session.commit()
        sent += len(created)

    return sent


def audit_metrics_without_targets(session: Session, *, now_utc: datetime) -> tuple[int, int]:
    """Tell admins about active metrics without a target. Returns (metrics found, notifications sent)."""
    metrics = list(
        session.scalars(
            select(MetricDefinition)
            .where(
                MetricDefinition.is_active.is_(True),
                or_(MetricDefinition.target.is_(None), MetricDefinition.target == 0),
            )
            .order_by(MetricDefinition.id.asc())
        ).all()
    )
    if not metrics:
        return 0, 0

    if has_recent_notification(
        session,
        alert_type=ALERT_METRICS_WITHOUT_TARGETS,
        since_utc=now_utc - AUDIT_DEDUP_WINDOW,
    ):
        return len(metrics), 0

    admins = list_active_admins(session)
    if not admins:
        return len(metrics), 0

    grouped = _group_by_department(metrics)
    names = department_names(session, grouped.keys())
    summary = _department_count_summary(grouped, names)
    created = notify_managers(
        session,
        admins,
        title=f"{len(metrics)} métrica(s) sem meta definida",
        message=f"Existem métricas ativas sem meta definida. {summary}",
        notification_type=NotificationType.WARNING,
        metadata={
            "alert_type": ALERT_METRICS_WITHOUT_TARGETS,
            "metrics_count": len(metrics),
            "departments_summary": summary,
        },
        created_at=now_utc,
    )
    session.commit()
    return len(metrics), len(created)


def is_target_achieved(current: float, target: float, lower_is_better: bool) -> bool:
    if lower_is_better:
        return current <= target
    return current >= target


def latest_metric_value(session: Session, metric_id: int) -> MetricValue | None:
    return session.scalar(
        select(MetricValue)
        .where(MetricValue.metrics_definition_id == metric_id)
        .order_by(MetricValue.date.desc(), MetricValue.id.desc())
        .limit(1)
    )


def classify_goal_achievements(session: Session) -> GoalAuditResult:
    metrics = session.scalars(
        select(MetricDefinition)
        .where(
            MetricDefinition.is_active.is_(True),
            MetricDefinition.target.is_not(None),
            MetricDefinition.target != 0,
        )
        .order_by(MetricDefinition.id.asc())
    ).all()

    result = GoalAuditResult()
    achieved: dict[int | None, list[MetricDefinition]] = defaultdict(list)
    unachieved: dict[int | None, list[MetricDefinition]] = defaultdict(list)
    for metric in metrics:
        latest = latest_metric_value(session, metric.id)
        if latest is None or metric.target is None:
            continue
        if is_target_achieved(latest.value, metric.target, metric.lower_is_better):
            achieved[metric.department_id].append(metric)
        else:
            unachieved[metric.department_id].append(metric)
    result.achieved = dict(achieved)
    result.unachieved = dict(unachieved)
    return result


def audit_goal_achievements(session: Session, *, now_utc: datetime) -> GoalAuditResult:
    result = classify_goal_achievements(session)
    names = department_names(session, [*result.achieved.keys(), *result.unachieved.keys()])
    since_utc = now_utc - AUDIT_DEDUP_WINDOW

    for department_id, metrics in result.achieved.items():
        if department_id is None:
            continue
        if has_recent_notification(
            session,
            alert_type=ALERT_DEPARTMENT_GOALS_ACHIEVED,
            since_utc=since_utc,
            department_id=department_id,
            match_department=True,
        ):
            continue
        managers = list_department_managers(session, department_id)
        if not managers:
            continue
        department_name = department_label(names, department_id)
        created = notify_managers(
            session,
            managers,
            title=f"Parabéns! {len(metrics)} meta(s) atingida(s)",
            message=f"O departamento {department_name} atingiu a meta em: {_metric_names(metrics)}.",
            notification_type=NotificationType.SUCCESS,
            metadata={
                "alert_type": ALERT_DEPARTMENT_GOALS_ACHIEVED,
                "department_id": department_id,
                "department_name": department_name,
                "achieved_metrics": [metric.name for metric in metrics],
            },
            created_at=now_utc,
        )
        session.commit()
        result.notifications_sent += len(created)

    unachieved_total = result.unachieved_count
    if unachieved_total <= 0:
        return result
    if has_recent_notification(
        session,
        alert_type=ALERT_ADMIN_UNACHIEVED_SUMMARY,
        since_utc=since_utc,
    ):
        return result

    admins = list_active_admins(session)
    if not admins:
        return result
    summary = _department_count_summary(result.unachieved, names)
    created = notify_managers(
        session,
        admins,
        title=f"{unachieved_total} métrica(s) abaixo da meta",
        message=f"Métricas que não atingiram a meta por departamento: {summary}",
        notification_type=NotificationType.WARNING,
        metadata={
            "alert_type": ALERT_ADMIN_UNACHIEVED_SUMMARY,
            "unachieved_count": unachieved_total,
            "departments_summary": summary,
        },
        created_at=now_utc,
    )
    session.commit()
    result.notifications_sent += len(created)
    return result


def count_overdue_justifications(session: Session, *, now_utc: datetime) -> int:
    count = session.scalar(
        select(func.count(MetricJustification.id)).where(
            MetricJustification.status == JustificationStatus.PENDING.value,
            MetricJustification.created_at < normalize_utc(now_utc) - PENDING_JUSTIFICATION_AGE,
        )
    )
    return int(count or 0)


def audit_pending_justifications(session: Session, *, now_utc: datetime) -> tuple[int, int]:
    # Re-notifies on every qualifying run; there is no de-dup window for this alert.
    pending_count = count_overdue_justifications(session, now_utc=now_utc)
    if pending_count <= 0:
        return 0, 0

    admins = list_active_admins(session)
    created = notify_managers(
        session,
        admins,
        title="Justificativas pendentes de revisão",
        message=f"Existem {pending_count} justificativa(s) aguardando revisão há mais de 3 dias.",
        notification_type=NotificationType.WARNING,
        metadata={
            "alert_type": ALERT_PENDING_JUSTIFICATIONS,
            "pending_count": pending_count,
        },
        created_at=now_utc,
    )
    if created:
        session.commit()
    return pending_count, len(created)


def run_automatic_notifications(
    now_utc: datetime | None = None,
    db: Session | None = None,
) -> dict[str, Any]:
    if db is None:
        with SessionLocal() as managed_db:
            return run_automatic_notifications(now_utc, db=managed_db)

    session = db
    reference_utc = normalize_utc(now_utc or datetime.now(timezone.utc))
    local_now = reference_utc.astimezone(get_app_timezone())
    summary = AutomaticNotificationSummary(processed_at=reference_utc)

    write_log(
        session,
        level=LogLevel.INFO,
        message="Processamento de notificações automáticas iniciado",
        details={"started_at": reference_utc.isoformat(), "strategy": STRATEGY_NAME},
        created_at=reference_utc,
    )

    try:
        config = load_reminder_config(session)
        due = due_frequencies(local_now, config)
        summary.due_frequencies = [frequency.value for frequency in due]

        for frequency in FREQUENCY_ORDER:
            if frequency not in due:
                continue
            summary.notifications_sent += dispatch_frequency_reminders(
                session,
                frequency,
                config=config,
                today=local_now.date(),
                now_utc=reference_utc,
            )

        targetless_count, targetless_sent = audit_metrics_without_targets(session, now_utc=reference_utc)
        summary.metrics_without_targets = targetless_count
        summary.notifications_sent += targetless_sent

        goals = audit_goal_achievements(session, now_utc=reference_utc)
        summary.achievements_found = goals.achieved_count
        summary.overdue_missed_count = goals.unachieved_count
        summary.notifications_sent += goals.notifications_sent

        pending_count, justification_sent = audit_pending_justifications(session, now_utc=reference_utc)
        summary.pending_justifications = pending_count
        summary.notifications_sent += justification_sent
    except Exception as exc:
        session.rollback()
        logger.exception("automatic_notifications_failed")
        write_log(
            session,
            level=LogLevel.ERROR,
            message=f"Erro no processamento de notificações automáticas: {exc}",
            details={
                "error": str(exc),
                "stack": traceback.format_exc(),
                "partial_notifications_sent": summary.notifications_sent,
            },
        )
        raise

    result = summary.to_dict()
    write_log(
        session,
        level=LogLevel.INFO,
        message="Processamento de notificações automáticas concluído",
        details={**result, "due_frequencies": summary.due_frequencies, "config": config.to_dict()},
        created_at=reference_utc,
    )
    logger.info(
        "automatic_notifications_completed",
        extra={**result, "due_frequencies": summary.due_frequencies},
    )
    return result
