from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Department, Manager, ManagerRole, Notification, NotificationType

REMINDER_DEDUP_WINDOW = timedelta(days=3)
AUDIT_DEDUP_WINDOW = timedelta(days=7)
NO_DEPARTMENT_LABEL = "Sem departamento"


def normalize_utc(value: datetime) -> datetime:
    """Return ``value`` in UTC; naive values are read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def department_names(session: Session, department_ids: Iterable[int | None]) -> dict[int, str]:
    ids = sorted({value for value in department_ids if value is not None})
    if not ids:
        return {}
    rows = session.execute(select(Department.id, Department.name).where(Department.id.in_(ids))).all()
    return {row.id: row.name for row in rows}


def department_label(names: dict[int, str], department_id: int | None) -> str:
    if department_id is None:
        return NO_DEPARTMENT_LABEL
    return names.get(department_id, f"Departamento {department_id}")

def list_active_recipients(
    session: Session,
    *,
    department_id: int | None = None,
    admins_only: bool = False,
) -> list[Manager]:
    stmt = (
        select(Manager)
        .where(
            Manager.is_active.is_(True),
            Manager.user_id.is_not(None),
        )
        .order_by(Manager.id.asc())
    )
    if admins_only:
        stmt = stmt.where(Manager.role == ManagerRole.ADMIN.value)
    if department_id is not None:
        stmt = stmt.where(Manager.department_id == department_id)
    return list(session.scalars(stmt).all())


def list_department_managers(session: Session, department_id: int) -> list[Manager]:
    return list_active_recipients(session, department_id=department_id)


def list_active_admins(session: Session) -> list[Manager]:
    return list_active_recipients(session, admins_only=True)


def has_recent_notification(
    session: Session,
    *,
    alert_type: str,
    since_utc: datetime,
    department_id: int | None = None,
    match_department: bool = False,
    metric_id: int | None = None,
) -> bool:
    """Check for a notification of ``alert_type`` created at or after ``since_utc``.

    With ``match_department`` a ``None`` department matches notifications whose
    metadata carries a null or missing ``department_id``.
    """
    metadata = Notification.metadata_
    stmt = select(Notification.id).where(
        Notification.created_at >= normalize_utc(since_utc),
        metadata["alert_type"].as_string() == alert_type,
    )
    if match_department:
        if department_id is None:
            stmt = stmt.where(metadata["department_id"].as_integer().is_(None))
        else:
            stmt = stmt.where(metadata["department_id"].as_integer() == department_id)
    if metric_id is not None:
        stmt = stmt.where(metadata["metric_id"].as_integer() == metric_id)
    return session.scalar(stmt.limit(1)) is not None


def create_notification(
    session: Session,
    *,
    user_id: str,
    title: str,
    message: str,
    notification_type: NotificationType = NotificationType.INFO,
    metadata: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=notification_type.value,
        metadata_=dict(metadata or {}),
        is_read=False,
        created_at=normalize_utc(created_at or datetime.now(timezone.utc)),
    )
    session.add(notification)
    return notification


def notify_managers(
    session: Session,
    managers: list[Manager],
    *,
    title: str,
    message: str,
    notification_type: NotificationType,
    metadata: dict[str, Any],
    created_at: datetime,
) -> list[Notification]:
    created: list[Notification] = []
    for manager in managers:
        if not manager.user_id:
            continue
        created.append(
            create_notification(
                session,
                user_id=manager.user_id,
                title=title,
                message=message,
                notification_type=notification_type,
                metadata=metadata,
                created_at=created_at,
            )
        )
    return created
