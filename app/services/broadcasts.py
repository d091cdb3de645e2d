from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.models import BroadcastTarget, Manager, NotificationType
from app.services.notification_center import create_notification, list_active_recipients
from app.settings import get_app_timezone

logger = logging.getLogger("app.broadcasts")

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")


def resolve_broadcast_recipients(
    session: Session,
    *,
    target_type: BroadcastTarget,
    department_id: int | None = None,
) -> list[Manager]:
    if target_type == BroadcastTarget.ADMINS:
        return list_active_recipients(session, admins_only=True)
    if target_type == BroadcastTarget.DEPARTMENT:
        if department_id is None:
            raise ValueError("Selecione um departamento para envio por departamento.")
        return list_active_recipients(session, department_id=department_id)
    return list_active_recipients(session)


def render_variables(
    text: str,
    variables: dict[str, Any] | None,
    *,
    user_name: str | None = None,
    now_utc: datetime | None = None,
) -> str:
    """Replace ``{{name}}`` placeholders.

    Custom variables win over the built-ins ``user_name``, ``current_date``
    and ``current_period``; unknown placeholders are left untouched.
    """
    local_now = (now_utc or datetime.now(timezone.utc)).astimezone(get_app_timezone())
    values: dict[str, str] = {
        "current_date": local_now.strftime("%d/%m/%Y"),
        "current_period": local_now.strftime("%m/%Y"),
    }
    if user_name:
        values["user_name"] = user_name
    for key, value in (variables or {}).items():
        values[str(key)] = str(value)

    def _replace(match: re.Match[str]) -> str:
        return values.get(match.group(1), match.group(0))

    return PLACEHOLDER_PATTERN.sub(_replace, text or "")


def send_broadcast(
    session: Session,
    *,
    title: str,
    message: str,
    notification_type: NotificationType = NotificationType.INFO,
    target_type: BroadcastTarget = BroadcastTarget.ALL,
    department_id: int | None = None,
    variables: dict[str, Any] | None = None,
    now_utc: datetime | None = None,
    extra_metadata: dict[str, Any] | None = None,
    commit: bool = True,
) -> int:
    reference_utc = now_utc or datetime.now(timezone.utc)
    recipients = resolve_broadcast_recipients(
        session,
        target_type=target_type,
        department_id=department_id,
    )
    if not recipients:
        logger.warning(
            "broadcast_without_recipients",
            extra={"target_type": target_type.value, "department_id": department_id},
        )
        return 0

    metadata: dict[str, Any] = {
        "broadcast_type": target_type.value,
        "department_id": department_id,
        "processed_variables": dict(variables or {}),
        "direct_broadcast": True,
    }
    metadata.update(extra_metadata or {})

    for recipient in recipients:
        create_notification(
            session,
            user_id=str(recipient.user_id),
            title=render_variables(title, variables, user_name=recipient.name, now_utc=reference_utc),
            message=render_variables(message, variables, user_name=recipient.name, now_utc=reference_utc),
            notification_type=notification_type,
            metadata=metadata,
            created_at=reference_utc,
        )
    if commit:
        session.commit()

    logger.info(
        "broadcast_sent",
        extra={
            "target_type": target_type.value,
            "department_id": department_id,
            "recipients": len(recipients),
        },
    )
    return len(recipients)
