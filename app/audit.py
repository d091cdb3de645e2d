from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.models import Log, LogLevel

logger = logging.getLogger("app.audit")

_PYTHON_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def write_log(
    db: Session,
    *,
    level: LogLevel,
    message: str,
    details: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> Log | None:
    """Append one row to the ``logs`` table and mirror it to the process log.

    A failed write is rolled back and reported but never raised, so the
    caller's own outcome is not masked by the audit trail.
    """
    entry = Log(
        level=level.value,
        message=message,
        details=details or {},
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(entry)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "log_write_failed",
            extra={"log_level": level.value, "log_message": message},
        )
        return None

    logger.log(
        _PYTHON_LEVELS.get(level, logging.INFO),
        "log_event",
        extra={"log_level": level.value, "log_message": message, "details": details or {}},
    )
    return entry
