from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "metrics_definition": {"id", "department_id", "frequency", "target", "lower_is_better", "is_active"},
    "metrics_values": {"id", "metrics_definition_id", "value", "date"},
    "managers": {"id", "user_id", "department_id", "role", "is_active"},
    "metric_justifications": {"id", "status", "created_at"},
    "notifications": {"id", "user_id", "title", "message", "type", "metadata", "created_at"},
    "notification_settings": {"setting_key", "setting_value"},
    "logs": {"id", "level", "message", "details", "created_at"},
    "alembic_version": {"version_num"},
}

OPTIONAL_TABLES: set[str] = {"notification_templates", "scheduled_notifications"}


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover - defensive
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    try:
        table_names = set(inspector.get_table_names())
    except Exception as exc:  # pragma: no cover - defensive
        warnings.append(f"TABLE_LISTING_FAILED:{exc.__class__.__name__}")
        table_names = set(OPTIONAL_TABLES)
    for table_name in sorted(OPTIONAL_TABLES - table_names):
        warnings.append(f"OPTIONAL_TABLE_MISSING:{table_name}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
    except Exception as exc:  # pragma: no cover - defensive
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
