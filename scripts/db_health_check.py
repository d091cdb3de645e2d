#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, inspect, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.services.notification_settings import SETTING_KEYS
from app.services.schema_guard import OPTIONAL_TABLES, REQUIRED_TABLE_COLUMNS
from app.settings import get_settings

EXPECTED_HEAD = "0001_initial"


def run(engine: Engine | None = None) -> dict[str, Any]:
    engine = engine or create_engine(get_settings().database_url)
    report: dict[str, Any] = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict[str, Any]) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    tables = set(inspect(engine).get_table_names())
    with engine.connect() as conn:
        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_required = sorted(table for table in REQUIRED_TABLE_COLUMNS if table not in tables)
        missing_optional = sorted(table for table in OPTIONAL_TABLES if table not in tables)
        add("missing_required_tables", "fail" if missing_required else "ok", {"tables": missing_required})
        add("missing_optional_tables", "warn" if missing_optional else "ok", {"tables": missing_optional})

        if "metrics_values" in tables and "metrics_definition" in tables:
            orphan_values = conn.execute(
                text(
                    """
                    select v.id
                    from metrics_values v
                    left join metrics_definition d on d.id = v.metrics_definition_id
                    where d.id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "metric_value_orphan_definition",
                "fail" if orphan_values else "ok",
                {"sample_ids": [row[0] for row in orphan_values]},
            )

        if "metrics_definition" in tables:
            # Reminders are addressed per department; these metrics never produce one.
            unassigned = conn.execute(
                text(
                    """
                    select id, name
                    from metrics_definition
                    where is_active = true and department_id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "active_metric_without_department",
                "warn" if unassigned else "ok",
                {"rows": [list(row) for row in unassigned]},
            )

        if "managers" in tables:
            unreachable = conn.execute(
                text(
                    """
                    select id, email
                    from managers
                    where is_active = true and user_id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "active_manager_without_user",
                "warn" if unreachable else "ok",
                {"rows": [list(row) for row in unreachable]},
            )

        if "notification_settings" in tables:
            stored_keys = set(
                conn.execute(text("select setting_key from notification_settings")).scalars()
            )
            missing_keys = sorted(key for key in SETTING_KEYS if key not in stored_keys)
            add(
                "reminder_settings_defaults_in_use",
                "warn" if missing_keys else "ok",
                {"keys": missing_keys},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
