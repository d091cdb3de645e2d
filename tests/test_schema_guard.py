from __future__ import annotations

import unittest
from unittest.mock import patch

from app.services.schema_guard import REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]]):
        self._columns_by_table = columns_by_table

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_table_names(self):  # type: ignore[no-untyped-def]
        return list(self._columns_by_table)


def _complete_columns() -> dict[str, set[str]]:
    columns = {table: set(names) for table, names in REQUIRED_TABLE_COLUMNS.items()}
    columns["notification_templates"] = {"id", "title", "message"}
    columns["scheduled_notifications"] = {"id", "template_id", "schedule_type"}
    return columns


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(columns_by_table=_complete_columns())
        fake_engine = _FakeEngine("0001_initial")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_columns(self) -> None:
        columns = _complete_columns()
        columns["notifications"] = {"id", "user_id", "title", "message", "type", "created_at"}
        columns["metrics_definition"] = {"id", "department_id", "frequency", "is_active"}
        fake_inspector = _FakeInspector(columns_by_table=columns)
        fake_engine = _FakeEngine("")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:notifications:metadata", result.issues)
        self.assertIn("MISSING_COLUMNS:metrics_definition:lower_is_better,target", result.issues)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_missing_optional_tables_only_warn(self) -> None:
        columns = _complete_columns()
        del columns["scheduled_notifications"]
        fake_inspector = _FakeInspector(columns_by_table=columns)

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.warnings, ["OPTIONAL_TABLE_MISSING:scheduled_notifications"])


if __name__ == "__main__":
    unittest.main()
