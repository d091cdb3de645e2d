from __future__ import annotations

import unittest
from collections.abc import Generator
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base, get_db
from app.main import app
from app.models import Department, Manager, NotificationSetting


def _make_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False)()


def _override_get_db(session: Session):
    def _override() -> Generator[Session, None, None]:
        yield session

    return _override


AUTOMATIC_RESULT = {
    "notifications_sent": 4,
    "achievements_found": 2,
    "pending_justifications": 1,
    "metrics_without_targets": 0,
    "overdue_missed_count": 3,
    "processed_at": "2026-03-20T15:00:00+00:00",
    "status": "success",
    "strategy": "expanded_frequency_notifications",
}


class NotificationEndpointsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = _make_session()
        app.dependency_overrides[get_db] = _override_get_db(self.session)
        key_patcher = patch("app.security.get_service_api_key", return_value=None)
        key_patcher.start()
        self.addCleanup(key_patcher.stop)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.session.close()

    def test_automatic_notifications_preflight(self) -> None:
        response = self.client.options("/functions/v1/automatic-notifications")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["access-control-allow-origin"], "*")
        self.assertIn("apikey", response.headers["access-control-allow-headers"])

    @patch("app.routers.notifications.run_automatic_notifications")
    def test_automatic_notifications_success(self, mock_run) -> None:  # type: ignore[no-untyped-def]
        mock_run.return_value = dict(AUTOMATIC_RESULT)

        response = self.client.post("/functions/v1/automatic-notifications")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["access-control-allow-origin"], "*")
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["result"], AUTOMATIC_RESULT)
        self.assertIn("timestamp", body)
        self.assertIs(mock_run.call_args.kwargs["db"], self.session)

    @patch("app.routers.notifications.run_automatic_notifications", side_effect=RuntimeError("boom"))
    def test_automatic_notifications_failure(self, _mock_run) -> None:  # type: ignore[no-untyped-def]
        response = self.client.post("/functions/v1/automatic-notifications")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.headers["access-control-allow-origin"], "*")
        body = response.json()
        self.assertEqual(body["success"], False)
        self.assertEqual(body["error"], "boom")
        self.assertIn("timestamp", body)

    @patch("app.routers.notifications.run_scheduled_notifications")
    def test_scheduled_notifications_success(self, mock_run) -> None:  # type: ignore[no-untyped-def]
        mock_run.return_value = {
            "sent_notifications": 3,
            "overdue_metrics": 1,
            "timestamp": "2026-05-04T12:00:00+00:00",
        }

        response = self.client.post("/functions/v1/scheduled-notifications")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["sentNotifications"], 3)
        self.assertEqual(body["overdueMetrics"], 1)

    @patch("app.routers.notifications.run_scheduled_notifications", side_effect=RuntimeError("db down"))
    def test_scheduled_notifications_failure(self, _mock_run) -> None:  # type: ignore[no-untyped-def]
        response = self.client.post("/functions/v1/scheduled-notifications")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "db down")

    def test_service_key_is_enforced_when_configured(self) -> None:
        with patch("app.security.get_service_api_key", return_value="secret"), patch(
            "app.routers.notifications.run_automatic_notifications",
            return_value=dict(AUTOMATIC_RESULT),
        ):
            missing = self.client.post("/functions/v1/automatic-notifications")
            wrong = self.client.post(
                "/functions/v1/automatic-notifications",
                headers={"Authorization": "Bearer nope"},
            )
            bearer = self.client.post(
                "/functions/v1/automatic-notifications",
                headers={"Authorization": "Bearer secret"},
            )
            apikey = self.client.post(
                "/functions/v1/automatic-notifications",
                headers={"apikey": "secret"},
            )

        self.assertEqual(missing.status_code, 401)
        self.assertEqual(missing.json()["error"]["code"], "INVALID_TOKEN")
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(bearer.status_code, 200)
        self.assertEqual(apikey.status_code, 200)

    def test_broadcast_to_department(self) -> None:
        self.session.add_all(
            [
                Department(id=1, name="Vendas"),
                Manager(id=1, user_id="u-1", name="Ana", email="ana@example.com", department_id=1, role="manager"),
                Manager(id=2, user_id="u-2", name="Bruno", email="bruno@example.com", department_id=1, role="manager"),
            ]
        )
        self.session.commit()

        response = self.client.post(
            "/api/notifications/broadcast",
            json={
                "title": "Aviso",
                "message": "Olá {{user_name}}",
                "type": "info",
                "target_type": "department",
                "department_id": 1,
            },
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"sent": 2})

    def test_broadcast_department_target_requires_department_id(self) -> None:
        response = self.client.post(
            "/api/notifications/broadcast",
            json={"title": "Aviso", "message": "Olá", "target_type": "department"},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_reminder_config_merges_stored_settings(self) -> None:
        self.session.add(NotificationSetting(setting_key="monthly_reminder", setting_value={"deadline_day": 20}))
        self.session.commit()

        response = self.client.get("/api/notifications/reminder-config")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["monthly"], {"deadline_day": 20, "reminder_days": [3, 5, 7]})
        self.assertEqual(body["daily"], {"reminder_hour": 18})
        self.assertEqual(body["yearly"], {"reminder_days_before": [15, 30, 60]})


if __name__ == "__main__":
    unittest.main()
