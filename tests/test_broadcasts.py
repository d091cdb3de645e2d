from __future__ import annotations

import unittest
from datetime import datetime, timezone

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.models import BroadcastTarget, Department, Manager, Notification, NotificationType
from app.services.broadcasts import render_variables, resolve_broadcast_recipients, send_broadcast


def _make_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False)()


class RenderVariablesTests(unittest.TestCase):
    def test_builtin_values_use_local_calendar(self) -> None:
        # 02:00 UTC is still the previous evening in Sao Paulo.
        rendered = render_variables(
            "Olá {{user_name}}, hoje é {{current_date}} ({{ current_period }})",
            None,
            user_name="Ana",
            now_utc=datetime(2026, 3, 1, 2, 0, tzinfo=timezone.utc),
        )

        self.assertEqual(rendered, "Olá Ana, hoje é 28/02/2026 (02/2026)")

    def test_custom_variables_override_builtins_and_unknown_placeholders_stay(self) -> None:
        rendered = render_variables(
            "{{user_name}} - {{meta}} - {{desconhecido}}",
            {"user_name": "Equipe", "meta": 95},
            user_name="Ana",
            now_utc=datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
        )

        self.assertEqual(rendered, "Equipe - 95 - {{desconhecido}}")


class SendBroadcastTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = _make_session()
        self.session.add_all(
            [
                Department(id=1, name="Vendas"),
                Department(id=2, name="Financeiro"),
                Manager(id=1, user_id="u-1", name="Ana", email="ana@example.com", department_id=1, role="manager"),
                Manager(id=2, user_id="u-2", name="Bruno", email="bruno@example.com", department_id=2, role="manager"),
                Manager(id=3, user_id="u-3", name="Admin", email="admin@example.com", department_id=None, role="admin"),
                Manager(
                    id=4,
                    user_id="u-4",
                    name="Inativo",
                    email="inativo@example.com",
                    department_id=1,
                    role="manager",
                    is_active=False,
                ),
            ]
        )
        self.session.commit()
        self.now_utc = datetime(2026, 5, 4, 15, 0, tzinfo=timezone.utc)

    def tearDown(self) -> None:
        self.session.close()

    def _notifications(self) -> list[Notification]:
        return list(self.session.scalars(select(Notification).order_by(Notification.id.asc())).all())

    def test_department_broadcast_personalizes_each_message(self) -> None:
        sent = send_broadcast(
            self.session,
            title="Fechamento {{current_period}}",
            message="{{user_name}}, registre {{metrica}}.",
            notification_type=NotificationType.WARNING,
            target_type=BroadcastTarget.DEPARTMENT,
            department_id=1,
            variables={"metrica": "Faturamento"},
            now_utc=self.now_utc,
        )

        rows = self._notifications()
        self.assertEqual(sent, 1)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].user_id, "u-1")
        self.assertEqual(rows[0].title, "Fechamento 05/2026")
        self.assertEqual(rows[0].message, "Ana, registre Faturamento.")
        self.assertEqual(rows[0].type, "warning")
        self.assertEqual(
            rows[0].metadata_,
            {
                "broadcast_type": "department",
                "department_id": 1,
                "processed_variables": {"metrica": "Faturamento"},
                "direct_broadcast": True,
            },
        )

    def test_admin_and_all_targets(self) -> None:
        admins = resolve_broadcast_recipients(self.session, target_type=BroadcastTarget.ADMINS)
        everyone = resolve_broadcast_recipients(self.session, target_type=BroadcastTarget.ALL)

        self.assertEqual([item.user_id for item in admins], ["u-3"])
        self.assertEqual([item.user_id for item in everyone], ["u-1", "u-2", "u-3"])

    def test_department_target_requires_department(self) -> None:
        with self.assertRaises(ValueError):
            send_broadcast(
                self.session,
                title="t",
                message="m",
                target_type=BroadcastTarget.DEPARTMENT,
                now_utc=self.now_utc,
            )
        self.assertEqual(self._notifications(), [])

    def test_no_recipients_sends_nothing(self) -> None:
        sent = send_broadcast(
            self.session,
            title="t",
            message="m",
            target_type=BroadcastTarget.DEPARTMENT,
            department_id=99,
            now_utc=self.now_utc,
        )

        self.assertEqual(sent, 0)
        self.assertEqual(self._notifications(), [])


if __name__ == "__main__":
    unittest.main()
