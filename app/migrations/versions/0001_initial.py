"""Initial metrics notification schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("name", name="uq_departments_name"),
    )

    op.create_table(
        "managers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default=sa.text("'manager'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_managers_user_id", "managers", ["user_id"], unique=False)
    op.create_index("ix_managers_department_id", "managers", ["department_id"], unique=False)

    op.create_table(
        "metrics_definition",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("frequency", sa.String(length=20), nullable=False, server_default=sa.text("'monthly'")),
        sa.Column("target", sa.Float(), nullable=True),
        sa.Column("unit", sa.String(length=50), nullable=False, server_default=sa.text("''")),
        sa.Column("lower_is_better", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_metrics_definition_department_id", "metrics_definition", ["department_id"], unique=False)

    op.create_table(
        "metrics_values",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("metrics_definition_id", sa.Integer(), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(["metrics_definition_id"], ["metrics_definition.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_metrics_values_metrics_definition_id",
        "metrics_values",
        ["metrics_definition_id"],
        unique=False,
    )
    op.create_index("ix_metrics_values_date", "metrics_values", ["date"], unique=False)

    op.create_table(
        "metric_justifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("metric_definition_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("period_date", sa.Date(), nullable=False),
        sa.Column("justification", sa.Text(), nullable=False),
        sa.Column("action_plan", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["metric_definition_id"], ["metrics_definition.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_metric_justifications_metric_definition_id",
        "metric_justifications",
        ["metric_definition_id"],
        unique=False,
    )
    op.create_index("ix_metric_justifications_status", "metric_justifications", ["status"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False, server_default=sa.text("'info'")),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"], unique=False)

    op.create_table(
        "notification_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("setting_key", sa.String(length=100), nullable=False),
        sa.Column("setting_value", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_notification_settings_setting_key",
        "notification_settings",
        ["setting_key"],
        unique=True,
    )

    op.create_table(
        "logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("level", sa.String(length=20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_logs_created_at", "logs", ["created_at"], unique=False)

    op.create_table(
        "notification_templates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False, server_default=sa.text("'info'")),
        sa.Column("category", sa.String(length=50), nullable=False, server_default=sa.text("'general'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )

    op.create_table(
        "scheduled_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("template_id", sa.Integer(), nullable=True),
        sa.Column("target_type", sa.String(length=20), nullable=False, server_default=sa.text("'all'")),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("schedule_type", sa.String(length=20), nullable=False),
        sa.Column("schedule_time", sa.String(length=5), nullable=True),
        sa.Column("schedule_day", sa.Integer(), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["template_id"], ["notification_templates.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_scheduled_notifications_template_id",
        "scheduled_notifications",
        ["template_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_scheduled_notifications_template_id", table_name="scheduled_notifications")
    op.drop_table("scheduled_notifications")
    op.drop_table("notification_templates")
    op.drop_index("ix_logs_created_at", table_name="logs")
    op.drop_table("logs")
    op.drop_index("ix_notification_settings_setting_key", table_name="notification_settings")
    op.drop_table("notification_settings")
    op.drop_index("ix_notifications_created_at", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_metric_justifications_status", table_name="metric_justifications")
    op.drop_index("ix_metric_justifications_metric_definition_id", table_name="metric_justifications")
    op.drop_table("metric_justifications")
    op.drop_index("ix_metrics_values_date", table_name="metrics_values")
    op.drop_index("ix_metrics_values_metrics_definition_id", table_name="metrics_values")
    op.drop_table("metrics_values")
    op.drop_index("ix_metrics_definition_department_id", table_name="metrics_definition")
    op.drop_table("metrics_definition")
    op.drop_index("ix_managers_department_id", table_name="managers")
    op.drop_index("ix_managers_user_id", table_name="managers")
    op.drop_table("managers")
    op.drop_table("departments")
