"""Create alerts and alert_changes tables.

Revision ID: 001_alerts
Revises:
Create Date: 2026-10-15
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_alerts"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create enum types using raw SQL to avoid checkfirst issues with asyncpg
    op.execute(sa.text(
        "DO $$ BEGIN "
        "CREATE TYPE alertstatus AS ENUM "
        "('received', 'checking', 'pending', 'escalated', 'accepted', "
        "'resolved', 'failed'); "
        "EXCEPTION WHEN duplicate_object THEN NULL; "
        "END $$"
    ))
    op.execute(sa.text(
        "DO $$ BEGIN "
        "CREATE TYPE alertseverity AS ENUM "
        "('critical', 'high', 'medium', 'low', 'info'); "
        "EXCEPTION WHEN duplicate_object THEN NULL; "
        "END $$"
    ))

    op.create_table(
        "alerts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("resource_id", sa.String(512), nullable=False),
        sa.Column(
            "status",
            postgresql.ENUM(name="alertstatus", create_type=False),
            nullable=False,
            server_default="received",
        ),
        sa.Column(
            "severity",
            postgresql.ENUM(name="alertseverity", create_type=False),
            nullable=False,
            server_default="medium",
        ),
        sa.Column("title", sa.String(500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "escalation_attempts",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("current_escalation_target", sa.String(64), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_alerts_customer_id", "alerts", ["customer_id"])

    op.create_table(
        "alert_changes",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "alert_id",
            sa.String(64),
            sa.ForeignKey("alerts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column(
            "actor",
            sa.String(200),
            nullable=False,
            server_default="system",
        ),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column(
            "previous_status",
            postgresql.ENUM(name="alertstatus", create_type=False),
            nullable=True,
        ),
        sa.Column(
            "new_status",
            postgresql.ENUM(name="alertstatus", create_type=False),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("alert_id", "sequence", name="uq_alert_changes_sequence"),
    )
    op.create_index("ix_alert_changes_alert_id", "alert_changes", ["alert_id"])


def downgrade() -> None:
    op.drop_index("ix_alert_changes_alert_id", table_name="alert_changes")
    op.drop_table("alert_changes")
    op.drop_index("ix_alerts_customer_id", table_name="alerts")
    op.drop_table("alerts")
    op.execute(sa.text("DROP TYPE IF EXISTS alertseverity"))
    op.execute(sa.text("DROP TYPE IF EXISTS alertstatus"))
