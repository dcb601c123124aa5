"""Create on-call roster tables.

Revision ID: 002_oncall_roster
Revises: 001_alerts
Create Date: 2026-10-15
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "002_oncall_roster"
down_revision = "001_alerts"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(sa.text(
        "DO $$ BEGIN "
        "CREATE TYPE slicerole AS ENUM ('primary', 'backup'); "
        "EXCEPTION WHEN duplicate_object THEN NULL; "
        "END $$"
    ))

    op.create_table(
        "oncall_users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("display_name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
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

    op.create_table(
        "oncall_plans",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("version", sa.String(32), nullable=False, server_default="v1"),
        sa.Column(
            "ack_timeout_minutes",
            sa.Integer(),
            nullable=False,
            server_default="5",
        ),
        sa.Column(
            "max_attempts_per_tier",
            sa.Integer(),
            nullable=False,
            server_default="3",
        ),
        sa.Column(
            "retry_delay_minutes",
            sa.Integer(),
            nullable=False,
            server_default="5",
        ),
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
        sa.CheckConstraint(
            "max_attempts_per_tier >= 0",
            name="ck_oncall_plans_max_attempts",
        ),
    )

    op.create_table(
        "customer_plan_bindings",
        sa.Column("customer_id", sa.String(64), primary_key=True),
        sa.Column(
            "plan_id",
            sa.String(64),
            sa.ForeignKey("oncall_plans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("primary_member_ids", sa.JSON(), nullable=False),
        sa.Column("backup_member_ids", sa.JSON(), nullable=False),
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

    op.create_table(
        "schedule_slices",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column(
            "plan_id",
            sa.String(64),
            sa.ForeignKey("oncall_plans.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "role",
            postgresql.ENUM(name="slicerole", create_type=False),
            nullable=False,
        ),
        sa.Column("member_ids", sa.JSON(), nullable=False),
        sa.Column("start_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "generated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "customer_id", "role", "start_utc", name="uq_schedule_slices_start"
        ),
    )
    op.create_index(
        "ix_schedule_slices_customer_window",
        "schedule_slices",
        ["customer_id", "start_utc", "end_utc"],
    )


def downgrade() -> None:
    op.drop_index("ix_schedule_slices_customer_window", table_name="schedule_slices")
    op.drop_table("schedule_slices")
    op.drop_table("customer_plan_bindings")
    op.drop_table("oncall_plans")
    op.drop_table("oncall_users")
    op.execute(sa.text("DROP TYPE IF EXISTS slicerole"))
