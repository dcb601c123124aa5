"""Create orchestration instance and journal tables.

Revision ID: 003_orchestration_journal
Revises: 002_oncall_roster
Create Date: 2026-10-15
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "003_orchestration_journal"
down_revision = "002_oncall_roster"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(sa.text(
        "DO $$ BEGIN "
        "CREATE TYPE orchestrationstatus AS ENUM "
        "('pending', 'running', 'suspended', 'completed', 'failed'); "
        "EXCEPTION WHEN duplicate_object THEN NULL; "
        "END $$"
    ))
    op.execute(sa.text(
        "DO $$ BEGIN "
        "CREATE TYPE stepkind AS ENUM ('activity', 'timer', 'new_uuid'); "
        "EXCEPTION WHEN duplicate_object THEN NULL; "
        "END $$"
    ))

    op.create_table(
        "orchestration_instances",
        sa.Column("instance_id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "status",
            postgresql.ENUM(name="orchestrationstatus", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("input", sa.JSON(), nullable=True),
        sa.Column("output", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("wake_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_owner", sa.String(200), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
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
    op.create_index(
        "ix_orchestration_instances_status",
        "orchestration_instances",
        ["status"],
    )
    op.create_index(
        "ix_orchestration_instances_wake_at",
        "orchestration_instances",
        ["wake_at"],
    )

    op.create_table(
        "orchestration_journal",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "instance_id",
            sa.String(64),
            sa.ForeignKey(
                "orchestration_instances.instance_id", ondelete="CASCADE"
            ),
            nullable=False,
        ),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column(
            "step_kind",
            postgresql.ENUM(name="stepkind", create_type=False),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("input_hash", sa.String(64), nullable=False),
        sa.Column("input", sa.JSON(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "recorded_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "instance_id", "step_index", name="uq_orchestration_journal_step"
        ),
    )
    op.create_index(
        "ix_orchestration_journal_instance_id",
        "orchestration_journal",
        ["instance_id"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_orchestration_journal_instance_id", table_name="orchestration_journal"
    )
    op.drop_table("orchestration_journal")
    op.drop_index(
        "ix_orchestration_instances_wake_at", table_name="orchestration_instances"
    )
    op.drop_index(
        "ix_orchestration_instances_status", table_name="orchestration_instances"
    )
    op.drop_table("orchestration_instances")
    op.execute(sa.text("DROP TYPE IF EXISTS stepkind"))
    op.execute(sa.text("DROP TYPE IF EXISTS orchestrationstatus"))
