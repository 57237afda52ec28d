"""Initial schema: users, jobs and rate-limit sessions."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261018_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("username", sa.String(length=128), nullable=False, unique=True),
        sa.Column("password", sa.String(length=256), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False, server_default="20"),
    )

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("tool", sa.String(length=32), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("inputs", sa.JSON()),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
        sa.Column("asset_urls", sa.JSON()),
        sa.Column("provider", sa.String(length=32), nullable=False, server_default="SIM"),
        sa.Column("provider_job_id", sa.String(length=128)),
        sa.Column("meta", sa.JSON()),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column("credits_used", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_jobs_user_created", "jobs", ["user_id", "created_at"])
    op.create_index("ix_jobs_provider_job_id", "jobs", ["provider_job_id"])

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("heavy_jobs_this_hour", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_heavy_job_at", sa.DateTime()),
    )


def downgrade() -> None:
    op.drop_table("sessions")
    op.drop_index("ix_jobs_provider_job_id", table_name="jobs")
    op.drop_index("ix_jobs_user_created", table_name="jobs")
    op.drop_table("jobs")
    op.drop_table("users")
