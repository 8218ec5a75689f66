"""create insight jobs, runs, product insights, webhook events and sessions

Revision ID: 3b7e5c1a9d42
Revises:
Create Date: 2026-02-11 10:24:37.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e5c1a9d42"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_JOB_PREDICATE = "status IN ('QUEUED', 'RUNNING')"


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "runs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("shop", sa.Text, nullable=False),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            comment="Run status: RUNNING|COMPLETED",
        ),
        sa.Column(
            "products_queued",
            sa.Integer,
            nullable=False,
            comment="Batch size at creation",
        ),
        sa.Column("succeeded", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('RUNNING', 'COMPLETED')", name="runs_status_check"
        ),
        sa.CheckConstraint(
            "succeeded + failed <= products_queued", name="runs_counters_check"
        ),
    )
    op.create_index("ix_runs_shop", "runs", ["shop"])

    op.create_table(
        "insight_jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("shop", sa.Text, nullable=False),
        sa.Column("product_id", sa.Text, nullable=False),
        sa.Column(
            "run_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("runs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="QUEUED",
            comment="Job status: QUEUED|RUNNING|SUCCEEDED|FAILED",
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Number of claims made",
        ),
        sa.Column(
            "last_error", sa.Text, nullable=True, comment="Last error message, truncated"
        ),
        sa.Column(
            "next_retry_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Earliest time a retried job may be claimed",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('QUEUED', 'RUNNING', 'SUCCEEDED', 'FAILED')",
            name="insight_jobs_status_check",
        ),
        sa.CheckConstraint("attempts >= 0", name="insight_jobs_attempts_check"),
    )
    op.create_index("ix_insight_jobs_shop_status", "insight_jobs", ["shop", "status"])
    op.create_index("ix_insight_jobs_run_id", "insight_jobs", ["run_id"])

    # At most one active job per (shop, product); completed jobs are history
    op.create_index(
        "ix_insight_jobs_active_product",
        "insight_jobs",
        ["shop", "product_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_JOB_PREDICATE),
    )

    op.create_table(
        "product_insights",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("shop", sa.Text, nullable=False),
        sa.Column("product_id", sa.Text, nullable=False),
        sa.Column("product_title", sa.Text, nullable=False),
        sa.Column(
            "attention_score",
            sa.Integer,
            nullable=False,
            comment="Days since the product was last updated",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            comment="NEGLECTED|HEALTHY|RECENTLY_UPDATED",
        ),
        sa.Column("recommendation", sa.Text, nullable=False),
        sa.Column(
            "reasons_json",
            sa.Text,
            nullable=True,
            comment="JSON list of suggested next steps",
        ),
        sa.Column(
            "last_product_updated_at", sa.TIMESTAMP(timezone=True), nullable=False
        ),
        sa.Column(
            "last_evaluated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("product_status", sa.Text, nullable=True),
        sa.Column("has_featured_image", sa.Boolean, nullable=True),
        sa.Column("inventory_status", sa.Text, nullable=True),
        sa.Column("inventory_available", sa.Integer, nullable=True),
        sa.Column("ai_confidence", sa.Text, nullable=True, comment="High|Medium|Low"),
        sa.Column("confidence_explanation", sa.Text, nullable=True),
        # AI generation mirror
        sa.Column(
            "ai_status",
            sa.Text,
            nullable=True,
            comment="Mirror of the latest job status",
        ),
        sa.Column("ai_error", sa.Text, nullable=True),
        sa.Column("ai_explanation", sa.Text, nullable=True),
        sa.Column("ai_action_type", sa.Text, nullable=True),
        sa.Column("ai_generated_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ai_model", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "shop", "product_id", name="uq_product_insights_shop_product"
        ),
    )
    op.create_index("ix_product_insights_shop", "product_insights", ["shop"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("webhook_id", sa.Text, nullable=False, unique=True),
        sa.Column("topic", sa.Text, nullable=False),
        sa.Column("shop", sa.Text, nullable=False),
        sa.Column(
            "received_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_webhook_events_shop", "webhook_events", ["shop"])

    op.create_table(
        "shop_sessions",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("shop", sa.Text, nullable=False),
        sa.Column("state", sa.Text, nullable=False),
        sa.Column(
            "is_online", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("scope", sa.Text, nullable=True),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index("ix_shop_sessions_shop", "shop_sessions", ["shop"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("shop_sessions")
    op.drop_table("webhook_events")
    op.drop_table("product_insights")
    op.drop_table("insight_jobs")
    op.drop_table("runs")
