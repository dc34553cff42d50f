"""Create sources, receipts, releases, interests, notifications and job_runs tables"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "sources",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("kind", sa.String(length=8), nullable=False),
        sa.Column("park_scope", sa.String(length=16), nullable=False, server_default="all"),
        sa.Column("polling_interval_minutes", sa.Integer(), nullable=False, server_default="360"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.String(length=1024), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("url", name="uq_sources_url"),
    )

    op.create_table(
        "processing_receipts",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("source_id", sa.Uuid(), sa.ForeignKey("sources.id", ondelete="SET NULL"), nullable=True),
        sa.Column("article_url", sa.String(length=2048), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("items_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.String(length=1024), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("article_url", name="uq_processing_receipts_article_url"),
    )
    op.create_index("ix_processing_receipts_processed_at", "processing_receipts", ["processed_at"], unique=False)

    op.create_table(
        "releases",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("canonical_name", sa.String(length=512), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("image_url", sa.String(length=2048), nullable=False, server_default=""),
        sa.Column("original_image_url", sa.String(length=2048), nullable=True),
        sa.Column("park", sa.String(length=16), nullable=False),
        sa.Column("category", sa.String(length=24), nullable=False, server_default="other"),
        sa.Column("price_estimate", sa.Float(), nullable=True),
        sa.Column("is_limited_edition", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("merged_into_id", sa.Uuid(), sa.ForeignKey("releases.id", ondelete="SET NULL"), nullable=True),
        sa.Column("source_url", sa.String(length=2048), nullable=True),
        sa.Column("source_name", sa.String(length=200), nullable=True),
        sa.Column("raw_content", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "uq_releases_canonical_unmerged",
        "releases",
        ["canonical_name"],
        unique=True,
        sqlite_where=sa.text("merged_into_id IS NULL"),
        postgresql_where=sa.text("merged_into_id IS NULL"),
    )
    op.create_index("ix_releases_park_merged", "releases", ["park", "merged_into_id"], unique=False)
    op.create_index("ix_releases_status_created", "releases", ["status", "created_at"], unique=False)

    op.create_table(
        "release_sightings",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("release_id", sa.Uuid(), sa.ForeignKey("releases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_url", sa.String(length=2048), nullable=False),
        sa.Column("source_name", sa.String(length=200), nullable=True),
        sa.Column("article_title", sa.String(length=512), nullable=True),
        sa.Column("discovered_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("release_id", "source_url", name="uq_release_sightings_release_url"),
    )

    op.create_table(
        "customer_interests",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=24), nullable=True),
        sa.Column("park", sa.String(length=16), nullable=True),
        sa.Column("keywords", sa.JSON(), nullable=False),
        sa.Column("notify", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_customer_interests_customer", "customer_interests", ["customer_id"], unique=False)

    op.create_table(
        "notification_records",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("release_id", sa.Uuid(), sa.ForeignKey("releases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error", sa.String(length=512), nullable=True),
        sa.UniqueConstraint("release_id", "customer_id", name="uq_notification_records_release_customer"),
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("stage", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("source", sa.String(length=200), nullable=True),
        sa.Column("task_name", sa.String(length=100), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.String(length=512), nullable=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("stats", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_job_runs_stage_status", "job_runs", ["stage", "status"], unique=False)
    op.create_index("ix_job_runs_trace", "job_runs", ["trace_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_job_runs_trace", table_name="job_runs")
    op.drop_index("ix_job_runs_stage_status", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_table("notification_records")
    op.drop_index("ix_customer_interests_customer", table_name="customer_interests")
    op.drop_table("customer_interests")
    op.drop_table("release_sightings")
    op.drop_index("ix_releases_status_created", table_name="releases")
    op.drop_index("ix_releases_park_merged", table_name="releases")
    op.drop_index("uq_releases_canonical_unmerged", table_name="releases")
    op.drop_table("releases")
    op.drop_index("ix_processing_receipts_processed_at", table_name="processing_receipts")
    op.drop_table("processing_receipts")
    op.drop_table("sources")
