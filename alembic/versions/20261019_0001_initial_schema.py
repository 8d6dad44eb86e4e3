"""initial_schema

Revision ID: 20261019_0001_initial_schema
Revises:
Create Date: 2026-10-19

Creates the orchestration schema:

Tables:
    - credentials: pooled YouTube API keys (Fernet-encrypted, fingerprinted)
    - credential_usage_records: append-only audit of every upstream call
    - job_status: one row per recurring job
    - subscriptions: followed channels and playlists
    - content_items: synced items, unique per (external_id, subscription_id)

Enums (PostgreSQL native, lowercase values):
    - jobstate: idle, running, success, failed
    - sourcetype: channel, playlist
    - translationstatus: none, pending, processing, completed, failed
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_0001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JOB_STATE = sa.Enum("idle", "running", "success", "failed", name="jobstate")
SOURCE_TYPE = sa.Enum("channel", "playlist", name="sourcetype")
TRANSLATION_STATUS = sa.Enum(
    "none", "pending", "processing", "completed", "failed", name="translationstatus"
)


def upgrade() -> None:
    op.create_table(
        "credentials",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("secret_encrypted", sa.LargeBinary(), nullable=False),
        sa.Column("secret_fingerprint", sa.String(64), nullable=False, unique=True),
        sa.Column("secret_hint", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quota_limit", sa.Integer(), nullable=False, server_default="10000"),
        sa.Column("quota_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("quota_used >= 0", name="ck_credentials_used_non_negative"),
        sa.CheckConstraint("quota_limit > 0", name="ck_credentials_limit_positive"),
    )
    op.create_index(
        "ix_credentials_selection",
        "credentials",
        ["is_active", "is_valid", "priority", "quota_used"],
    )

    op.create_table(
        "credential_usage_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "credential_id",
            sa.Integer(),
            sa.ForeignKey("credentials.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("operation", sa.String(50), nullable=False),
        sa.Column("endpoint", sa.String(100), nullable=False),
        sa.Column("cost", sa.Integer(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_info", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_credential_usage_records_credential_id",
        "credential_usage_records",
        ["credential_id"],
    )
    op.create_index(
        "ix_credential_usage_records_created_at",
        "credential_usage_records",
        ["created_at"],
    )

    op.create_table(
        "job_status",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("task_name", sa.String(100), nullable=False, unique=True),
        sa.Column("status", JOB_STATE, nullable=False, server_default="idle"),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("run_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_type", SOURCE_TYPE, nullable=False),
        sa.Column("source_id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("auto_translate", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("max_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("source_type", "source_id", name="uq_subscriptions_source"),
    )

    op.create_table(
        "content_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.String(50), nullable=False),
        sa.Column(
            "subscription_id",
            sa.Integer(),
            sa.ForeignKey("subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("title_translated", sa.String(500), nullable=True),
        sa.Column("description_translated", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.String(500), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("owner_id", sa.String(100), nullable=True),
        sa.Column("owner_name", sa.String(200), nullable=True),
        sa.Column(
            "translation_status", TRANSLATION_STATUS, nullable=False, server_default="none"
        ),
        sa.Column("translation_error", sa.Text(), nullable=True),
        sa.Column("output_ref", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "external_id", "subscription_id", name="uq_content_items_external_sub"
        ),
    )
    op.create_index("ix_content_items_external_id", "content_items", ["external_id"])
    op.create_index(
        "ix_content_items_translation_status", "content_items", ["translation_status"]
    )
    op.create_index(
        "ix_content_items_status_created",
        "content_items",
        ["translation_status", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("content_items")
    op.drop_table("subscriptions")
    op.drop_table("job_status")
    op.drop_table("credential_usage_records")
    op.drop_table("credentials")

    bind = op.get_bind()
    TRANSLATION_STATUS.drop(bind, checkfirst=True)
    SOURCE_TYPE.drop(bind, checkfirst=True)
    JOB_STATE.drop(bind, checkfirst=True)
