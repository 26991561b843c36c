"""Initial schema — deletion notifications and deletion logs.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def upgrade() -> None:
    op.create_table(
        "deletion_notifications",
        sa.Column("notification_id", sa.String(255), nullable=False),
        sa.Column("username", sa.String(255)),
        sa.Column("user_id", sa.String(255)),
        sa.Column("eias_token", sa.String(500)),
        sa.Column("event_date", sa.DateTime(timezone=True)),
        sa.Column("publish_date", sa.DateTime(timezone=True)),
        sa.Column("publish_attempt_count", sa.Integer()),
        sa.Column("raw_notification", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_deletion_notifications_notification_id",
        "deletion_notifications",
        ["notification_id"],
        unique=True,
    )
    op.create_index("ix_deletion_notifications_username", "deletion_notifications", ["username"])
    op.create_index("ix_deletion_notifications_user_id", "deletion_notifications", ["user_id"])

    op.create_table(
        "deletion_logs",
        sa.Column("username", sa.String(255)),
        sa.Column("user_id", sa.String(255)),
        sa.Column("eias_token", sa.String(500)),
        sa.Column("status", sa.String(30), nullable=False, comment="started, completed, completed_with_errors, failed"),
        sa.Column("deletion_date", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deletion_logs_username", "deletion_logs", ["username"])
    op.create_index("ix_deletion_logs_user_id", "deletion_logs", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_deletion_logs_user_id", table_name="deletion_logs")
    op.drop_index("ix_deletion_logs_username", table_name="deletion_logs")
    op.drop_table("deletion_logs")
    op.drop_index("ix_deletion_notifications_user_id", table_name="deletion_notifications")
    op.drop_index("ix_deletion_notifications_username", table_name="deletion_notifications")
    op.drop_index("ix_deletion_notifications_notification_id", table_name="deletion_notifications")
    op.drop_table("deletion_notifications")
