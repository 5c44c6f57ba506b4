"""initial shop registry and compliance schema

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name: str, *args, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, **kwargs)


def upgrade() -> None:
    op.create_table(
        "profiles",
        _uuid("id", primary_key=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(), nullable=True),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "shops",
        _uuid("id", primary_key=True),
        _uuid("owner_id", sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("compliance_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("compliance_status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("suspension_reason", sa.String(), nullable=True),
        sa.Column("suspended_until", sa.DateTime(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        _uuid("approved_by", sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("last_compliance_check", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("compliance_score BETWEEN 0 AND 100", name="ck_shops_score_range"),
    )
    op.create_index("ix_shops_owner_id", "shops", ["owner_id"])
    op.create_index("ix_shops_status", "shops", ["status"])

    op.create_table(
        "documents",
        _uuid("id", primary_key=True),
        _uuid("shop_id", sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        sa.Column("document_type", sa.String(), nullable=False),
        sa.Column("file_url", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        _uuid("reviewed_by", sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("expiry_warning_sent_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_documents_shop_id", "documents", ["shop_id"])
    op.create_index("ix_documents_status", "documents", ["status"])

    op.create_table(
        "inspections",
        _uuid("id", primary_key=True),
        _uuid("shop_id", sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        _uuid("inspector_id", sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("inspection_type", sa.String(), nullable=False, server_default="routine"),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("scheduled_date", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("issues", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        _uuid("cancelled_by", sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("score IS NULL OR score BETWEEN 0 AND 100", name="ck_inspections_score_range"),
    )
    op.create_index("ix_inspections_shop_id", "inspections", ["shop_id"])
    op.create_index("ix_inspections_inspector_id", "inspections", ["inspector_id"])
    op.create_index("ix_inspections_status", "inspections", ["status"])

    op.create_table(
        "reviews",
        _uuid("id", primary_key=True),
        _uuid("shop_id", sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        _uuid("user_id", sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("user_id", "shop_id"),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )
    op.create_index("ix_reviews_shop_id", "reviews", ["shop_id"])

    op.create_table(
        "favorites",
        _uuid("id", primary_key=True),
        _uuid("shop_id", sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        _uuid("user_id", sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("user_id", "shop_id"),
    )
    op.create_index("ix_favorites_shop_id", "favorites", ["shop_id"])

    op.create_table(
        "compliance_warnings",
        _uuid("id", primary_key=True),
        _uuid("shop_id", sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        _uuid("issued_by", sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("severity", sa.String(), nullable=False, server_default="medium"),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_compliance_warnings_shop_id", "compliance_warnings", ["shop_id"])

    op.create_table(
        "compliance_history",
        _uuid("id", primary_key=True),
        _uuid("shop_id", sa.ForeignKey("shops.id", ondelete="SET NULL"), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("base_score", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("factors", sa.JSON(), nullable=True),
        sa.Column("recommendations", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("shop_id", "sequence"),
    )
    op.create_index("ix_compliance_history_shop_id", "compliance_history", ["shop_id"])

    op.create_table(
        "notifications",
        _uuid("id", primary_key=True),
        _uuid("user_id", sa.ForeignKey("profiles.id"), nullable=False),
        _uuid("shop_id", sa.ForeignKey("shops.id", ondelete="SET NULL"), nullable=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("channels", sa.JSON(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("dismissed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "notification_logs",
        _uuid("id", primary_key=True),
        _uuid("notification_id", sa.ForeignKey("notifications.id"), nullable=False),
        sa.Column("channel", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.String(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("notification_id", "channel"),
    )
    op.create_index("ix_notification_logs_notification_id", "notification_logs", ["notification_id"])

    op.create_table(
        "notification_preferences",
        _uuid("id", primary_key=True),
        _uuid("user_id", sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("pref_type", sa.String(), nullable=False),
        sa.Column("channel", sa.String(), nullable=False, server_default="in_app"),
        sa.Column("enabled", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.UniqueConstraint("user_id", "pref_type", "channel"),
    )

    op.create_table(
        "notification_templates",
        _uuid("id", primary_key=True),
        sa.Column("type", sa.String(), nullable=False, unique=True),
        sa.Column("title_template", sa.String(), nullable=False),
        sa.Column("message_template", sa.Text(), nullable=False),
        sa.Column("default_channels", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "audit_logs",
        _uuid("id", primary_key=True),
        _uuid("actor_id", nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("target_type", sa.String(), nullable=True),
        _uuid("target_id", nullable=True),
        sa.Column("outcome", sa.String(), nullable=False, server_default="success"),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("notification_templates")
    op.drop_table("notification_preferences")
    op.drop_index("ix_notification_logs_notification_id", table_name="notification_logs")
    op.drop_table("notification_logs")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_compliance_history_shop_id", table_name="compliance_history")
    op.drop_table("compliance_history")
    op.drop_index("ix_compliance_warnings_shop_id", table_name="compliance_warnings")
    op.drop_table("compliance_warnings")
    op.drop_index("ix_favorites_shop_id", table_name="favorites")
    op.drop_table("favorites")
    op.drop_index("ix_reviews_shop_id", table_name="reviews")
    op.drop_table("reviews")
    op.drop_index("ix_inspections_status", table_name="inspections")
    op.drop_index("ix_inspections_inspector_id", table_name="inspections")
    op.drop_index("ix_inspections_shop_id", table_name="inspections")
    op.drop_table("inspections")
    op.drop_index("ix_documents_status", table_name="documents")
    op.drop_index("ix_documents_shop_id", table_name="documents")
    op.drop_table("documents")
    op.drop_index("ix_shops_status", table_name="shops")
    op.drop_index("ix_shops_owner_id", table_name="shops")
    op.drop_table("shops")
    op.drop_table("profiles")
