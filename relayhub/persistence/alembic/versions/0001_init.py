"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-01 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False, server_default="USER"),
        sa.Column("credits", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "fb_pages",
        sa.Column("id", sa.String(), primary_key=True),
        # Avoid index=True here because we create explicit indexes below.
        sa.Column("profile_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("fb_page_id", sa.String(), nullable=True),
        sa.Column("widget_key", sa.String(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("ai_model", sa.String(), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("verify_token", sa.Text(), nullable=True),
        sa.Column("verify_token_digest", sa.String(), nullable=True),
        sa.Column("openrouter_key", sa.Text(), nullable=True),
        sa.Column("allowed_domains", postgresql.JSONB(), nullable=True),
        sa.Column("knowledge_base", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_fb_pages_profile_id", "fb_pages", ["profile_id"])
    # Webhook routing and widget lookups are keyed by these columns.
    op.create_index("ix_fb_pages_fb_page_id", "fb_pages", ["fb_page_id"], unique=True)
    op.create_index("ix_fb_pages_widget_key", "fb_pages", ["widget_key"], unique=True)
    op.create_index("ix_fb_pages_verify_token_digest", "fb_pages", ["verify_token_digest"], unique=True)

    op.create_table(
        "knowledge_entries",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("profile_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_knowledge_entries_profile_id", "knowledge_entries", ["profile_id"])

    op.create_table(
        "products",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("profile_id", sa.String(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("stock_quantity", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_products_profile_id", "products", ["profile_id"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("fb_page_id", sa.String(), sa.ForeignKey("fb_pages.id"), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_fb_page_id", "activity_logs", ["fb_page_id"])


def downgrade() -> None:
    op.drop_index("ix_activity_logs_fb_page_id", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("ix_products_profile_id", table_name="products")
    op.drop_table("products")
    op.drop_index("ix_knowledge_entries_profile_id", table_name="knowledge_entries")
    op.drop_table("knowledge_entries")
    op.drop_index("ix_fb_pages_verify_token_digest", table_name="fb_pages")
    op.drop_index("ix_fb_pages_widget_key", table_name="fb_pages")
    op.drop_index("ix_fb_pages_fb_page_id", table_name="fb_pages")
    op.drop_index("ix_fb_pages_profile_id", table_name="fb_pages")
    op.drop_table("fb_pages")
