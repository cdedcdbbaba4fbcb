"""Initial schema: crawl cache, personalizations, uploads, exports, credits.

Creates the complete Site Personalizer schema in FK-dependency order:

1. website_crawls: cleaned crawl content and summary per website
2. personalization_cache: generated template outputs per (user, website)
3. file_uploads: parsed spreadsheet rows
4. export_jobs: export progress records (FK -> file_uploads)
5. user_credits: current balance per user
6. credit_transactions: append-only ledger of balance changes

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _timestamps() -> list[sa.Column]:
    """created_at / updated_at columns matching ``TimestampMixin``."""
    return [
        sa.Column(
            "created_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    ]


def upgrade() -> None:
    # gen_random_uuid() is built in from PostgreSQL 13; pgcrypto covers older servers.
    op.execute(sa.text("CREATE EXTENSION IF NOT EXISTS pgcrypto"))

    # ------------------------------------------------------------------
    # 1. website_crawls
    # ------------------------------------------------------------------
    op.create_table(
        "website_crawls",
        sa.Column("url", sa.Text(), primary_key=True),
        sa.Column("crawl_data", JSONB(), nullable=True),
        sa.Column("word_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("favicon", sa.Text(), nullable=True),
        sa.Column("is_loading", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )

    # ------------------------------------------------------------------
    # 2. personalization_cache
    # ------------------------------------------------------------------
    op.create_table(
        "personalization_cache",
        sa.Column("user_id", sa.String(255), primary_key=True),
        sa.Column("url", sa.Text(), primary_key=True),
        sa.Column(
            "personalizations",
            JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
    )

    # ------------------------------------------------------------------
    # 3. file_uploads
    # ------------------------------------------------------------------
    op.create_table(
        "file_uploads",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("filename", sa.Text(), nullable=True),
        sa.Column("data", JSONB(), nullable=True),
        sa.Column(
            "created_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index("ix_file_uploads_user_id", "file_uploads", ["user_id"])

    # ------------------------------------------------------------------
    # 4. export_jobs
    # ------------------------------------------------------------------
    op.create_table(
        "export_jobs",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column(
            "file_id",
            UUID(as_uuid=True),
            sa.ForeignKey("file_uploads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("selected_templates", JSONB(), nullable=False),
        sa.Column("custom_prompts", JSONB(), nullable=True),
        sa.Column("start_row", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_rows", sa.Integer(), nullable=True),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("website_urls", JSONB(), nullable=False),
        sa.Column("processed_rows", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'processing'"),
        ),
        sa.Column("row_data", JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("completed_at", TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('processing', 'completed', 'failed')",
            name="ck_export_jobs_status",
        ),
    )
    op.create_index("idx_export_jobs_user_id", "export_jobs", ["user_id"])
    op.create_index("idx_export_jobs_status", "export_jobs", ["status"])

    # ------------------------------------------------------------------
    # 5. user_credits
    # ------------------------------------------------------------------
    op.create_table(
        "user_credits",
        sa.Column("user_id", sa.String(255), primary_key=True),
        sa.Column("credits", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
    )

    # ------------------------------------------------------------------
    # 6. credit_transactions
    # ------------------------------------------------------------------
    op.create_table(
        "credit_transactions",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("previous_balance", sa.Integer(), nullable=False),
        sa.Column("new_balance", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint("type IN ('credit', 'debit')", name="ck_credit_transactions_type"),
        sa.CheckConstraint("amount > 0", name="ck_credit_transactions_amount"),
    )
    op.create_index("idx_credit_transactions_user_id", "credit_transactions", ["user_id"])


def downgrade() -> None:
    op.drop_table("credit_transactions")
    op.drop_table("user_credits")
    op.drop_table("export_jobs")
    op.drop_table("file_uploads")
    op.drop_table("personalization_cache")
    op.drop_table("website_crawls")
