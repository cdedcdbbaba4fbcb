"""SQLAlchemy ORM models for the credit ledger.

``UserCredits`` holds the current spendable balance per user.
``CreditTransaction`` is an append-only audit log; each row records the
balance before and after the change.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from site_personalizer.core.models.base import Base, TimestampMixin


class UserCredits(TimestampMixin, Base):
    """Current credit balance for one user."""

    __tablename__ = "user_credits"

    user_id: Mapped[str] = mapped_column(sa.String(255), primary_key=True)
    credits: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
    )


class CreditTransaction(Base):
    """One credit or debit applied to a user's balance.

    Attributes:
        id: UUID primary key.
        user_id: User whose balance changed.
        type: ``"credit"`` or ``"debit"``.
        amount: Positive number of credits moved.
        reason: Free-text description (e.g. the export job it paid for).
        previous_balance: Balance before the transaction.
        new_balance: Balance after the transaction.
        created_at: Transaction timestamp.
    """

    __tablename__ = "credit_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    type: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    amount: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    previous_balance: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    new_balance: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )

    __table_args__ = (
        sa.CheckConstraint("type IN ('credit', 'debit')", name="ck_credit_transactions_type"),
        sa.CheckConstraint("amount > 0", name="ck_credit_transactions_amount"),
        sa.Index("idx_credit_transactions_user_id", "user_id"),
    )
