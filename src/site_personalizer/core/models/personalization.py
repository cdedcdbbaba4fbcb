"""SQLAlchemy ORM model for per-user personalization outputs."""

from __future__ import annotations

from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from site_personalizer.core.models.base import Base, TimestampMixin


class PersonalizationCache(TimestampMixin, Base):
    """Generated template outputs for one (user, website) pair.

    ``personalizations`` maps template name to generated text.  New requests
    merge into the mapping; keys for templates that were not requested are
    kept.

    Attributes:
        user_id: Identifier of the requesting user.
        url: Normalized website URL.
        personalizations: ``{template_name: text}`` mapping.
    """

    __tablename__ = "personalization_cache"

    user_id: Mapped[str] = mapped_column(sa.String(255), primary_key=True)
    url: Mapped[str] = mapped_column(sa.Text, primary_key=True)
    personalizations: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=sa.text("'{}'::jsonb"),
    )
