"""SQLAlchemy ORM models for Site Personalizer.

All models are imported here so that:
1. Alembic autogenerate can discover them via Base.metadata.
2. Application code can do `from site_personalizer.core.models import ExportJob`
   without knowing which sub-module a model lives in.
"""

from __future__ import annotations

from site_personalizer.core.models.base import Base, TimestampMixin
from site_personalizer.core.models.crawls import WebsiteCrawl
from site_personalizer.core.models.credits import CreditTransaction, UserCredits
from site_personalizer.core.models.exports import EXPORT_STATUSES, ExportJob, FileUpload
from site_personalizer.core.models.personalization import PersonalizationCache

__all__ = [
    "Base",
    "TimestampMixin",
    "WebsiteCrawl",
    "PersonalizationCache",
    "ExportJob",
    "FileUpload",
    "EXPORT_STATUSES",
    "UserCredits",
    "CreditTransaction",
]
