"""Durable per-(user, website) store of generated personalizations.

Backed by the ``personalization_cache`` table.  :meth:`PersonalizationStore.merge`
adds new template outputs to a row without dropping the outputs of
templates that were not part of the request.  Merges for the same
``(user_id, url)`` are serialized by a keyed lock in-process and a row lock
in the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from site_personalizer.core.exceptions import StorageError
from site_personalizer.core.locks import KeyedLock
from site_personalizer.core.models.personalization import PersonalizationCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersonalizationRecord:
    """Snapshot of one ``personalization_cache`` row."""

    user_id: str
    url: str
    personalizations: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None


def merge_personalizations(
    existing: Mapping[str, Any] | None,
    updates: Mapping[str, Any],
) -> dict[str, Any]:
    """Return ``existing`` with ``updates`` laid over it.

    Keys only in *existing* are kept; keys in *updates* win.

    >>> merge_personalizations({"a": "x"}, {"b": "y"})
    {'a': 'x', 'b': 'y'}
    >>> merge_personalizations({"a": "x", "b": "y"}, {"a": "z"})
    {'a': 'z', 'b': 'y'}
    """
    merged = dict(existing or {})
    merged.update(updates)
    return merged


def _to_record(row: PersonalizationCache) -> PersonalizationRecord:
    return PersonalizationRecord(
        user_id=row.user_id,
        url=row.url,
        personalizations=dict(row.personalizations or {}),
        created_at=row.created_at,
    )


class PersonalizationStore:
    """Read and merge-write access to ``personalization_cache``.

    Args:
        session_factory: Factory producing :class:`AsyncSession` objects.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._locks = KeyedLock()

    async def get(self, user_id: str, url: str) -> PersonalizationRecord | None:
        """Return the row for ``(user_id, url)``, or ``None``.

        Raises:
            StorageError: On database failure.
        """
        try:
            async with self._session_factory() as session:
                row = await session.get(PersonalizationCache, (user_id, url))
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to read personalizations for {url}: {exc}",
                table="personalization_cache",
            ) from exc

    async def get_many(self, user_id: str, urls: list[str]) -> dict[str, PersonalizationRecord]:
        """Return the user's rows for *urls* that exist, keyed by URL.

        Raises:
            StorageError: On database failure.
        """
        if not urls:
            return {}
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(PersonalizationCache).where(
                        PersonalizationCache.user_id == user_id,
                        PersonalizationCache.url.in_(urls),
                    )
                )
                return {row.url: _to_record(row) for row in result.scalars().all()}
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to read personalizations: {exc}", table="personalization_cache"
            ) from exc

    async def merge(
        self,
        user_id: str,
        url: str,
        updates: Mapping[str, str],
    ) -> PersonalizationRecord:
        """Merge *updates* into the stored mapping for ``(user_id, url)``.

        Creates the row if it does not exist yet.

        Returns:
            The record after the merge.

        Raises:
            StorageError: On database failure.
        """
        async with self._locks.hold((user_id, url)):
            async with self._session_factory() as session:
                try:
                    await session.execute(
                        pg_insert(PersonalizationCache)
                        .values(user_id=user_id, url=url, personalizations={})
                        .on_conflict_do_nothing(index_elements=["user_id", "url"])
                    )
                    result = await session.execute(
                        select(PersonalizationCache)
                        .where(
                            PersonalizationCache.user_id == user_id,
                            PersonalizationCache.url == url,
                        )
                        .with_for_update()
                    )
                    row = result.scalar_one()
                    row.personalizations = merge_personalizations(
                        row.personalizations, updates
                    )
                    await session.commit()
                    await session.refresh(row)
                except SQLAlchemyError as exc:
                    await session.rollback()
                    raise StorageError(
                        f"Failed to merge personalizations for {url}: {exc}",
                        table="personalization_cache",
                    ) from exc

        logger.debug(
            "personalization_store: merged",
            extra={"user_id": user_id, "url": url, "templates": sorted(updates)},
        )
        return _to_record(row)
