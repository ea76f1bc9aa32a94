"""
Search analytics for the diagnostics knowledge base.

Every executed search is logged in ``search_queries`` keyed by its query text
(case-insensitive). Repeats bump a popularity counter so curators can see what
technicians look for most and which queries still find nothing.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine

from diagnostic_kb.guardrails import normalize_query
from diagnostic_kb.services import db_operations
from diagnostic_kb.services.error_handler import EntityNotFoundError, InvalidQueryError
from diagnostic_kb.tables import search_queries

logger = logging.getLogger(__name__)

CURATION_LIMIT = 20


class SearchAnalyticsRecorder:
    """Sole writer of search_queries rows."""

    def __init__(self, engine: Optional[AsyncEngine] = None):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine or db_operations.get_engine()

    async def record(self, query: str, keywords: Iterable[str], has_results: bool) -> Dict[str, Any]:
        """
        Log one execution of ``query``.

        The counter is incremented in the UPDATE itself so concurrent repeats
        of a known query never lose an increment. Two concurrent first-time
        searches of the same text may still both insert.

        Returns:
            The row as stored after this execution
        """
        original_query = normalize_query(query)
        if not original_query:
            raise InvalidQueryError("Cannot record an empty query")

        keyword_list = list(keywords)
        now = datetime.now(timezone.utc)
        matches_query = sa.func.lower(search_queries.c.original_query) == original_query.lower()

        async with self.engine.begin() as conn:
            result = await conn.execute(
                sa.update(search_queries)
                .where(matches_query)
                .values(
                    search_count=sa.func.coalesce(search_queries.c.search_count, 0) + 1,
                    translated_keywords=keyword_list,
                    has_results=has_results,
                    last_searched_at=now,
                )
            )
            if result.rowcount == 0:
                await conn.execute(
                    sa.insert(search_queries).values(
                        original_query=original_query,
                        translated_keywords=keyword_list,
                        search_count=1,
                        has_results=has_results,
                        last_searched_at=now,
                    )
                )
                logger.info("Recorded new search query '%s'", original_query)
            row = (
                await conn.execute(
                    sa.select(search_queries)
                    .where(matches_query)
                    .order_by(search_queries.c.search_count.desc())
                    .limit(1)
                )
            ).mappings().first()

        return dict(row)

    async def get_by_query(self, query: str) -> Optional[Dict[str, Any]]:
        """Case-insensitive lookup of a recorded query."""
        original_query = normalize_query(query)
        stmt = (
            sa.select(search_queries)
            .where(sa.func.lower(search_queries.c.original_query) == original_query.lower())
            .order_by(search_queries.c.search_count.desc())
            .limit(1)
        )
        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).mappings().first()
        return dict(row) if row is not None else None

    async def popular(self, limit: int = CURATION_LIMIT) -> List[Dict[str, Any]]:
        """Queries that found something, most searched first."""
        stmt = (
            sa.select(search_queries)
            .where(search_queries.c.has_results.is_(True))
            .order_by(search_queries.c.search_count.desc(), search_queries.c.last_searched_at.desc())
            .limit(limit)
        )
        async with self.engine.connect() as conn:
            return db_operations.result_to_dicts(await conn.execute(stmt))

    async def gaps(self, limit: int = CURATION_LIMIT) -> List[Dict[str, Any]]:
        """Queries whose latest execution found nothing (or was never evaluated)."""
        stmt = (
            sa.select(search_queries)
            .where(sa.or_(search_queries.c.has_results.is_(False), search_queries.c.has_results.is_(None)))
            .order_by(search_queries.c.search_count.desc(), search_queries.c.last_searched_at.desc())
            .limit(limit)
        )
        async with self.engine.connect() as conn:
            return db_operations.result_to_dicts(await conn.execute(stmt))

    async def delete(self, record_id: str) -> None:
        """Manual removal by a curator."""
        async with self.engine.begin() as conn:
            result = await conn.execute(sa.delete(search_queries).where(search_queries.c.id == record_id))
        if result.rowcount == 0:
            raise EntityNotFoundError("search_queries", record_id)
        logger.info("Deleted search query %s", record_id)
