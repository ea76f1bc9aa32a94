"""
Entity store for the diagnostics knowledge base.

A thin async data-access layer over the knowledge-base tables: filtered
substring search, related-record loading, exact lookup by natural key and
create/read/update/delete by id.
"""
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from diagnostic_kb.guardrails import LIKE_ESCAPE_CHAR, build_like_patterns
from diagnostic_kb.services import db_operations
from diagnostic_kb.services.error_handler import (
    EntityNotFoundError,
    InvalidEntityPayloadError,
    UnknownEntityError,
)
from diagnostic_kb.tables import ENTITY_TABLES, primary_key_column

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


def get_table(entity: str) -> sa.Table:
    table = ENTITY_TABLES.get(entity)
    if table is None:
        raise UnknownEntityError(entity)
    return table


def keyword_filter(table: sa.Table, fields: Sequence[str], keywords: Iterable[str]) -> sa.ColumnElement:
    """OR over every (keyword, field) pair as a case-insensitive substring match."""
    clauses = [
        table.c[field].ilike(pattern, escape=LIKE_ESCAPE_CHAR)
        for pattern in build_like_patterns(keywords)
        for field in fields
    ]
    return sa.or_(*clauses)


class EntityStore:
    """Data access for the knowledge-base collections."""

    def __init__(self, engine: Optional[AsyncEngine] = None):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine or db_operations.get_engine()

    # ------------------------------------------------------------------
    # Search helpers
    # ------------------------------------------------------------------

    async def search_any(
        self,
        conn: AsyncConnection,
        entity: str,
        fields: Sequence[str],
        keywords: Iterable[str],
        limit: int,
    ) -> List[Dict[str, Any]]:
        """Rows of ``entity`` where any keyword occurs in any of ``fields``."""
        table = get_table(entity)
        stmt = sa.select(table).where(keyword_filter(table, fields, keywords)).limit(limit)
        result = await conn.execute(stmt)
        return db_operations.result_to_dicts(result)

    async def fetch_by_column(
        self,
        conn: AsyncConnection,
        entity: str,
        column: str,
        values: Iterable[Any],
        order_by: Optional[str] = None,
    ) -> Dict[Any, List[Dict[str, Any]]]:
        """Rows of ``entity`` whose ``column`` is in ``values``, grouped by that column."""
        values = list(dict.fromkeys(values))
        grouped: Dict[Any, List[Dict[str, Any]]] = defaultdict(list)
        if not values:
            return grouped

        table = get_table(entity)
        stmt = sa.select(table).where(table.c[column].in_(values))
        if order_by:
            stmt = stmt.order_by(table.c[order_by])
        result = await conn.execute(stmt)
        for row in db_operations.result_to_dicts(result):
            grouped[row[column]].append(row)
        return grouped

    # ------------------------------------------------------------------
    # Create / read / update / delete
    # ------------------------------------------------------------------

    def _check_columns(self, table: sa.Table, values: Dict[str, Any]) -> None:
        unknown = sorted(set(values) - set(table.c.keys()))
        if unknown:
            raise InvalidEntityPayloadError(
                f"Unknown fields for {table.name}: {', '.join(unknown)}",
                details={"fields": unknown},
            )

    async def list_rows(self, entity: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> List[Dict[str, Any]]:
        table = get_table(entity)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        stmt = sa.select(table).order_by(primary_key_column(table)).limit(limit).offset(offset)
        async with self.engine.connect() as conn:
            result = await conn.execute(stmt)
            return db_operations.result_to_dicts(result)

    async def get(self, entity: str, entity_id: str) -> Dict[str, Any]:
        table = get_table(entity)
        stmt = sa.select(table).where(primary_key_column(table) == entity_id)
        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).mappings().first()
        if row is None:
            raise EntityNotFoundError(entity, entity_id)
        return dict(row)

    async def find_by_key(
        self,
        entity: str,
        column: str,
        value: str,
        case_insensitive: bool = True,
    ) -> Optional[Dict[str, Any]]:
        """Exact lookup by a natural key, e.g. dtc_codes.dtc_code."""
        table = get_table(entity)
        if column not in table.c:
            raise InvalidEntityPayloadError(f"Unknown field for {entity}: {column}")
        condition = (
            sa.func.lower(table.c[column]) == value.lower()
            if case_insensitive
            else table.c[column] == value
        )
        async with self.engine.connect() as conn:
            row = (await conn.execute(sa.select(table).where(condition).limit(1))).mappings().first()
        return dict(row) if row is not None else None

    async def insert(self, entity: str, values: Dict[str, Any]) -> Dict[str, Any]:
        table = get_table(entity)
        self._check_columns(table, values)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(sa.insert(table).values(**values).returning(*table.c))
                row = result.mappings().one()
        except IntegrityError as e:
            raise InvalidEntityPayloadError(f"Could not create {entity}: {e.orig}")
        logger.info("Created %s %s", entity, row[primary_key_column(table).name])
        return dict(row)

    async def update(self, entity: str, entity_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        table = get_table(entity)
        pk = primary_key_column(table)
        self._check_columns(table, values)
        if pk.name in values:
            raise InvalidEntityPayloadError(f"Field '{pk.name}' cannot be changed")
        if not values:
            return await self.get(entity, entity_id)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    sa.update(table).where(pk == entity_id).values(**values).returning(*table.c)
                )
                row = result.mappings().first()
        except IntegrityError as e:
            raise InvalidEntityPayloadError(f"Could not update {entity}: {e.orig}")
        if row is None:
            raise EntityNotFoundError(entity, entity_id)
        return dict(row)

    async def delete(self, entity: str, entity_id: str) -> None:
        table = get_table(entity)
        async with self.engine.begin() as conn:
            result = await conn.execute(sa.delete(table).where(primary_key_column(table) == entity_id))
        if result.rowcount == 0:
            raise EntityNotFoundError(entity, entity_id)
        logger.info("Deleted %s %s", entity, entity_id)

    async def count(self, entity: str) -> int:
        table = get_table(entity)
        async with self.engine.connect() as conn:
            result = await conn.execute(sa.select(sa.func.count()).select_from(table))
            return int(result.scalar_one())
