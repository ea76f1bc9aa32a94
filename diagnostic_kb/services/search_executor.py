"""
Federated search over the knowledge-base collections.

One keyword list is matched against problems, symptoms, DTC codes, sensors and
actuators concurrently. A collection matches a row when any keyword occurs
(case-insensitively) in any of that collection's search fields.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from diagnostic_kb.guardrails import validate_keywords
from diagnostic_kb.schemas.search import SearchResultBundle
from diagnostic_kb.services.entity_store import EntityStore
from diagnostic_kb.services.error_handler import (
    EmptyKeywordsError,
    InvalidQueryError,
    SearchExecutionError,
    error_handler,
)
from diagnostic_kb.tables import PROBLEM_CHILDREN, SEARCH_FIELDS

logger = logging.getLogger(__name__)

RESULT_LIMIT = 10


class FederatedSearchExecutor:
    """Runs one keyword search across every searchable collection."""

    def __init__(self, store: Optional[EntityStore] = None, limit: int = RESULT_LIMIT):
        self.store = store or EntityStore()
        self.limit = limit

    async def execute(self, keywords: Iterable[str], allow_partial: bool = False) -> SearchResultBundle:
        """
        Search every collection for the given keywords.

        Args:
            keywords: Non-empty keyword list (translator output)
            allow_partial: Return empty groups for failed collections instead of failing

        Returns:
            SearchResultBundle with one group per collection

        Raises:
            EmptyKeywordsError: If no keywords were given
            SearchExecutionError: If a collection query fails and allow_partial is False
        """
        keyword_list = list(keywords)
        if not keyword_list:
            raise EmptyKeywordsError()
        is_valid, error = validate_keywords(keyword_list)
        if not is_valid:
            raise InvalidQueryError(error)

        collections = list(SEARCH_FIELDS)
        logger.info("Federated search over %d collections with %d keywords", len(collections), len(keyword_list))

        # Fire all, await all; groups are independent of each other
        results = await asyncio.gather(
            *(self._search_collection(name, keyword_list) for name in collections),
            return_exceptions=True,
        )

        groups: Dict[str, List[Dict[str, Any]]] = {}
        failed: List[str] = []
        for name, result in zip(collections, results):
            if isinstance(result, Exception):
                logger.error("Search on %s failed: %s", name, result)
                error = SearchExecutionError(name, result)
                error_handler.track_error("search", error)
                if not allow_partial:
                    raise error from result
                failed.append(name)
                groups[name] = []
            elif isinstance(result, BaseException):
                raise result
            else:
                groups[name] = result

        return SearchResultBundle(**groups, failed_collections=failed)

    async def _search_collection(self, name: str, keywords: List[str]) -> List[Dict[str, Any]]:
        async with self.store.engine.connect() as conn:
            rows = await self.store.search_any(conn, name, SEARCH_FIELDS[name], keywords, self.limit)
            if rows:
                if name == "problems":
                    await self._attach_problem_details(conn, rows)
                else:
                    await self._attach_problem(conn, rows)
        return rows

    async def _attach_problem_details(self, conn, problems: List[Dict[str, Any]]) -> None:
        """Load every child record needed to render a matched problem."""
        problem_ids = [problem["problem_id"] for problem in problems]
        for child in PROBLEM_CHILDREN:
            order_by = "step_order" if child == "solutions" else None
            grouped = await self.store.fetch_by_column(conn, child, "problem_id", problem_ids, order_by=order_by)
            for problem in problems:
                problem[child] = list(grouped.get(problem["problem_id"], []))

        solutions = [solution for problem in problems for solution in problem["solutions"]]
        tools = await self.store.fetch_by_column(
            conn, "tools", "solution_id", [solution["solution_id"] for solution in solutions]
        )
        for solution in solutions:
            solution["tools"] = list(tools.get(solution["solution_id"], []))

    async def _attach_problem(self, conn, rows: List[Dict[str, Any]]) -> None:
        """Attach the parent problem to symptom, DTC, sensor and actuator rows."""
        parents = await self.store.fetch_by_column(
            conn, "problems", "problem_id", [row["problem_id"] for row in rows]
        )
        for row in rows:
            matches = parents.get(row["problem_id"])
            row["problem"] = matches[0] if matches else None
