"""
Search pipeline for the diagnostics knowledge base.

This module provides the core functionality for:
1. Translating a complaint into keywords (plus any clarification keywords)
2. Running the federated search
3. Recording the outcome for analytics, separately and best-effort
"""
import logging
from typing import Iterable, List, Optional

from pydantic import BaseModel

from diagnostic_kb.guardrails import MAX_KEYWORDS, normalize_query, validate_query
from diagnostic_kb.schemas.responses import Notification
from diagnostic_kb.schemas.search import SearchResponse, SearchResultBundle
from diagnostic_kb.services.analytics import SearchAnalyticsRecorder
from diagnostic_kb.services.error_handler import NO_RESULTS, InvalidQueryError, error_handler
from diagnostic_kb.services.keyword_translator import KeywordSet, translate
from diagnostic_kb.services.notifications import NotificationCollector
from diagnostic_kb.services.search_executor import FederatedSearchExecutor

logger = logging.getLogger(__name__)


class SearchOutcome(BaseModel):
    """What one search produced, before and independent of analytics."""
    query: str
    keywords: List[str]
    results: SearchResultBundle

    @property
    def has_results(self) -> bool:
        return self.results.has_results


async def run_search(
    query: str,
    extra_keywords: Optional[Iterable[str]] = None,
    executor: Optional[FederatedSearchExecutor] = None,
) -> SearchOutcome:
    """
    Translate and execute one search.

    Args:
        query: Free-text complaint as typed
        extra_keywords: Keywords contributed by a clarifying-question session
        executor: Executor to use (a default one when omitted)

    Returns:
        SearchOutcome; a query without any usable keyword yields an empty bundle
        without touching the database

    Raises:
        InvalidQueryError: If the query is empty or too long
        SearchExecutionError: If a collection query fails
    """
    is_valid, error = validate_query(query)
    if not is_valid:
        raise InvalidQueryError(error)
    normalized = normalize_query(query)

    # Clarification keywords first; the cap trims dictionary expansions
    keywords = KeywordSet(extra_keywords)
    keywords.update(translate(normalized))
    keyword_list = keywords.preview(MAX_KEYWORDS)
    if len(keywords) > MAX_KEYWORDS:
        logger.warning("Query produced %d keywords, searching with the first %d", len(keywords), MAX_KEYWORDS)

    if not keyword_list:
        logger.info("Query '%s' produced no keywords, skipping search", normalized)
        return SearchOutcome(query=normalized, keywords=[], results=SearchResultBundle())

    executor = executor or FederatedSearchExecutor()
    results = await executor.execute(keyword_list)
    logger.info(
        "Search '%s' with %d keywords: %s",
        normalized,
        len(keyword_list),
        "hit" if results.has_results else "no results",
    )
    return SearchOutcome(query=normalized, keywords=keyword_list, results=results)


async def record_outcome(outcome: SearchOutcome, recorder: Optional[SearchAnalyticsRecorder] = None) -> bool:
    """
    Record a search outcome for analytics.

    Never raises: a failure is logged and counted, and the caller's results
    are unaffected.

    Returns:
        True if the outcome was stored
    """
    recorder = recorder or SearchAnalyticsRecorder()
    try:
        await recorder.record(outcome.query, outcome.keywords, outcome.has_results)
        return True
    except Exception as e:
        logger.exception("Failed to record search analytics for '%s'", outcome.query)
        error_handler.track_error("analytics", e)
        return False


def search_notifications(outcome: SearchOutcome) -> List[Notification]:
    notifications = NotificationCollector()
    if not outcome.has_results:
        notifications.info(NO_RESULTS)
    return notifications.drain()


def to_response(outcome: SearchOutcome, notifications: Optional[List[Notification]] = None) -> SearchResponse:
    return SearchResponse(
        query=outcome.query,
        keywords=outcome.keywords,
        results=outcome.results,
        has_results=outcome.has_results,
        notifications=list(notifications or []) + search_notifications(outcome),
    )
