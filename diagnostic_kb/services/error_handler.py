"""
Error handling utilities for the diagnostics search service.

This module provides functionality for:
1. The exception hierarchy raised by the search core
2. Tracking failure patterns per component
3. Generating user-facing notification messages
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Notification texts shown to technicians
QUESTION_FETCH_FAILED = "Gagal mendapatkan pertanyaan klarifikasi"
QUESTION_PROCESSING_FAILED = "Terjadi kesalahan saat memproses pertanyaan"
SEARCH_FAILED = "Pencarian gagal"
NO_RESULTS = "Tidak ada hasil ditemukan"

MAX_RECENT_ERRORS = 100


class DiagnosticSearchError(Exception):
    """Base exception for every error raised by the search core."""

    error_type = "diagnostic_search_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InvalidQueryError(DiagnosticSearchError):
    """Raised when search text fails validation."""

    error_type = "invalid_query"


class EmptyKeywordsError(DiagnosticSearchError):
    """Raised when the executor is asked to run without keywords."""

    error_type = "empty_keywords"

    def __init__(self, message: str = "Cannot search without keywords"):
        super().__init__(message)


class SearchExecutionError(DiagnosticSearchError):
    """Raised when a collection query fails during a federated search."""

    error_type = "search_execution"

    def __init__(self, collection: str, cause: BaseException):
        self.collection = collection
        self.cause = cause
        super().__init__(
            f"Search on '{collection}' failed: {cause}",
            details={"collection": collection},
        )


class QuestionGenerationError(DiagnosticSearchError):
    """Raised when clarifying questions cannot be generated."""

    error_type = "question_generation"
    status_code = 500


class RateLimitError(QuestionGenerationError):
    error_type = "rate_limit"
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded, please try again later."):
        super().__init__(message)


class QuotaExceededError(QuestionGenerationError):
    error_type = "quota_exceeded"
    status_code = 402

    def __init__(self, message: str = "Payment required, please add credits."):
        super().__init__(message)


class MalformedResponseError(QuestionGenerationError):
    error_type = "malformed_response"

    def __init__(self, message: str = "Invalid AI response format"):
        super().__init__(message)


class ProviderNotConfiguredError(QuestionGenerationError):
    error_type = "provider_not_configured"


class SessionNotFoundError(DiagnosticSearchError):
    error_type = "session_not_found"

    def __init__(self, session_id: str):
        super().__init__(f"Question session '{session_id}' not found", details={"session_id": session_id})


class InvalidSessionStateError(DiagnosticSearchError):
    """Raised when a session operation is not allowed in the current state."""

    error_type = "invalid_session_state"


class UnknownEntityError(DiagnosticSearchError):
    error_type = "unknown_entity"

    def __init__(self, entity: str):
        super().__init__(f"Unknown entity collection '{entity}'", details={"entity": entity})


class EntityNotFoundError(DiagnosticSearchError):
    error_type = "entity_not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} with id '{entity_id}' not found",
            details={"entity": entity, "id": entity_id},
        )


class InvalidEntityPayloadError(DiagnosticSearchError):
    error_type = "invalid_entity_payload"


class ErrorHandler:
    """Keeps per-component failure statistics and maps errors to notifications."""

    def __init__(self):
        self.error_stats = defaultdict(int)
        self.recent_errors: List[Dict[str, Any]] = []

    def track_error(self, component: str, error: BaseException, details: str = "") -> None:
        """Track error information"""
        error_type = getattr(error, "error_type", type(error).__name__)
        error_info = {
            "component": component,
            "error_type": error_type,
            "message": str(error),
            "details": details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.error_stats[f"{component}.{error_type}"] += 1
        self.recent_errors.append(error_info)
        # Only keep the latest error records
        if len(self.recent_errors) > MAX_RECENT_ERRORS:
            self.recent_errors.pop(0)

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics"""
        return {
            "total_errors": sum(self.error_stats.values()),
            "error_types": dict(self.error_stats),
            "recent_errors": self.recent_errors[-10:] if self.recent_errors else [],
        }

    def reset(self) -> None:
        self.error_stats.clear()
        self.recent_errors.clear()

    def get_user_friendly_error(self, error: BaseException) -> str:
        """Generate the notification text for an error."""
        if isinstance(error, QuestionGenerationError):
            return QUESTION_FETCH_FAILED
        if isinstance(error, (SearchExecutionError, EmptyKeywordsError)):
            return SEARCH_FAILED
        if isinstance(error, DiagnosticSearchError):
            return error.message
        return QUESTION_PROCESSING_FAILED


# Global error handler instance
error_handler = ErrorHandler()
