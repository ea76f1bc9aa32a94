"""
Search guardrails for the diagnostics knowledge base.

This module provides validation and sanitizing of search input before it
reaches the database.
"""
import re
from typing import Iterable, List, Tuple

MAX_QUERY_LENGTH = 500
MAX_KEYWORDS = 50
MAX_KEYWORD_LENGTH = 100

LIKE_ESCAPE_CHAR = "\\"

# Control characters are never meaningful in a complaint text
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def normalize_query(query: str) -> str:
    """Strip control characters and surrounding whitespace."""
    return CONTROL_CHARS.sub("", query or "").strip()


def validate_query(query: str) -> Tuple[bool, str]:
    """
    Validate search text.

    Args:
        query: Raw search text

    Returns:
        Tuple of (is_valid, error_message)
    """
    normalized = normalize_query(query)
    if not normalized:
        return False, "Query must not be empty"
    if len(normalized) > MAX_QUERY_LENGTH:
        return False, f"Query must be at most {MAX_QUERY_LENGTH} characters"
    return True, ""


def validate_keywords(keywords: Iterable[str]) -> Tuple[bool, str]:
    """Validate a keyword list before it is turned into substring filters."""
    keyword_list = list(keywords)
    if not keyword_list:
        return False, "At least one keyword is required"
    if len(keyword_list) > MAX_KEYWORDS:
        return False, f"At most {MAX_KEYWORDS} keywords are allowed"
    for keyword in keyword_list:
        if not keyword or not keyword.strip():
            return False, "Keywords must not be blank"
        if len(keyword) > MAX_KEYWORD_LENGTH:
            return False, f"Keyword '{keyword[:20]}...' exceeds {MAX_KEYWORD_LENGTH} characters"
    return True, ""


def escape_like(keyword: str) -> str:
    """Escape LIKE wildcards so a keyword matches literally."""
    return (
        keyword.replace(LIKE_ESCAPE_CHAR, LIKE_ESCAPE_CHAR * 2)
        .replace("%", LIKE_ESCAPE_CHAR + "%")
        .replace("_", LIKE_ESCAPE_CHAR + "_")
    )


def build_like_patterns(keywords: Iterable[str]) -> List[str]:
    """Wrap each keyword as a '%keyword%' substring pattern."""
    return [f"%{escape_like(keyword)}%" for keyword in keywords]
