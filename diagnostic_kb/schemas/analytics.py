"""
Schemas for search analytics.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

KEYWORD_PREVIEW_LIMIT = 3


class SearchQueryRecord(BaseModel):
    """One row of search_queries as shown to curators."""
    id: str
    original_query: str
    translated_keywords: Optional[List[str]] = None
    search_count: Optional[int] = None
    has_results: Optional[bool] = None
    last_searched_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @computed_field
    @property
    def keyword_preview(self) -> List[str]:
        return (self.translated_keywords or [])[:KEYWORD_PREVIEW_LIMIT]


class SearchQueryList(BaseModel):
    queries: List[SearchQueryRecord] = Field(default_factory=list)
