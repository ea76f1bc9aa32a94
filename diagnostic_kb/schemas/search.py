"""
Schemas for keyword translation and federated search.
"""
from typing import Any, Dict, List

from pydantic import BaseModel, Field, computed_field

from diagnostic_kb.schemas.responses import Notification


class SearchRequest(BaseModel):
    """Request body for the /search endpoint."""
    query: str = Field(..., description="Free-text complaint, symptom or DTC")


class KeywordsResponse(BaseModel):
    """Response model for the /search/translate endpoint."""
    query: str
    keywords: List[str] = Field(..., description="Every derived keyword")
    preview: List[str] = Field(..., description="Keywords capped for display")


class SearchResultBundle(BaseModel):
    """Result groups of one federated search, one per searched collection."""
    problems: List[Dict[str, Any]] = Field(default_factory=list)
    symptoms: List[Dict[str, Any]] = Field(default_factory=list)
    dtc_codes: List[Dict[str, Any]] = Field(default_factory=list)
    sensors: List[Dict[str, Any]] = Field(default_factory=list)
    actuators: List[Dict[str, Any]] = Field(default_factory=list)
    failed_collections: List[str] = Field(
        default_factory=list,
        description="Collections whose query failed (only populated for partial searches)",
    )

    @computed_field
    @property
    def has_results(self) -> bool:
        return any((self.problems, self.symptoms, self.dtc_codes, self.sensors, self.actuators))


class SearchResponse(BaseModel):
    """Response model for every endpoint that runs a search."""
    query: str = Field(..., description="Search text as recorded for analytics")
    keywords: List[str] = Field(..., description="Keywords the search ran with")
    results: SearchResultBundle
    has_results: bool
    notifications: List[Notification] = Field(default_factory=list)
