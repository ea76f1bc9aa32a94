"""
API response schemas shared across the diagnostics search service.
"""
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field


class Notification(BaseModel):
    """A transient message for the technician (rendered as a toast by the UI)."""
    level: Literal["success", "info", "error"] = Field(..., description="Severity of the message")
    message: str = Field(..., description="Text shown to the user")


class StatsResponse(BaseModel):
    """Response model for the /stats endpoint."""
    counts: Dict[str, int] = Field(..., description="Row count per knowledge-base collection")
    errors: Dict[str, Any] = Field(
        default_factory=dict,
        description="Failure counters of the search core since process start",
    )


class DeletedResponse(BaseModel):
    deleted: bool = True
    id: str


class EntityListResponse(BaseModel):
    entity: str
    rows: List[Dict[str, Any]]
