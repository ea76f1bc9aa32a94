"""
Step envelope accepted by the /mcp endpoint.

A caller lists the search tools it wants run; the service fills in each
step's output, inserting any prerequisite step that was left out.
"""
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

# In dependency order: a search needs keywords, a record needs a search
SearchTool = Literal["translate_keywords", "federated_search", "record_search"]

StepPayload = Union[Dict[str, Any], str]


class Step(BaseModel):
    """One tool invocation; ``output`` stays None until the step has run."""
    tool: SearchTool
    input: Optional[StepPayload] = None
    output: Optional[StepPayload] = None


class MCPEnvelope(BaseModel):
    trace_id: UUID
    context: Optional[Dict[str, Any]] = Field(None, description="Must carry the complaint under 'query'")
    steps: List[Step]
