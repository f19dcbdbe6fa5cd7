"""
Pydantic models for CRAIG API requests and responses.
This module defines the request and response schemas used by the CRAIG API.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from craig.core.schema import Notification


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., description="User message for CRAIG")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")
    notifications: List[Notification] = Field(
        default_factory=list, description="Out-of-band notifications added before the message"
    )


class ToolCallSummary(BaseModel):
    """A tool the agent called during the turn and what it returned."""

    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    response: str


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    session_id: str
    tool_calls: List[ToolCallSummary] = Field(default_factory=list)
