"""
Pydantic models for taskrelay API requests and responses.
This module defines the request and response schemas used by the taskrelay API.
"""

from pydantic import (
    BaseModel,
    Field,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class AgentRequest(BaseModel):
    """Task for the agent."""

    prompt: str = Field(..., description="Natural-language task for the agent")


class HealthResponse(BaseModel):
    """Liveness payload."""

    status: str = "ok"
    timestamp: int = Field(..., description="Server time in milliseconds since the epoch")
