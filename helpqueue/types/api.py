"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from helpqueue.types.events import QueueSnapshot
from helpqueue.types.members import Member


class MemberModel(BaseModel):
    """A caller identity as supplied by the upstream permission layer."""

    id: str = Field(..., min_length=1)
    display_name: str = ""
    roles: list[str] = Field(default_factory=list)

    def to_member(self) -> Member:
        return Member(
            id=self.id,
            display_name=self.display_name,
            roles=frozenset(self.roles),
        )


class JoinServerRequest(BaseModel):
    """Request body for registering a community."""

    server_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    queue_names: list[str] = Field(
        default_factory=list, description="Queues discovered on the community"
    )


class ServerResponse(BaseModel):
    """Summary of a registered community."""

    server_id: str
    name: str
    queue_names: list[str]
    helper_names: list[str]


class QueueListResponse(BaseModel):
    """All queues of a community."""

    server_id: str
    queues: list[QueueSnapshot]


class CommandReply(BaseModel):
    """Result of dispatching one command."""

    command: str
    success: bool
    message: str
    error_kind: str | None = None
    data: dict[str, Any] | None = None
    diagnostics: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    servers: int
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Error body returned by the API."""

    error: str
    detail: str | None = None
