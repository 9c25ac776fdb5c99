"""
Backup type definitions.

A backup is prior server state offered by an extension at construction time:
queue names and which helpers were assigned to them.
"""

from pydantic import BaseModel, Field

from helpqueue.types.events import MemberSnapshot


class QueueBackup(BaseModel):
    """Saved state of one queue."""

    name: str
    channel_id: str | None = None
    helpers: list[MemberSnapshot] = Field(default_factory=list)


class ServerBackup(BaseModel):
    """Saved state of one server."""

    server_id: str
    server_name: str | None = None
    queues: list[QueueBackup] = Field(default_factory=list)
