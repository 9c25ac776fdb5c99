"""
FastAPI dependencies.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from helpqueue.core.registry import ServerRegistry
from helpqueue.core.server import AttendingServer


def get_registry(request: Request) -> ServerRegistry:
    """Registry owned by the application (set up in the lifespan)."""
    return request.app.state.registry


Registry = Annotated[ServerRegistry, Depends(get_registry)]


def get_server(server_id: str, registry: Registry) -> AttendingServer:
    """
    Resolve a registered server from the path.

    Raises:
        HTTPException: 404 if the server has not joined.
    """
    server = registry.get(server_id)
    if server is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Server {server_id} not found",
        )
    return server


Server = Annotated[AttendingServer, Depends(get_server)]
