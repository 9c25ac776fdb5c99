"""
Server registration routes.
"""

from fastapi import APIRouter, HTTPException, status

from helpqueue.api.dependencies import Registry, Server
from helpqueue.constants import API_V1_PREFIX
from helpqueue.core.server import AttendingServer
from helpqueue.types.api import JoinServerRequest, QueueListResponse, ServerResponse

router = APIRouter(prefix=f"{API_V1_PREFIX}/servers", tags=["Servers"])


def _server_to_response(server: AttendingServer) -> ServerResponse:
    """Convert an AttendingServer to a ServerResponse."""
    return ServerResponse(
        server_id=server.server_id,
        name=server.name,
        queue_names=server.queue_names,
        helper_names=sorted(server.helper_names),
    )


@router.post(
    "",
    response_model=ServerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Join a server",
    description="Register a community and build its queues. Joining twice is a no-op.",
)
async def join_server(request: JoinServerRequest, registry: Registry) -> ServerResponse:
    """
    Join a community.

    Args:
        request: Community identity and its discovered queues.
        registry: The process-wide server registry.

    Returns:
        ServerResponse describing the joined server.
    """
    server = await registry.join(request.server_id, request.name, request.queue_names)
    return _server_to_response(server)


@router.get(
    "",
    response_model=list[ServerResponse],
    summary="List servers",
    description="List every joined community.",
)
async def list_servers(registry: Registry) -> list[ServerResponse]:
    return [_server_to_response(server) for server in registry]


@router.get(
    "/{server_id}",
    response_model=ServerResponse,
    summary="Get server details",
)
async def get_server_details(server: Server) -> ServerResponse:
    return _server_to_response(server)


@router.delete(
    "/{server_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Leave a server",
    description="Shut a server down and drop all of its queues.",
)
async def leave_server(server_id: str, registry: Registry) -> None:
    """
    Leave a community.

    Raises:
        HTTPException: 404 if the server has not joined.
    """
    if not await registry.leave(server_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Server {server_id} not found",
        )


@router.get(
    "/{server_id}/queues",
    response_model=QueueListResponse,
    summary="List queues",
    description="Snapshots of every queue on a server.",
)
async def list_queues(server: Server) -> QueueListResponse:
    return QueueListResponse(server_id=server.server_id, queues=list(server.snapshot()))
