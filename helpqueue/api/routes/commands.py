"""
Command dispatch routes.
"""

from typing import Any

from fastapi import APIRouter, Body, HTTPException, status
from pydantic import ValidationError

from helpqueue.api.dependencies import Server
from helpqueue.commands import dispatch, parse_command
from helpqueue.constants import API_V1_PREFIX
from helpqueue.types.api import CommandReply

router = APIRouter(prefix=f"{API_V1_PREFIX}/servers", tags=["Commands"])


@router.post(
    "/{server_id}/commands",
    response_model=CommandReply,
    summary="Run a command",
    description=(
        "Dispatch one command on behalf of a member. Rejections are reported "
        "in the reply with success=false."
    ),
)
async def run_command(
    server: Server,
    payload: dict[str, Any] = Body(...),
) -> CommandReply:
    """
    Parse and dispatch a command.

    Args:
        server: The server the command targets.
        payload: `command` name, `caller` member and command arguments.

    Returns:
        CommandReply from the dispatcher.

    Raises:
        HTTPException: 422 if a known command has invalid arguments.
    """
    try:
        command = parse_command(payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        ) from e

    return await dispatch(server, command)
