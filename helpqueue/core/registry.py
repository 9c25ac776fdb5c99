"""
Registry of attending servers owned by the running process.

Registry bookkeeping never spans an await: a join reserves its server id,
builds the server (which runs extension hooks) with nothing held, and then
registers it. A slow extension on one community delays only that join.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable, Iterator

from helpqueue.core.server import AttendingServer, Messenger
from helpqueue.types.members import QueueChannel
from helpqueue.types.results import FanOutReport

logger = logging.getLogger(__name__)

# Builds the extensions attached to each newly joined server
ExtensionFactory = Callable[[str], Iterable[object]]


class ServerRegistry:
    """
    The communities this process serves, keyed by server id.

    Joining and leaving are explicit; nothing else adds or drops servers.
    Extension hooks may call join and leave for other servers.
    """

    def __init__(
        self,
        extension_factory: ExtensionFactory | None = None,
        messenger: Messenger | None = None,
    ):
        """
        Initialize an empty registry.

        Args:
            extension_factory: Called with a server id on join; returns the
                extensions to attach to that server.
            messenger: Announcement delivery shared by every server.
        """
        self._servers: dict[str, AttendingServer] = {}
        # Joins in progress; resolves to None if the build failed
        self._pending: dict[str, asyncio.Future[AttendingServer | None]] = {}
        self._extension_factory = extension_factory
        self._messenger = messenger

    def __contains__(self, server_id: object) -> bool:
        return server_id in self._servers

    def __len__(self) -> int:
        return len(self._servers)

    def __iter__(self) -> Iterator[AttendingServer]:
        return iter(list(self._servers.values()))

    def get(self, server_id: str) -> AttendingServer | None:
        return self._servers.get(server_id)

    async def join(
        self,
        server_id: str,
        name: str,
        queue_channels: Iterable[QueueChannel | str] = (),
    ) -> AttendingServer:
        """
        Build and register a server for a community.

        Joining a community that is already registered returns the existing
        server unchanged. Concurrent joins of the same community wait for
        the first one and share its server.
        """
        while True:
            existing = self._servers.get(server_id)
            if existing is not None:
                logger.info("Server already joined", extra={"server_id": server_id})
                return existing

            pending = self._pending.get(server_id)
            if pending is None:
                break
            server = await asyncio.shield(pending)
            if server is not None:
                return server
            # The first join failed; try again from scratch

        pending = asyncio.get_running_loop().create_future()
        self._pending[server_id] = pending
        try:
            extensions = self._extension_factory(server_id) if self._extension_factory else ()
            server = await AttendingServer.create(
                server_id,
                name,
                queue_channels=queue_channels,
                extensions=extensions,
                messenger=self._messenger,
            )
        except BaseException:
            del self._pending[server_id]
            pending.set_result(None)
            raise

        self._servers[server_id] = server
        del self._pending[server_id]
        pending.set_result(server)

        logger.info(f"Joined server {name}", extra={"server_id": server_id})
        return server

    async def leave(self, server_id: str) -> bool:
        """
        Shut down and drop a server.

        Returns:
            True if the server was registered.
        """
        server = self._servers.pop(server_id, None)
        if server is None:
            return False

        await server.shutdown()
        logger.info(f"Left server {server.name}", extra={"server_id": server_id})
        return True

    async def periodic_update(self, is_first_call: bool = False) -> list[FanOutReport]:
        """Publish PeriodicUpdate on every registered server."""
        return list(
            await asyncio.gather(
                *(server.periodic_update(is_first_call) for server in self)
            )
        )

    async def close(self) -> None:
        """Leave every server."""
        for server_id in list(self._servers):
            await self.leave(server_id)
