"""
API routes module.
"""

from helpqueue.api.routes.commands import router as commands_router
from helpqueue.api.routes.health import router as health_router
from helpqueue.api.routes.servers import router as servers_router

__all__ = ["commands_router", "health_router", "servers_router"]
