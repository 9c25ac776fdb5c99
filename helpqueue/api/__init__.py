"""
API module.
Contains FastAPI application, routes, and the WebSocket stream.
"""

from helpqueue.api.main import create_app, run

__all__ = ["create_app", "run"]
