"""API endpoints."""

from logistics.api.routes import router
from logistics.api.runs import RunController
from logistics.api.websocket import manager, websocket_endpoint, ConnectionManager

__all__ = [
    "router",
    "RunController",
    "manager",
    "websocket_endpoint",
    "ConnectionManager",
]
