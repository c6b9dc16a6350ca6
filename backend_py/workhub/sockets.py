"""Socket.IO server definition.

This module instantiates the Socket.IO server used for real-time
communication and binds it to a ``RealtimeHub``. Clients authenticate
during the handshake with their access token (``auth={"token": ...}``,
a ``token`` query parameter or an ``Authorization`` header); a refused
handshake never reaches any event handler.
"""

from __future__ import annotations

import logging

import socketio

from .config import CLIENT_URL, SOCKET_PING_INTERVAL, SOCKET_PING_TIMEOUT
from .realtime.bootstrap import extract_token
from .realtime.errors import RealtimeError

logger = logging.getLogger(__name__)

# async_mode="asgi" because the server is mounted next to FastAPI and
# served by Uvicorn.
sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=[CLIENT_URL],
    ping_timeout=SOCKET_PING_TIMEOUT,
    ping_interval=SOCKET_PING_INTERVAL,
)


def _event_handler(hub, event: str):
    async def handler(sid, data=None):
        await hub.handle(event, sid, data)

    return handler


def bind(server: socketio.AsyncServer, hub) -> None:
    """Route the server's connection lifecycle and inbound events to ``hub``."""

    @server.event
    async def connect(sid, environ, auth=None):
        try:
            await hub.connect(sid, extract_token(auth, environ))
        except RealtimeError as exc:
            logger.warning("Socket connection refused for %s: %s", sid, exc.message)
            raise socketio.exceptions.ConnectionRefusedError(exc.message)

    @server.event
    async def disconnect(sid, *args):
        await hub.disconnect(sid)

    for event in hub.handlers:
        server.on(event, _event_handler(hub, event))
