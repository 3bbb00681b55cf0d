"""WebSocket connection tracking for the chat gateway.

Each accepted socket is wrapped in a :class:`ClientConnection`, which carries
the authenticated identity and a lifecycle state::

    connecting -> authenticated -> active -> closed

:class:`ConnectionManager` keeps the set of active connections and fans out
presence events to them.

Performance Notes:
    - Broadcasting uses asyncio.gather() for concurrent delivery
    - Failed connections are dropped from the manager during broadcast
    - Uvicorn handles ping/pong at the protocol level (see server settings)
"""
import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Dict, List, Optional

from fastapi import WebSocket

from connecthub.auth.tokens import TokenClaims

from .schemas import frame

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle of one client connection.

    Attributes:
        CONNECTING: Socket accepted, credential not yet checked.
        AUTHENTICATED: Credential verified, not yet registered.
        ACTIVE: Registered in presence; events are processed.
        CLOSED: Terminal. No further events are processed or delivered.
    """
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    CLOSED = "closed"


class ClientConnection:
    """One client socket plus the identity it authenticated as.

    Attributes:
        connection_id: Random id, unique per socket.
        user_id: Authenticated identity (None until authenticated).
        role: Role claim from the token.
        state: Current ConnectionState.
        connected_at: Unix timestamp of acceptance.
    """

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.connection_id = connection_id or uuid.uuid4().hex
        self.user_id: Optional[str] = None
        self.role: Optional[str] = None
        self.state = ConnectionState.CONNECTING
        self.connected_at = time.time()

    @property
    def channel(self) -> Optional[str]:
        """Private channel name used for targeted delivery."""
        return f"user:{self.user_id}" if self.user_id else None

    @property
    def is_active(self) -> bool:
        return self.state == ConnectionState.ACTIVE

    def authenticate(self, claims: TokenClaims) -> None:
        self.user_id = claims.userId
        self.role = claims.role
        self.state = ConnectionState.AUTHENTICATED

    async def emit(self, event: str, data: Optional[dict] = None) -> bool:
        """Send one frame to this client.

        Returns:
            True if the frame was handed to the transport, False if the
            connection is closed or the send failed.
        """
        if self.state == ConnectionState.CLOSED:
            return False
        try:
            await self.websocket.send_json(frame(event, data))
            return True
        except Exception as e:
            logger.debug(f"[WS] Failed to send {event} to {self.user_id or self.connection_id}: {e}")
            return False

    def __repr__(self) -> str:
        return f"ClientConnection(id={self.connection_id}, user={self.user_id}, state={self.state.value})"


class ConnectionManager:
    """Tracks active connections and broadcasts presence events to them.

    This implementation is designed for use from the event loop and is NOT
    thread-safe.
    """

    def __init__(self) -> None:
        self.active_connections: Dict[str, ClientConnection] = {}

    def add(self, connection: ClientConnection) -> None:
        self.active_connections[connection.connection_id] = connection
        logger.info(
            f"[Manager] {connection.channel} joined ({len(self.active_connections)} active connections)"
        )

    def remove(self, connection: ClientConnection) -> bool:
        removed = self.active_connections.pop(connection.connection_id, None) is not None
        if removed:
            logger.info(
                f"[Manager] {connection.channel} left ({len(self.active_connections)} active connections)"
            )
        return removed

    def get(self, connection_id: str) -> Optional[ClientConnection]:
        return self.active_connections.get(connection_id)

    def __len__(self) -> int:
        return len(self.active_connections)

    async def broadcast(self, event: str, data: dict) -> None:
        """Send an event to every active connection concurrently."""
        await self._fan_out(list(self.active_connections.values()), event, data)

    async def broadcast_except(
        self, event: str, data: dict, exclude: ClientConnection
    ) -> None:
        """Send an event to every active connection except ``exclude``.

        Used for presence notices the subject itself should not receive.
        """
        connections = [
            conn for conn in self.active_connections.values()
            if conn is not exclude
        ]
        await self._fan_out(connections, event, data)

    async def _fan_out(self, connections: List[ClientConnection], event: str, data: dict) -> None:
        if not connections:
            return

        results = await asyncio.gather(
            *[conn.emit(event, data) for conn in connections],
            return_exceptions=True
        )

        # Remove failed connections
        failed_connections = [
            conn for conn, success in zip(connections, results)
            if success is not True
        ]
        for conn in failed_connections:
            self.active_connections.pop(conn.connection_id, None)
        if failed_connections:
            logger.info(f"[Manager] Dropped {len(failed_connections)} dead connection(s) during {event}")
