"""
anonqa/realtime/rooms.py
In-memory room registry for live group subscribers.

One registry per process, created in the app lifespan and injected wherever it
is needed. Every operation is synchronous so membership never changes across
an await. A connection is a member of at most one room at a time.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set, Tuple
from uuid import uuid4

from anonqa.core.logging import log_event
from anonqa.core.metrics import groups_active_rooms, ws_active_connections, ws_connections_total

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256


class Connection:
    """
    A live client session with its own outbound FIFO.

    Producers call offer() without awaiting; the transport drains the queue
    with next_message(). A full queue drops the message (at-most-once delivery).
    """

    def __init__(self, connection_id: Optional[str] = None, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.id = connection_id or str(uuid4())
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.closed = False

    def offer(self, message: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def next_message(self) -> Optional[Dict[str, Any]]:
        """Wait for the next outbound message; None once closed."""
        message = await self._queue.get()
        return message

    def drain_nowait(self) -> list:
        messages = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return messages
            if item is not None:
                messages.append(item)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake the writer; drop the oldest message if the queue is full
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._queue.put_nowait(None)

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r})"


def _valid_group_id(group_id: Any) -> bool:
    return isinstance(group_id, str) and bool(group_id.strip())


class RoomRegistry:
    """
    group_id -> set of connections currently viewing that group.

    Presence is advisory: unknown connections, unknown groups and malformed ids
    are logged and ignored, never raised.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[Connection]] = {}
        # connection -> group_id it currently belongs to
        self._membership: Dict[Connection, str] = {}
        self._connections: Set[Connection] = set()

    def connect(self, connection: Connection) -> None:
        """Track a newly accepted connection (not yet in any room)."""
        if connection in self._connections:
            return
        self._connections.add(connection)
        ws_connections_total.inc()
        self._update_gauges()

    def join(self, connection: Connection, group_id: str) -> None:
        """Move a connection into group_id's room, leaving any previous room first."""
        if connection is None or not _valid_group_id(group_id):
            log_event(
                "warning",
                "rooms.join_invalid",
                group_id=str(group_id),
                connection_id=getattr(connection, "id", None),
                event_type="rooms.join_invalid",
            )
            return

        current = self._membership.get(connection)
        if current == group_id:
            return
        if current is not None:
            self._remove(connection, current)

        self._rooms.setdefault(group_id, set()).add(connection)
        self._membership[connection] = group_id
        self._connections.add(connection)
        self._update_gauges()
        logger.debug(f"[ROOMS] {connection.id} joined group {group_id}. Members: {len(self._rooms[group_id])}")

    def leave(self, connection: Connection, group_id: str) -> None:
        """Remove a connection from group_id's room. No-op if not a member."""
        if connection is None or not _valid_group_id(group_id):
            logger.debug(f"[ROOMS] Ignoring leave with invalid arguments: {group_id!r}")
            return
        if self._membership.get(connection) != group_id:
            return
        self._remove(connection, group_id)
        self._update_gauges()
        logger.debug(f"[ROOMS] {connection.id} left group {group_id}")

    def on_disconnect(self, connection: Connection) -> None:
        """Drop every membership held by a closed connection."""
        if connection is None:
            return
        group_id = self._membership.get(connection)
        if group_id is not None:
            self._remove(connection, group_id)
        # Sweep in case the connection slipped into another room
        for gid in [gid for gid, members in self._rooms.items() if connection in members]:
            self._remove(connection, gid)
        self._connections.discard(connection)
        self._update_gauges()
        logger.debug(f"[ROOMS] {connection.id} disconnected")

    def members(self, group_id: str) -> Tuple[Connection, ...]:
        """Snapshot of a room's members (safe to iterate while membership changes)."""
        return tuple(self._rooms.get(group_id, ()))

    def room_size(self, group_id: str) -> int:
        return len(self._rooms.get(group_id, ()))

    def group_of(self, connection: Connection) -> Optional[str]:
        return self._membership.get(connection)

    def is_member(self, connection: Connection, group_id: str) -> bool:
        return connection in self._rooms.get(group_id, ())

    @property
    def rooms_count(self) -> int:
        return len(self._rooms)

    @property
    def connections_count(self) -> int:
        return len(self._connections)

    def clear(self) -> None:
        for connection in list(self._connections):
            connection.close()
        self._rooms.clear()
        self._membership.clear()
        self._connections.clear()
        self._update_gauges()

    def _remove(self, connection: Connection, group_id: str) -> None:
        members = self._rooms.get(group_id)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._rooms[group_id]
                logger.debug(f"[ROOMS] Cleaned up empty room for group {group_id}")
        if self._membership.get(connection) == group_id:
            del self._membership[connection]

    def _update_gauges(self) -> None:
        ws_active_connections.set(len(self._connections))
        groups_active_rooms.set(len(self._rooms))
