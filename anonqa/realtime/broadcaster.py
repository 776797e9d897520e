"""
anonqa/realtime/broadcaster.py
Best-effort fan-out of domain events to a group's room.

broadcast() never awaits and never raises: by the time it runs the storage
write it describes has already committed, so nothing here may fail or slow the
caller. Each member gets the message on its own FIFO queue, which keeps per-room
call order for every subscriber.
"""

import logging
from typing import Optional

from anonqa.core.logging import log_event
from anonqa.core.metrics import ws_messages_dropped_total, ws_messages_sent_total
from anonqa.realtime.events import DomainEvent, to_wire
from anonqa.realtime.rooms import RoomRegistry

logger = logging.getLogger(__name__)


class Broadcaster:
    def __init__(self, rooms: Optional[RoomRegistry]):
        self._rooms = rooms

    def broadcast(self, group_id: str, event: DomainEvent) -> int:
        """
        Deliver event to every connection in group_id's room.

        Returns:
            Number of connections the message was queued for (0 when nobody listens)
        """
        try:
            if self._rooms is None:
                return 0
            members = self._rooms.members(group_id)
            if not members:
                return 0

            event_type = event.kind.value
            message = to_wire(event)
            delivered = 0
            for connection in members:
                if connection.offer(message):
                    delivered += 1
                    ws_messages_sent_total.inc(labels={"event_type": event_type})
                else:
                    ws_messages_dropped_total.inc(labels={"event_type": event_type})
                    logger.debug(f"[BROADCAST] Dropped {event_type} for {connection.id}: queue full or closed")
            return delivered
        except Exception as e:
            log_event(
                "error",
                "broadcast.failed",
                group_id=group_id,
                event_type=getattr(getattr(event, "kind", None), "value", None),
                extra={"error": str(e)},
            )
            return 0
