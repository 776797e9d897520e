"""
anonqa/api/realtime.py
WebSocket endpoint for live group updates.

One socket per client. The client picks the group it is viewing with
join_group and receives every domain event broadcast to that group. All
outbound frames go through the connection's queue and a single writer task, so
frames reach the client in the order they were queued.

Client -> server:
- {"type": "join_group", "groupId": "..."}
- {"type": "leave_group", "groupId": "..."}
- {"type": "ping"}
"""

import asyncio
import contextlib
import json
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from anonqa.core.config import settings
from anonqa.core.logging import log_event
from anonqa.realtime.events import GroupActivity, to_wire, utc_now
from anonqa.realtime.rooms import Connection, RoomRegistry

router = APIRouter()

POLICY_VIOLATION = 1008


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(code: str, message: str) -> dict:
    return {"type": "error", "code": code, "message": message}


async def _writer(websocket: WebSocket, connection: Connection, rooms: RoomRegistry, request_id: str) -> None:
    """Drain the connection's queue onto the socket until it is closed.

    A failed send means the peer is gone: the connection leaves its room at
    once instead of waiting for the receive loop to notice.
    """
    while True:
        message = await connection.next_message()
        if message is None:
            return
        try:
            await websocket.send_json(message)
        except Exception as e:
            log_event(
                "debug",
                "ws.send_failed",
                request_id=request_id,
                connection_id=connection.id,
                event_type="ws.send_failed",
                extra={"error": str(e)},
            )
            rooms.on_disconnect(connection)
            connection.close()
            return


@router.websocket("/v1/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Live group updates.

    Events Emitted:
    - connected (on accept, to this client only)
    - group_activity system/joined (on join, to this client only)
    - question_* / answer_* / group_activity for the joined group
    - pong, error
    """
    rooms: RoomRegistry = websocket.app.state.rooms
    await websocket.accept()
    request_id = websocket.headers.get("x-request-id") or str(uuid4())
    connection = Connection(queue_size=settings.WS_OUTBOUND_QUEUE_SIZE)
    rooms.connect(connection)
    log_event("info", "ws.connected", request_id=request_id, connection_id=connection.id, event_type="ws.connected")

    writer = asyncio.create_task(_writer(websocket, connection, rooms, request_id))
    connection.offer({
        "type": "connected",
        "connectionId": connection.id,
        "ts": _now_iso(),
        "request_id": request_id,
    })

    close_code = None
    try:
        while not connection.closed:
            raw_message = await websocket.receive_text()

            if len(raw_message.encode("utf-8")) > settings.WS_MAX_MESSAGE_BYTES:
                log_event("info", "ws.payload_too_large", request_id=request_id, connection_id=connection.id, event_type="ws.payload_too_large")
                connection.offer(_error("payload_too_large", "WS message too large"))
                close_code = POLICY_VIOLATION
                break

            try:
                data = json.loads(raw_message)
            except ValueError as e:
                log_event("debug", "ws.invalid_json", request_id=request_id, connection_id=connection.id, event_type="ws.invalid_json", extra={"error": str(e)})
                connection.offer(_error("invalid_json", "Message is not valid JSON"))
                continue

            if not isinstance(data, dict):
                connection.offer(_error("invalid_message", "Message must be a JSON object"))
                continue

            message_type = data.get("type")
            if message_type == "ping":
                connection.offer({"type": "pong", "ts": _now_iso()})
                continue

            if message_type in ("join_group", "leave_group"):
                group_id = data.get("groupId")
                if not isinstance(group_id, str) or not group_id.strip():
                    connection.offer(_error("invalid_group", "groupId is required"))
                    continue
                if message_type == "join_group":
                    rooms.join(connection, group_id)
                    connection.offer(to_wire(GroupActivity(group_id=group_id, type="system", action="joined", timestamp=utc_now())))
                    log_event("debug", "ws.joined", request_id=request_id, group_id=group_id, connection_id=connection.id, event_type="ws.joined")
                else:
                    rooms.leave(connection, group_id)
                    log_event("debug", "ws.left", request_id=request_id, group_id=group_id, connection_id=connection.id, event_type="ws.left")
                continue

            connection.offer(_error("unknown_type", f"Unknown message type: {message_type}"))

    except WebSocketDisconnect:
        log_event("info", "ws.disconnected", request_id=request_id, connection_id=connection.id, event_type="ws.disconnected")
    except Exception as e:
        log_event("error", "ws.loop_error", request_id=request_id, connection_id=connection.id, event_type="ws.loop_error", extra={"error": str(e)})
    finally:
        rooms.on_disconnect(connection)
        connection.close()
        if close_code is not None:
            # Flush the queued error frame before closing
            with contextlib.suppress(Exception):
                await writer
            with contextlib.suppress(Exception):
                await websocket.close(code=close_code, reason="WS message too large")
        else:
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
