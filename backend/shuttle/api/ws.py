"""WebSocket endpoint for real-time shuttle status events."""

import asyncio
import logging
import uuid

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py on startup
broadcaster = None


def _for_parent(event: dict, parent_uuid: uuid.UUID | None) -> bool:
    return parent_uuid is None or event.get("parent_uuid") == str(parent_uuid)


@router.websocket("/ws/shuttles")
async def shuttle_ws(websocket: WebSocket, parent_uuid: uuid.UUID | None = None) -> None:
    """Stream shuttle status events as they happen.

    With ``?parent_uuid=`` only that parent's children are streamed; the
    first frame is a snapshot of today's latest status per student.
    """
    await websocket.accept()

    if broadcaster is None:
        await websocket.close(code=1011, reason="Service not ready")
        return

    events = [orjson.loads(raw) for raw in await broadcaster.get_current_state()]
    events = [e for e in events if _for_parent(e, parent_uuid)]
    if events:
        await websocket.send_bytes(orjson.dumps({"type": "snapshot", "events": events}))

    queue = broadcaster.subscribe()
    try:
        while True:
            payload = await queue.get()
            if parent_uuid is not None and not _for_parent(orjson.loads(payload), parent_uuid):
                continue
            await websocket.send_bytes(payload)
    except (WebSocketDisconnect, asyncio.CancelledError):
        logger.debug("Shuttle stream closed (parent=%s)", parent_uuid)
    except Exception:
        logger.exception("WebSocket error")
    finally:
        broadcaster.unsubscribe(queue)
