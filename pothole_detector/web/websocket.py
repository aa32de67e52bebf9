"""WebSocket push of detection and upload notifications."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from pothole_detector.pipeline import Pipeline

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = frozenset({"detection", "upload_failed"})


def parse_types(raw: str | None) -> frozenset[str] | None:
    """Parse a ``types=detection,upload_failed`` filter. None means everything."""
    if not raw:
        return None
    wanted = frozenset(part.strip() for part in raw.split(",") if part.strip())
    unknown = wanted - NOTIFICATION_TYPES
    if unknown:
        raise ValueError(f"Unknown notification types: {', '.join(sorted(unknown))}")
    return wanted


class EventBroadcaster:
    """Fans pipeline notifications out to WebSocket subscribers.

    Each subscriber carries an optional set of notification types; a
    message whose ``type`` is not in that set is not sent to it.
    """

    def __init__(self):
        self._subscribers: dict[WebSocket, frozenset[str] | None] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self, ws: WebSocket, types: frozenset[str] | None) -> None:
        await ws.accept()
        self._subscribers[ws] = types
        logger.info("Notification subscriber connected (%d total)", self.subscriber_count)

    def unsubscribe(self, ws: WebSocket) -> None:
        if ws in self._subscribers:
            del self._subscribers[ws]
            logger.info("Notification subscriber gone (%d remaining)", self.subscriber_count)

    async def publish(self, data: dict) -> None:
        kind = data.get("type")
        message = json.dumps(data)
        stale = []
        for ws, types in list(self._subscribers.items()):
            if types is not None and kind not in types:
                continue
            try:
                await ws.send_text(message)
            except Exception:
                stale.append(ws)
        for ws in stale:
            self.unsubscribe(ws)


def create_ws_router(pipeline: Pipeline) -> APIRouter:
    router = APIRouter()
    broadcaster = EventBroadcaster()

    def on_notification(data: dict):
        """Runs on the event loop via call_soon_threadsafe."""
        if broadcaster.subscriber_count:
            asyncio.ensure_future(broadcaster.publish(data))

    pipeline.add_event_callback(on_notification)

    @router.websocket("/ws/events")
    async def ws_events(ws: WebSocket, types: str | None = None):
        """Detection and upload_failed notifications, optionally filtered by type.

        A client may send ``ping`` at any time and gets ``{"type": "pong"}``
        back once it is subscribed.
        """
        try:
            wanted = parse_types(types)
        except ValueError as exc:
            await ws.close(code=1008, reason=str(exc))
            return
        pipeline.set_event_loop(asyncio.get_running_loop())
        await broadcaster.subscribe(ws, wanted)
        try:
            while True:
                # Anything other than a keepalive ping is ignored
                if await ws.receive_text() == "ping":
                    await ws.send_json({"type": "pong"})
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Notification WebSocket error")
        finally:
            broadcaster.unsubscribe(ws)

    return router
