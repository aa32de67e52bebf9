"""HTTP routes: detection control, event history, image reports, settings."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from pothole_detector.config import ConfigError
from pothole_detector.pipeline import Pipeline
from pothole_detector.recording.models import DetectionType


def _cast(current_value, new_value):
    """Cast new_value to the same type as the existing config attribute."""
    if isinstance(current_value, bool):
        return new_value in (True, "true", "1", "on", 1)
    elif isinstance(current_value, int):
        return int(float(new_value))
    elif isinstance(current_value, float):
        return float(new_value)
    return new_value


def _typed_dict(config_obj, body: dict) -> dict:
    """Return a dict of values from body, cast to match config_obj field types."""
    result = {}
    for key, value in body.items():
        if hasattr(config_obj, key):
            result[key] = _cast(getattr(config_obj, key), value)
    return result


def create_router(pipeline: Pipeline) -> APIRouter:
    router = APIRouter()

    # --- REST API: stats & detection control ---

    @router.get("/api/stats")
    async def api_stats():
        return JSONResponse(pipeline.stats)

    @router.post("/api/detection/start")
    async def api_detection_start():
        session = pipeline.start_detection()
        if session is None:
            return JSONResponse(
                {"error": "Location permission required for detection"}, 403
            )
        return JSONResponse({
            "status": "ok",
            "session_id": session.session_id,
            "started_at": session.started_at,
        })

    @router.post("/api/detection/stop")
    async def api_detection_stop():
        pipeline.stop_detection()
        return JSONResponse({
            "status": "ok",
            "detection_count": pipeline.engine.detection_count,
        })

    # --- REST API: events ---

    @router.get("/api/events")
    async def api_events(limit: int = 50, detection_type: str | None = None):
        kind = None
        if detection_type:
            try:
                kind = DetectionType(detection_type.upper())
            except ValueError:
                return JSONResponse({"error": "Invalid detection_type"}, 400)
        events = pipeline.event_logger.get_recent(limit, kind)
        return JSONResponse([e.to_dict() for e in events])

    @router.get("/api/event-stats")
    async def api_event_stats():
        return JSONResponse(pipeline.event_logger.get_stats())

    @router.delete("/api/events")
    async def api_clear_events(request: Request):
        try:
            body = await request.json()
            event_ids = body.get("event_ids")
        except ValueError:
            event_ids = None

        if event_ids:
            count = pipeline.event_logger.delete_by_ids(event_ids)
        else:
            count = pipeline.event_logger.clear_all()
        return JSONResponse({"status": "ok", "deleted": count})

    @router.post("/api/image-reports")
    async def api_image_report(request: Request):
        body = await request.json()
        image_url = body.get("imageUrl") or body.get("image_url")
        if not image_url:
            return JSONResponse({"error": "imageUrl is required"}, 400)
        confidence = body.get("confidence")
        try:
            if confidence is not None:
                confidence = int(confidence)
            event = pipeline.report_image(image_url, confidence)
        except ValueError as exc:
            return JSONResponse({"error": str(exc)}, 400)
        if event is None:
            return JSONResponse({"error": "Could not get location"}, 409)
        return JSONResponse({"status": "ok", "event": event.to_dict()})

    # --- REST API: settings ---

    @router.post("/api/settings/detection")
    async def api_update_detection(request: Request):
        body = await request.json()
        try:
            typed = _typed_dict(pipeline.config.detection, body)
        except (TypeError, ValueError) as exc:
            return JSONResponse({"error": f"Invalid value: {exc}"}, 400)
        try:
            pipeline.update_detection_config(**typed)
        except ConfigError as exc:
            return JSONResponse({"error": str(exc)}, 400)
        pipeline.persist_config_values(typed)
        return JSONResponse({"status": "ok", "updated": typed})

    return router
