"""Pipeline orchestrator: replay → detect → queue → persist/notify."""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from typing import Any, Callable, Iterable

from pothole_detector.capture.source import Message, SampleReplayer
from pothole_detector.config import AppConfig, DetectionConfig, save_config_values
from pothole_detector.processing.engine import DetectionEngine
from pothole_detector.recording.event_logger import EventLogger
from pothole_detector.recording.models import DetectionEvent, Location, Sample, SessionContext

logger = logging.getLogger(__name__)


class Pipeline:
    """Main processing pipeline orchestrator.

    A single processing thread drains the inbound queue into the engine, so
    samples reach ``on_sample`` serially and in arrival order. Emitted events
    go onto a second queue that a writer thread persists; a failed write is
    logged and reported to subscribers but never touches engine state.
    """

    def __init__(self, config: AppConfig, config_path: str | None = None,
                 event_logger: EventLogger | None = None):
        self._config = config
        self._config_path = config_path
        self._running = False
        self._threads: list[threading.Thread] = []

        self._inbound: queue.Queue[Message] = queue.Queue(maxsize=config.source.queue_size)
        self._uploads: queue.Queue[tuple[DetectionEvent, SessionContext]] = queue.Queue()

        # Components
        self._engine = DetectionEngine(config.detection, config.device, sink=self)
        self._event_logger = event_logger or EventLogger(config.recording.db_path)
        self._replayer: SampleReplayer | None = None
        if config.source.path:
            self._replayer = SampleReplayer(
                path=config.source.path,
                out=self._inbound,
                sample_rate_hz=config.source.sample_rate_hz,
                realtime=config.source.realtime,
                loop=config.source.loop,
            )

        # Event subscribers (for WebSocket push)
        self._event_callbacks: list[Callable] = []
        self._loop: asyncio.AbstractEventLoop | None = None

        # Stats
        self._samples_processed = 0
        self._uploads_ok = 0
        self._uploads_failed = 0

    @property
    def engine(self) -> DetectionEngine:
        return self._engine

    @property
    def inbound(self) -> queue.Queue:
        return self._inbound

    @property
    def stats(self) -> dict[str, Any]:
        state = self._engine.state
        return {
            "active": state.active,
            "detection_count": state.detection_count,
            "driving": state.driving,
            "session_id": state.session.session_id if state.session else None,
            "buffer_size": self._engine.buffer_size,
            "dynamic_threshold": round(self._engine.current_threshold(), 2),
            "speed_kmh": state.last_sample.speed_kmh if state.last_sample else 0.0,
            "has_location": state.location is not None,
            "samples_processed": self._samples_processed,
            "rejected_samples": state.rejected_samples,
            "uploads_ok": self._uploads_ok,
            "uploads_failed": self._uploads_failed,
            "replaying": self._replayer.is_running if self._replayer else False,
        }

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def event_logger(self) -> EventLogger:
        return self._event_logger

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the asyncio event loop for thread-safe callbacks."""
        self._loop = loop

    def add_event_callback(self, callback: Callable) -> None:
        """Register a callback for detection and upload notifications."""
        self._event_callbacks.append(callback)

    def start(self) -> None:
        """Start the processing and writer threads, and the replay if configured."""
        if self._running:
            return
        self._running = True
        self._threads = [
            threading.Thread(target=self._process_loop, daemon=True),
            threading.Thread(target=self._upload_loop, daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        if self._replayer is not None:
            self._replayer.start()
        logger.info("Pipeline started")

    def stop(self) -> None:
        """Stop the pipeline gracefully, flushing queued events first."""
        if self._replayer is not None:
            self._replayer.stop()
        self._engine.stop()
        self._running = False
        for thread in self._threads:
            thread.join(timeout=10.0)
        self._threads = []
        self._drain_uploads()
        self._event_logger.close()
        logger.info("Pipeline stopped")

    # --- detection control ---

    def start_detection(self) -> SessionContext | None:
        return self._engine.start(self._config.device.location_permission)

    def stop_detection(self) -> None:
        self._engine.stop()

    def report_image(self, image_url: str, confidence: int | None = None) -> DetectionEvent | None:
        return self._engine.report_image(image_url, confidence)

    def update_detection_config(self, **kwargs: Any) -> None:
        """Update detection parameters between sessions.

        Invalid values are rejected whole, and so is any update while a
        session is active (ConfigError in both cases).
        """
        candidate = DetectionConfig(**{
            **vars(self._config.detection),
            **{k: v for k, v in kwargs.items() if hasattr(self._config.detection, k)},
        })
        self._engine.reconfigure(candidate)
        self._config.detection = candidate
        logger.info("Detection config updated: %s", kwargs)

    def persist_config_values(self, data: dict) -> None:
        """Write arbitrary key/value pairs to the config file the pipeline was loaded from."""
        if self._config_path is None:
            return
        save_config_values(data, self._config_path)

    # --- EventSink ---

    def submit(self, event: DetectionEvent, session: SessionContext) -> None:
        """Hand an event to the writer thread without waiting."""
        self._uploads.put((event, session))

    # --- offline ---

    def replay(self, messages: Iterable[Message]) -> list[DetectionEvent]:
        """Feed messages synchronously and persist the resulting events."""
        emitted = []
        for message in messages:
            event = self._dispatch(message)
            if event is not None:
                emitted.append(event)
        self._drain_uploads()
        return emitted

    # --- internals ---

    def _dispatch(self, message: Message) -> DetectionEvent | None:
        if isinstance(message, Location):
            self._engine.update_location(message)
            return None
        if isinstance(message, Sample):
            self._samples_processed += 1
            return self._engine.on_sample(message)
        logger.warning("Ignoring unknown message type: %r", type(message))
        return None

    def _process_loop(self) -> None:
        """Main processing loop running in a background thread."""
        while self._running:
            try:
                message = self._inbound.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._dispatch(message)
            except Exception:
                logger.exception("Error processing message")

    def _upload_loop(self) -> None:
        while self._running:
            try:
                item = self._uploads.get(timeout=0.1)
            except queue.Empty:
                continue
            self._persist(*item)

    def _drain_uploads(self) -> None:
        while True:
            try:
                item = self._uploads.get_nowait()
            except queue.Empty:
                return
            self._persist(*item)

    def _persist(self, event: DetectionEvent, session: SessionContext) -> None:
        try:
            event.event_id = self._event_logger.log_event(event)
        except Exception:
            # The pothole was still detected; counters and cooldown stand.
            self._uploads_failed += 1
            logger.exception("Failed to save event for session %s", session.session_id)
            self._notify({
                "type": "upload_failed",
                "detection_type": event.detection_type.value,
                "session_id": session.session_id,
                "message": "Failed to save record",
            })
            return

        self._uploads_ok += 1
        self._notify({"type": "detection", **event.to_dict()})

    def _notify(self, data: dict) -> None:
        for callback in self._event_callbacks:
            try:
                if self._loop is not None:
                    self._loop.call_soon_threadsafe(callback, data)
                else:
                    callback(data)
            except Exception:
                logger.exception("Error in event callback")
