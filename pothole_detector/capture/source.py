"""Threaded replay of recorded accelerometer/GPS samples into an inbound queue."""

from __future__ import annotations

import dataclasses
import logging
import queue
import threading
import time
from pathlib import Path
from typing import Union

import numpy as np

from pothole_detector.recording.models import Location, Sample

logger = logging.getLogger(__name__)

Message = Union[Sample, Location]

SAMPLE_COLUMNS = ("timestamp", "accel_x", "accel_y", "accel_z", "speed_kmh")


def _optional(value: float) -> float | None:
    return None if np.isnan(value) else float(value)


def load_samples(path: str | Path) -> list[Message]:
    """Load a CSV recording into an ordered list of messages.

    Columns: ``timestamp,accel_x,accel_y,accel_z,speed_kmh`` optionally
    followed by ``latitude,longitude,altitude,accuracy``. A location message
    is emitted before a sample whenever the fix on that row changes.
    Empty location cells are treated as "no fix".
    """
    data = np.genfromtxt(path, delimiter=",", names=True, dtype=np.float64)
    data = np.atleast_1d(data)
    names = data.dtype.names or ()
    missing = [c for c in SAMPLE_COLUMNS if c not in names]
    if missing:
        raise ValueError(f"{path}: missing columns {', '.join(missing)}")
    has_location = "latitude" in names and "longitude" in names

    messages: list[Message] = []
    last_fix: Location | None = None
    for row in data:
        if has_location and not (np.isnan(row["latitude"]) or np.isnan(row["longitude"])):
            fix = Location(
                latitude=float(row["latitude"]),
                longitude=float(row["longitude"]),
                altitude=_optional(row["altitude"]) if "altitude" in names else None,
                accuracy=_optional(row["accuracy"]) if "accuracy" in names else None,
            )
            if fix != last_fix:
                messages.append(fix)
                last_fix = fix
        messages.append(Sample(
            timestamp=float(row["timestamp"]),
            accel_x=float(row["accel_x"]),
            accel_y=float(row["accel_y"]),
            accel_z=float(row["accel_z"]),
            speed_kmh=float(row["speed_kmh"]),
        ))
    logger.info("Loaded %d messages from %s", len(messages), path)
    return messages


class SampleReplayer:
    """Replays a recording into a queue from a background thread.

    Stands in for the phone's sensor callbacks: one producer, messages in
    file order.
    """

    def __init__(self, path: str | Path, out: queue.Queue,
                 sample_rate_hz: float = 50.0, realtime: bool = True,
                 loop: bool = False):
        self._path = Path(path)
        self._out = out
        self._interval = 1.0 / sample_rate_hz
        self._realtime = realtime
        self._loop = loop

        self._running = False
        self._thread: threading.Thread | None = None
        self._samples_sent = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def samples_sent(self) -> int:
        return self._samples_sent

    def start(self) -> None:
        """Start the background replay thread."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._replay_loop, daemon=True)
        self._thread.start()
        logger.info("Sample replay started for: %s", self._path)

    def stop(self) -> None:
        """Stop the replay thread."""
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info("Sample replay stopped")

    def _put(self, message: Message) -> bool:
        while self._running:
            try:
                self._out.put(message, timeout=0.5)
                return True
            except queue.Full:
                continue
        return False

    def _replay_loop(self) -> None:
        try:
            messages = load_samples(self._path)
        except (OSError, ValueError):
            logger.exception("Could not load samples from %s", self._path)
            self._running = False
            return

        # Timestamps keep increasing across loops so cooldowns stay valid
        first_ts = next((m.timestamp for m in messages if isinstance(m, Sample)), 0.0)
        offset = 0.0
        while self._running:
            last_ts = offset
            for message in messages:
                if isinstance(message, Sample):
                    message = dataclasses.replace(message, timestamp=message.timestamp + offset)
                    last_ts = message.timestamp
                if not self._put(message):
                    return
                if isinstance(message, Sample):
                    self._samples_sent += 1
                    if self._realtime:
                        time.sleep(self._interval)
            if not self._loop:
                break
            offset = last_ts + self._interval - first_ts

        self._running = False
        logger.info("Sample replay finished (%d samples)", self._samples_sent)
