"""Shared test fixtures: synthetic accelerometer streams and a recording sink."""

from __future__ import annotations

import pytest

from pothole_detector.config import AppConfig, DetectionConfig, DeviceConfig
from pothole_detector.processing.engine import DetectionEngine
from pothole_detector.recording.event_logger import EventLogger
from pothole_detector.recording.models import DetectionEvent, Location, Sample, SessionContext

WALL_CLOCK = 1_700_000_000.0
SAMPLE_PERIOD = 0.02    # 50 Hz


class RecordingSink:
    """EventSink that keeps everything it is handed."""

    def __init__(self):
        self.received: list[tuple[DetectionEvent, SessionContext]] = []

    def submit(self, event: DetectionEvent, session: SessionContext) -> None:
        self.received.append((event, session))

    @property
    def events(self) -> list[DetectionEvent]:
        return [event for event, _ in self.received]


@pytest.fixture
def detection_config() -> DetectionConfig:
    return DetectionConfig()


@pytest.fixture
def device_config() -> DeviceConfig:
    return DeviceConfig(
        user_id="user-123",
        device_model="Pixel 7",
        device_manufacturer="Google",
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def engine(detection_config, device_config, sink) -> DetectionEngine:
    return DetectionEngine(detection_config, device_config, sink=sink,
                           clock=lambda: WALL_CLOCK)


@pytest.fixture
def location() -> Location:
    return Location(latitude=19.0760, longitude=72.8777, altitude=14.0, accuracy=4.5)


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    config = AppConfig()
    config.recording.db_path = str(tmp_path / "db" / "potholes.db")
    config.recording.log_dir = str(tmp_path / "logs")
    return config


@pytest.fixture
def event_logger(tmp_path):
    store = EventLogger(str(tmp_path / "events.db"))
    yield store
    store.close()


def make_sample(t: float, z: float, speed: float = 44.2,
                x: float = 0.1, y: float = 0.2) -> Sample:
    return Sample(timestamp=t, accel_x=x, accel_y=y, accel_z=z, speed_kmh=speed)


def feed_history(engine: DetectionEngine, n: int, start: float = 0.0,
                 z: float = 0.0, speed: float = 44.2) -> float:
    """Feed ``n`` quiet samples; returns the timestamp for the next sample."""
    t = start
    for _ in range(n):
        assert engine.on_sample(make_sample(t, z, speed)) is None
        t += SAMPLE_PERIOD
    return t
