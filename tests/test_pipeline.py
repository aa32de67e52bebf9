"""Tests for the pipeline: queueing, persistence and failure reporting."""

from __future__ import annotations

import sqlite3
import time

import pytest

from pothole_detector.config import ConfigError
from pothole_detector.pipeline import Pipeline
from pothole_detector.recording.event_logger import EventLogger
from pothole_detector.recording.models import Location
from tests.conftest import make_sample


def pothole_drive(start: float = 0.0, quiet: int = 20) -> list:
    """A location fix, quiet driving, then one impact."""
    messages = [Location(latitude=19.076, longitude=72.8777)]
    t = start
    for _ in range(quiet):
        messages.append(make_sample(t, 0.2))
        t += 0.02
    messages.append(make_sample(t, 15.5))
    return messages


class FailingLogger(EventLogger):
    def log_event(self, event):
        raise sqlite3.OperationalError("database is locked")


class TestPipelineReplay:
    def test_replay_persists_detection(self, app_config):
        pipeline = Pipeline(app_config)
        notifications = []
        pipeline.add_event_callback(notifications.append)
        session = pipeline.start_detection()

        events = pipeline.replay(pothole_drive())

        assert len(events) == 1
        [stored] = pipeline.event_logger.get_by_session(session.session_id)
        assert stored.zt_peak == 15.5
        assert stored.latitude == 19.076
        assert notifications[0]["type"] == "detection"
        assert notifications[0]["zt_peak"] == 15.5
        stats = pipeline.stats
        assert stats["detection_count"] == 1
        assert stats["samples_processed"] == 21
        assert stats["uploads_ok"] == 1
        pipeline.stop()

    def test_replay_while_idle_emits_nothing(self, app_config):
        pipeline = Pipeline(app_config)
        assert pipeline.replay(pothole_drive()) == []
        assert pipeline.event_logger.get_stats()["total"] == 0
        pipeline.stop()

    def test_permission_denied(self, app_config):
        app_config.device.location_permission = False
        pipeline = Pipeline(app_config)
        assert pipeline.start_detection() is None
        assert not pipeline.stats["active"]
        pipeline.stop()

    def test_sink_failure_is_reported_not_rolled_back(self, app_config, tmp_path):
        pipeline = Pipeline(app_config, event_logger=FailingLogger(str(tmp_path / "x.db")))
        notifications = []
        pipeline.add_event_callback(notifications.append)
        pipeline.start_detection()

        events = pipeline.replay(pothole_drive())

        assert len(events) == 1
        assert pipeline.engine.detection_count == 1
        assert pipeline.engine.state.last_detection_time is not None
        assert pipeline.stats["uploads_failed"] == 1
        assert notifications == [{
            "type": "upload_failed",
            "detection_type": "SENSOR",
            "session_id": events[0].session_id,
            "message": "Failed to save record",
        }]
        pipeline.stop()

    def test_callback_errors_are_contained(self, app_config):
        pipeline = Pipeline(app_config)

        def broken(data):
            raise RuntimeError("subscriber gone")

        pipeline.add_event_callback(broken)
        pipeline.start_detection()
        assert len(pipeline.replay(pothole_drive())) == 1
        pipeline.stop()

    def test_image_report_is_persisted(self, app_config):
        pipeline = Pipeline(app_config)
        pipeline.replay([Location(latitude=1.5, longitude=2.5)])
        event = pipeline.report_image("https://storage.example/p/9.jpg", 90)
        pipeline.replay([])

        [stored] = pipeline.event_logger.get_recent()
        assert stored.event_id == event.event_id
        assert stored.image_url == "https://storage.example/p/9.jpg"
        pipeline.stop()


class TestPipelineThreads:
    def test_background_processing(self, app_config):
        pipeline = Pipeline(app_config)
        pipeline.start()
        pipeline.start_detection()
        for message in pothole_drive():
            pipeline.inbound.put(message)

        deadline = time.monotonic() + 5.0
        while time.monotonic() < deadline and pipeline.stats["uploads_ok"] < 1:
            time.sleep(0.01)

        assert pipeline.stats["uploads_ok"] == 1
        assert pipeline.event_logger.get_stats()["sensor"] == 1
        pipeline.stop()
        assert not pipeline.engine.active


class TestPipelineSettings:
    def test_update_detection_config(self, app_config):
        pipeline = Pipeline(app_config)
        pipeline.update_detection_config(base_threshold=20.0, unknown_key=1)
        assert pipeline.config.detection.base_threshold == 20.0
        pipeline.start_detection()
        assert pipeline.replay(pothole_drive()) == []
        pipeline.stop()

    def test_invalid_update_is_rejected_whole(self, app_config):
        pipeline = Pipeline(app_config)
        with pytest.raises(ConfigError):
            pipeline.update_detection_config(base_threshold=20.0, cooldown_ms=-1)
        assert pipeline.config.detection.base_threshold == 8.0
        pipeline.stop()

    def test_update_refused_mid_session(self, app_config):
        pipeline = Pipeline(app_config)
        session = pipeline.start_detection()
        pipeline.replay(pothole_drive()[:-1])

        with pytest.raises(ConfigError):
            pipeline.update_detection_config(base_threshold=20.0)

        assert pipeline.config.detection.base_threshold == 8.0
        assert pipeline.engine.threshold_model.base == 8.0
        assert pipeline.engine.buffer_size == 20
        assert pipeline.engine.session == session
        pipeline.stop()
