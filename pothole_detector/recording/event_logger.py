"""SQLite event logger with WAL mode for concurrent reads."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path

from pothole_detector.recording.models import AccelerometerData, DetectionEvent, DetectionType

logger = logging.getLogger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS potholes (
    event_id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp REAL NOT NULL,
    user_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    detection_type TEXT NOT NULL,
    device_model TEXT NOT NULL,
    device_manufacturer TEXT NOT NULL,
    vehicle_type TEXT NOT NULL,
    phone_placement TEXT NOT NULL,
    latitude REAL,
    longitude REAL,
    altitude REAL,
    gps_accuracy REAL,
    speed REAL NOT NULL,
    zt_peak REAL,
    z_prev_extrema REAL,
    z_next_extrema REAL,
    interval_since_last_detection_ms INTEGER,
    dynamic_threshold REAL,
    base_threshold REAL,
    raw_signature_window TEXT,
    image_url TEXT,
    confidence INTEGER,
    accelerometer_data TEXT NOT NULL
);
"""

COLUMNS = (
    "timestamp", "user_id", "session_id", "detection_type",
    "device_model", "device_manufacturer", "vehicle_type", "phone_placement",
    "latitude", "longitude", "altitude", "gps_accuracy", "speed",
    "zt_peak", "z_prev_extrema", "z_next_extrema",
    "interval_since_last_detection_ms", "dynamic_threshold", "base_threshold",
    "raw_signature_window", "image_url", "confidence", "accelerometer_data",
)

INSERT_SQL = (
    f"INSERT INTO potholes ({', '.join(COLUMNS)}) "
    f"VALUES ({', '.join('?' * len(COLUMNS))});"
)

SELECT_ALL_SQL = f"SELECT event_id, {', '.join(COLUMNS)} FROM potholes"


class EventLogger:
    """Logs detection events to SQLite."""

    def __init__(self, db_path: str):
        self._db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._lock = threading.Lock()
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(CREATE_TABLE_SQL)
        self._conn.commit()
        logger.info("Event logger initialized: %s", self._db_path)

    def log_event(self, event: DetectionEvent) -> int:
        """Insert a detection event. Returns the event_id."""
        signature = event.raw_signature_window
        accel = event.accelerometer_data
        with self._lock:
            cursor = self._conn.execute(INSERT_SQL, (
                event.timestamp,
                event.user_id,
                event.session_id,
                event.detection_type.value,
                event.device_model,
                event.device_manufacturer,
                event.vehicle_type,
                event.phone_placement,
                event.latitude,
                event.longitude,
                event.altitude,
                event.gps_accuracy,
                event.speed,
                event.zt_peak,
                event.z_prev_extrema,
                event.z_next_extrema,
                event.interval_since_last_detection_ms,
                event.dynamic_threshold,
                event.base_threshold,
                json.dumps(signature) if signature is not None else None,
                event.image_url,
                event.confidence,
                json.dumps({"x": accel.x, "y": accel.y, "z": accel.z}),
            ))
            self._conn.commit()
        event_id = cursor.lastrowid
        logger.info("Logged event #%d (%s, session %s)",
                    event_id, event.detection_type.value, event.session_id)
        return event_id

    def get_recent(self, limit: int = 50,
                   detection_type: DetectionType | None = None) -> list[DetectionEvent]:
        """Get the most recent events, optionally of one detection type."""
        if detection_type is None:
            sql = SELECT_ALL_SQL + " ORDER BY timestamp DESC, event_id DESC LIMIT ?"
            params: tuple = (limit,)
        else:
            sql = (SELECT_ALL_SQL + " WHERE detection_type = ?"
                   " ORDER BY timestamp DESC, event_id DESC LIMIT ?")
            params = (detection_type.value, limit)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_event(row) for row in rows]

    def get_by_session(self, session_id: str) -> list[DetectionEvent]:
        """Get all events of one session in emission order."""
        sql = SELECT_ALL_SQL + " WHERE session_id = ? ORDER BY timestamp, event_id"
        with self._lock:
            rows = self._conn.execute(sql, (session_id,)).fetchall()
        return [self._row_to_event(row) for row in rows]

    def get_stats(self) -> dict:
        """Get summary statistics."""
        with self._lock:
            total = self._conn.execute("SELECT COUNT(*) FROM potholes").fetchone()[0]
            by_type = dict(self._conn.execute(
                "SELECT detection_type, COUNT(*) FROM potholes GROUP BY detection_type"
            ).fetchall())
            sessions = self._conn.execute(
                "SELECT COUNT(DISTINCT session_id) FROM potholes"
            ).fetchone()[0]
        return {
            "total": total,
            "sensor": by_type.get(DetectionType.SENSOR.value, 0),
            "image": by_type.get(DetectionType.IMAGE.value, 0),
            "sessions": sessions,
        }

    def delete_by_ids(self, event_ids: list[int]) -> int:
        """Delete specific events by ID. Returns the number of rows removed."""
        if not event_ids:
            return 0
        placeholders = ",".join("?" * len(event_ids))
        with self._lock:
            cursor = self._conn.execute(
                f"DELETE FROM potholes WHERE event_id IN ({placeholders})", event_ids
            )
            self._conn.commit()
        return cursor.rowcount

    def clear_all(self) -> int:
        """Delete all events. Returns the number of rows removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM potholes")
            self._conn.commit()
        count = cursor.rowcount
        logger.info("Cleared %d events from history", count)
        return count

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    @staticmethod
    def _row_to_event(row: tuple) -> DetectionEvent:
        values = dict(zip(("event_id",) + COLUMNS, row))
        accel = json.loads(values.pop("accelerometer_data"))
        signature = values.pop("raw_signature_window")
        return DetectionEvent(
            **{k: v for k, v in values.items() if k != "detection_type"},
            detection_type=DetectionType(values["detection_type"]),
            accelerometer_data=AccelerometerData(accel["x"], accel["y"], accel["z"]),
            raw_signature_window=json.loads(signature) if signature is not None else None,
        )
