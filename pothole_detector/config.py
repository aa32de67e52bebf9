"""YAML configuration loader with dataclass mapping."""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


class ConfigError(ValueError):
    """Raised for invalid configuration values."""


@dataclass
class SourceConfig:
    path: str = ""              # CSV recording to replay; empty = no replay
    sample_rate_hz: float = 50.0
    realtime: bool = True       # pace replay at sample_rate_hz
    loop: bool = False
    queue_size: int = 1000


@dataclass
class DetectionConfig:
    buffer_size: int = 50       # ~1s at 50 Hz
    base_threshold: float = 8.0
    speed_scale: float = 0.1
    speed_offset: float = 5.0
    cooldown_ms: int = 3000
    min_history: int = 10
    driving_speed_kmh: float = 10.0
    extrema_window: int = 5
    signature_window: int = 20
    extract_features: bool = True


@dataclass
class DeviceConfig:
    user_id: str = "anonymous"
    device_model: str = "unknown"
    device_manufacturer: str = "unknown"
    vehicle_type: str = "unknown"
    phone_placement: str = "unknown"
    location_permission: bool = True


@dataclass
class RecordingConfig:
    db_path: str = "data/db/potholes.db"
    log_dir: str = "data/logs"


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class AppConfig:
    source: SourceConfig = field(default_factory=SourceConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    web: WebConfig = field(default_factory=WebConfig)


def _apply_dict(dc: object, data: dict) -> None:
    """Apply dictionary values onto a dataclass instance, ignoring unknown keys."""
    for key, value in data.items():
        if hasattr(dc, key):
            setattr(dc, key, value)


def _check_field_types(cfg: object, section: str) -> None:
    """Raise ConfigError for values whose type does not match the field default."""
    for f in fields(cfg):
        value = getattr(cfg, f.name)
        if isinstance(f.default, bool):
            ok = isinstance(value, bool)
        elif isinstance(f.default, int):
            ok = isinstance(value, int) and not isinstance(value, bool)
        elif isinstance(f.default, float):
            ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        else:
            ok = True
        if not ok:
            raise ConfigError(
                f"{section}.{f.name} must be {type(f.default).__name__}, got {value!r}"
            )


def validate_detection_config(cfg: DetectionConfig) -> None:
    """Raise ConfigError if the detection parameters cannot produce sane behaviour."""
    _check_field_types(cfg, "detection")
    for name in ("base_threshold", "speed_scale", "speed_offset", "driving_speed_kmh"):
        value = getattr(cfg, name)
        if not math.isfinite(value):
            raise ConfigError(f"detection.{name} must be finite, got {value!r}")
    if cfg.cooldown_ms < 0:
        raise ConfigError(f"detection.cooldown_ms must be >= 0, got {cfg.cooldown_ms}")
    if cfg.buffer_size < 1:
        raise ConfigError(f"detection.buffer_size must be >= 1, got {cfg.buffer_size}")
    if cfg.min_history < 1:
        raise ConfigError(f"detection.min_history must be >= 1, got {cfg.min_history}")
    if cfg.min_history > cfg.buffer_size:
        raise ConfigError(
            f"detection.min_history ({cfg.min_history}) exceeds "
            f"buffer_size ({cfg.buffer_size})"
        )
    if cfg.extrema_window < 1:
        raise ConfigError(f"detection.extrema_window must be >= 1, got {cfg.extrema_window}")
    if cfg.signature_window < 0:
        raise ConfigError(
            f"detection.signature_window must be >= 0, got {cfg.signature_window}"
        )


def validate_config(config: AppConfig) -> None:
    """Validate every section that has constraints."""
    validate_detection_config(config.detection)
    _check_field_types(config.source, "source")
    _check_field_types(config.web, "web")
    if config.source.sample_rate_hz <= 0:
        raise ConfigError(
            f"source.sample_rate_hz must be > 0, got {config.source.sample_rate_hz}"
        )
    if config.source.queue_size < 1:
        raise ConfigError(f"source.queue_size must be >= 1, got {config.source.queue_size}")


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from a YAML file, falling back to defaults."""
    config = AppConfig()

    if path is None:
        path = os.environ.get("CONFIG_PATH", "config/default.yaml")

    path = Path(path)
    if path.exists():
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}

        section_map = {
            "source": config.source,
            "detection": config.detection,
            "device": config.device,
            "recording": config.recording,
            "web": config.web,
        }

        for section_name, dc_instance in section_map.items():
            if section_name in raw and isinstance(raw[section_name], dict):
                _apply_dict(dc_instance, raw[section_name])

    # Environment variable overrides
    env_samples = os.environ.get("SAMPLES_PATH")
    if env_samples:
        config.source.path = env_samples

    env_user = os.environ.get("USER_ID")
    if env_user:
        config.device.user_id = env_user

    env_host = os.environ.get("WEB_HOST")
    if env_host:
        config.web.host = env_host

    env_port = os.environ.get("WEB_PORT")
    if env_port:
        config.web.port = int(env_port)

    validate_config(config)
    return config


def save_config_values(data: dict, path: str | Path | None = None) -> None:
    """Update key/value pairs in the YAML config file, preserving all comments."""
    if path is None:
        path = os.environ.get("CONFIG_PATH", "config/default.yaml")
    path = Path(path)
    if not path.exists():
        return
    text = path.read_text()
    for key, value in data.items():
        escaped = re.escape(key)
        if isinstance(value, bool):
            val_str = "true" if value else "false"
            text = re.sub(rf'(\b{escaped}:\s*)(true|false)', rf'\g<1>{val_str}', text)
        elif isinstance(value, str):
            text = re.sub(rf'(\b{escaped}:\s*)"[^"]*"', rf'\g<1>"{value}"', text)
        else:
            text = re.sub(rf'(\b{escaped}:\s*)-?[\d.]+', rf'\g<1>{value}', text)
    path.write_text(text)
