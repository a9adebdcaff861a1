"""YAML configuration loader with dataclass mapping."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ExtentConfig:
    temporal: float = 15.0     # minutes covered by the image width
    spatial: float = 640.0     # meters covered by the image height


@dataclass
class ExtractionConfig:
    white_threshold: int = 30  # L1 RGB distance from pure white
    column_step: int = 1
    min_points: int = 6


@dataclass
class MeasurementConfig:
    platoon_size: int = 5
    platoon_height: float = 10.0
    loop_interval: float = 0.5
    loop_length: float = 2.0
    default_wave_speed_kmh: float = -17.0
    clip_samples: int = 10
    platoon_max_steps: int = 100
    loop_max_windows: int = 10000

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ValueError for values no analysis region can be built from."""
        checks = (
            (self.platoon_size >= 1, "platoon_size must be at least 1"),
            (self.platoon_height > 0, "platoon_height must be positive"),
            (self.loop_interval > 0, "loop_interval must be positive"),
            (self.loop_length > 0, "loop_length must be positive"),
            (self.clip_samples >= 1, "clip_samples must be at least 1"),
            (self.platoon_max_steps >= 1, "platoon_max_steps must be at least 1"),
            (self.loop_max_windows >= 1, "loop_max_windows must be at least 1"),
        )
        for ok, message in checks:
            if not ok:
                raise ValueError(message)


@dataclass
class RecordingConfig:
    log_dir: str = "data/logs"
    max_events: int = 500


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class AppConfig:
    extent: ExtentConfig = field(default_factory=ExtentConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    measurement: MeasurementConfig = field(default_factory=MeasurementConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    web: WebConfig = field(default_factory=WebConfig)


def _apply_dict(dc: object, data: dict) -> None:
    """Apply dictionary values onto a dataclass instance, ignoring unknown keys."""
    for key, value in data.items():
        if hasattr(dc, key):
            setattr(dc, key, value)


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
            "extent": config.extent,
            "extraction": config.extraction,
            "measurement": config.measurement,
            "recording": config.recording,
            "web": config.web,
        }

        for section_name, dc_instance in section_map.items():
            if section_name in raw and isinstance(raw[section_name], dict):
                _apply_dict(dc_instance, raw[section_name])

        config.measurement.validate()

    # Environment variable overrides
    env_host = os.environ.get("WEB_HOST")
    if env_host:
        config.web.host = env_host

    env_port = os.environ.get("WEB_PORT")
    if env_port:
        config.web.port = int(env_port)

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
