"""Shared test fixtures: synthetic trajectory diagrams on white backgrounds."""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from trajflow.config import AppConfig, ExtractionConfig, MeasurementConfig
from trajflow.recording.models import Extent, Point, Trajectory


@pytest.fixture
def extraction_config() -> ExtractionConfig:
    return ExtractionConfig(white_threshold=30, column_step=1, min_points=6)


@pytest.fixture
def measurement_config() -> MeasurementConfig:
    return MeasurementConfig()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    config = AppConfig()
    config.recording.log_dir = str(tmp_path / "logs")
    config.extent.temporal = 10.0
    config.extent.spatial = 100.0
    return config


@pytest.fixture
def two_lane_raster() -> np.ndarray:
    """Two parallel vehicles, the second starting 40 px (2 min) later."""
    raster = make_raster(200, 100)
    raster = draw_line(raster, (0, 90), (150, 15))
    raster = draw_line(raster, (40, 90), (190, 15))
    return raster


@pytest.fixture
def diagram_extent() -> Extent:
    return Extent(temporal=10.0, spatial=100.0)


def make_raster(width: int = 100, height: int = 100) -> np.ndarray:
    """Create a blank white RGBA raster."""
    return np.full((height, width, 4), 255, dtype=np.uint8)


def draw_line(raster: np.ndarray, start: tuple[int, int], end: tuple[int, int],
              color: tuple[int, int, int, int] = (0, 0, 0, 255)) -> np.ndarray:
    """Draw a one-pixel, 8-connected line onto a copy of the raster."""
    result = raster.copy()
    cv2.line(result, start, end, color, 1, cv2.LINE_8)
    return result


def make_trajectory(traj_id: int, coords: list[tuple[float, float]]) -> Trajectory:
    """Create a Trajectory from (time, position) pairs."""
    return Trajectory(id=traj_id, points=tuple(Point(t, y) for t, y in coords))


def linear_trajectory(traj_id: int, speed: float, delay: float = 0.0,
                      t_end: float = 10.0, step: float = 1.0) -> Trajectory:
    """Constant-speed vehicle at position speed * (t - delay), t in [0, t_end]."""
    n = int(round(t_end / step))
    return make_trajectory(
        traj_id, [(i * step, speed * (i * step - delay)) for i in range(n + 1)]
    )
