"""Shared data models for extraction and measurement."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

import numpy as np


class AnalysisMode(str, Enum):
    LINE = "line"
    POLYGON = "polygon"
    PLATOON = "platoon"
    LOOP_DETECTOR = "loop_detector"


@dataclass(frozen=True)
class Point:
    """A location in the time-space plane."""
    time: float               # minutes
    position: float           # meters


@dataclass(frozen=True)
class Extent:
    """Physical duration and length covered by the raster image."""
    temporal: float
    spatial: float

    def __post_init__(self) -> None:
        if self.temporal <= 0 or self.spatial <= 0:
            raise ValueError(
                f"Extent spans must be positive, got temporal={self.temporal}, "
                f"spatial={self.spatial}"
            )


@dataclass(frozen=True)
class PixelMapper:
    """Affine mapping between raster pixels and domain coordinates.

    Pixel rows grow downward while position grows upward, so the vertical
    axis is flipped.
    """
    width: int
    height: int
    extent: Extent

    def to_world(self, px: float, py: float) -> Point:
        return Point(
            time=px / self.width * self.extent.temporal,
            position=(self.height - py) / self.height * self.extent.spatial,
        )

    def to_pixel(self, point: Point) -> tuple[float, float]:
        return (
            point.time / self.extent.temporal * self.width,
            self.height - point.position / self.extent.spatial * self.height,
        )


@dataclass(frozen=True)
class Trajectory:
    """One vehicle path, points ordered by non-decreasing time."""
    id: int
    points: tuple[Point, ...]

    def as_array(self) -> np.ndarray:
        """Return an (n, 2) float array of (time, position) rows."""
        return np.array([(p.time, p.position) for p in self.points],
                        dtype=np.float64).reshape(-1, 2)


@dataclass(frozen=True)
class LineRegion:
    start: Point
    end: Point

    mode = AnalysisMode.LINE


@dataclass(frozen=True)
class PolygonRegion:
    vertices: tuple[Point, Point, Point, Point]

    mode = AnalysisMode.POLYGON

    def __post_init__(self) -> None:
        if len(self.vertices) != 4:
            raise ValueError(
                f"Polygon region needs exactly 4 vertices, got {len(self.vertices)}"
            )


@dataclass(frozen=True)
class PlatoonRegion:
    anchor: Point
    vehicle_count: int
    segment_height: float
    wave_speed: Optional[float] = None   # m/min; None uses the session reference

    mode = AnalysisMode.PLATOON

    def __post_init__(self) -> None:
        if self.vehicle_count < 1:
            raise ValueError("Platoon vehicle count must be at least 1")
        if self.segment_height <= 0:
            raise ValueError("Platoon segment height must be positive")


@dataclass(frozen=True)
class LoopDetectorRegion:
    anchor: Point
    window_duration: float
    aperture_length: float
    wave_speed: Optional[float] = None   # m/min; None uses the session reference

    mode = AnalysisMode.LOOP_DETECTOR

    def __post_init__(self) -> None:
        if self.window_duration <= 0:
            raise ValueError("Loop detector window duration must be positive")
        if self.aperture_length <= 0:
            raise ValueError("Loop detector aperture length must be positive")


AnalysisRegion = Union[LineRegion, PolygonRegion, PlatoonRegion, LoopDetectorRegion]


@dataclass
class AnalysisResult:
    """Edie measurement for one region, in veh/min, veh/m and m/min."""
    mode: AnalysisMode
    flow: float = 0.0
    density: float = 0.0
    speed: float = 0.0
    area: float = 0.0
    ttd: float = 0.0          # total travel distance (m)
    ttt: float = 0.0          # total travel time (min)
    count: Optional[int] = None
    wave_speed: Optional[float] = None
    experiment_id: int = 0


@dataclass
class AnalysisVisual:
    """Shape to render for a result."""
    mode: AnalysisMode
    points: tuple[Point, ...] = ()
    intersections: tuple[Point, ...] = ()
    anchor: Optional[Point] = None
    experiment_id: int = 0


@dataclass
class AnalysisRecord:
    result: AnalysisResult
    visual: AnalysisVisual


@dataclass
class SessionEvent:
    """A human-readable message about one session action."""
    event_id: int
    timestamp: float
    kind: str
    message: str
    data: dict = field(default_factory=dict)
