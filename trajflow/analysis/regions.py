"""Turns successive anchor clicks into complete analysis regions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from trajflow.config import MeasurementConfig
from trajflow.recording.models import (
    AnalysisMode,
    AnalysisRegion,
    LineRegion,
    LoopDetectorRegion,
    PlatoonRegion,
    Point,
    PolygonRegion,
)

REQUIRED_POINTS = {
    AnalysisMode.LINE: 2,
    AnalysisMode.POLYGON: 4,
    AnalysisMode.PLATOON: 1,
    AnalysisMode.LOOP_DETECTOR: 1,
}


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Collecting:
    points: tuple[Point, ...]


DrawState = Union[Idle, Collecting]


class RegionBuilder:
    """Click state machine for one analysis mode.

    Line and polygon modes go Idle -> Collecting(n) -> Idle once their
    2 or 4 points are in; platoon and loop detector complete on one click.
    """

    def __init__(self, mode: AnalysisMode, config: MeasurementConfig):
        self._mode = mode
        self._cfg = config
        self._state: DrawState = Idle()

    @property
    def mode(self) -> AnalysisMode:
        return self._mode

    @property
    def state(self) -> DrawState:
        return self._state

    @property
    def pending_points(self) -> tuple[Point, ...]:
        if isinstance(self._state, Collecting):
            return self._state.points
        return ()

    @property
    def remaining(self) -> int:
        return REQUIRED_POINTS[self._mode] - len(self.pending_points)

    def reset(self) -> None:
        self._state = Idle()

    def click(self, point: Point) -> Optional[AnalysisRegion]:
        """Add a point; return the finished region, or None while collecting."""
        points = self.pending_points + (point,)
        if len(points) < REQUIRED_POINTS[self._mode]:
            self._state = Collecting(points)
            return None

        self._state = Idle()
        return self._build(points)

    def _build(self, points: tuple[Point, ...]) -> AnalysisRegion:
        cfg = self._cfg
        if self._mode == AnalysisMode.LINE:
            return LineRegion(start=points[0], end=points[1])
        if self._mode == AnalysisMode.POLYGON:
            return PolygonRegion(vertices=points)
        if self._mode == AnalysisMode.PLATOON:
            return PlatoonRegion(
                anchor=points[0],
                vehicle_count=int(cfg.platoon_size),
                segment_height=float(cfg.platoon_height),
            )
        return LoopDetectorRegion(
            anchor=points[0],
            window_duration=float(cfg.loop_interval),
            aperture_length=float(cfg.loop_length),
        )
