"""Edie's generalized definitions applied to lines, polygons, platoons and loops."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from trajflow.analysis import geometry
from trajflow.analysis.units import to_density_per_km, to_flow_per_hour, to_speed_kmh
from trajflow.config import MeasurementConfig
from trajflow.recording.models import (
    AnalysisMode,
    AnalysisRecord,
    AnalysisRegion,
    AnalysisResult,
    AnalysisVisual,
    Extent,
    LineRegion,
    LoopDetectorRegion,
    PixelMapper,
    PlatoonRegion,
    Point,
    PolygonRegion,
    Trajectory,
)

logger = logging.getLogger(__name__)


class Insufficiency(str, Enum):
    NO_TRAJECTORIES = "no_trajectories"
    NO_ACTIVE_TRAJECTORY = "no_active_trajectory"
    ANCHOR_NOT_ACTIVE = "anchor_not_active"
    TOO_FEW_ACTIVE = "too_few_active"


class InsufficientDataError(Exception):
    """The trajectories cannot support the requested measurement.

    Nothing is produced and no state changes; the caller may retry with a
    different anchor.
    """

    def __init__(self, reason: Insufficiency, message: str):
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class EdieMeasure:
    area: float
    ttd: float
    ttt: float
    flow: float
    density: float
    speed: float

    @classmethod
    def from_totals(cls, area: float, ttd: float, ttt: float) -> EdieMeasure:
        """Derive flow, density and speed; negligible denominators give 0."""
        eps = geometry.EPSILON
        return cls(
            area=area,
            ttd=ttd,
            ttt=ttt,
            flow=ttd / area if area > eps else 0.0,
            density=ttt / area if area > eps else 0.0,
            speed=ttd / ttt if ttt > eps else 0.0,
        )


class MeasurementEngine:
    """Measures one immutable trajectory set.

    A new engine is built for every extraction pass; each `measure` call
    returns fresh records and never touches earlier ones.
    """

    def __init__(self, trajectories: Sequence[Trajectory], extent: Extent,
                 config: MeasurementConfig,
                 mapper: Optional[PixelMapper] = None):
        self._trajectories = tuple(trajectories)
        self._extent = extent
        self._cfg = config
        self._mapper = mapper
        self._tracks = [t.as_array() for t in self._trajectories]

    @property
    def trajectories(self) -> tuple[Trajectory, ...]:
        return self._trajectories

    @property
    def extent(self) -> Extent:
        return self._extent

    def measure(self, region: AnalysisRegion, experiment_id: int,
                reference_wave_speed: float) -> list[AnalysisRecord]:
        """Run the measurement matching the region's mode.

        `reference_wave_speed` (m/min) is used by platoon and loop detector
        regions that do not carry their own wave speed.
        """
        if isinstance(region, LineRegion):
            return [self.measure_line(region, experiment_id)]
        if isinstance(region, PolygonRegion):
            return [self.measure_polygon(region, experiment_id)]

        wave_speed = region.wave_speed
        if wave_speed is None:
            wave_speed = reference_wave_speed
        if isinstance(region, LoopDetectorRegion):
            return self.measure_loop_detector(region, experiment_id, wave_speed)
        if isinstance(region, PlatoonRegion):
            return self.measure_platoon(region, experiment_id, wave_speed)
        raise TypeError(f"Unsupported region: {region!r}")

    def edie(self, polygon: Sequence[Point]) -> EdieMeasure:
        """Accumulate TTD and TTT of every trajectory inside `polygon`."""
        area = geometry.polygon_area(polygon)
        poly = geometry.polygon_array(polygon)
        ttd = 0.0
        ttt = 0.0
        for track in self._tracks:
            m = geometry.clipped_travel(track, poly, self._cfg.clip_samples)
            ttd += m.travel_distance
            ttt += m.travel_time
        return EdieMeasure.from_totals(area, ttd, ttt)

    # --- modes ---

    def measure_line(self, region: LineRegion, experiment_id: int) -> AnalysisRecord:
        p1, p2 = region.start, region.end
        dt = p2.time - p1.time
        wave_speed = (p2.position - p1.position) / dt if abs(dt) > geometry.EPSILON else None

        crossings: list[Point] = []
        for traj in self._trajectories:
            pts = traj.points
            for a, b in zip(pts, pts[1:]):
                hit = geometry.segment_intersection(p1, p2, a, b)
                if hit is not None:
                    crossings.append(hit)

        result = AnalysisResult(
            mode=AnalysisMode.LINE,
            count=len(crossings),
            wave_speed=wave_speed,
            experiment_id=experiment_id,
        )
        visual = AnalysisVisual(
            mode=AnalysisMode.LINE,
            points=(p1, p2),
            intersections=tuple(crossings),
            experiment_id=experiment_id,
        )
        return AnalysisRecord(result, visual)

    def measure_polygon(self, region: PolygonRegion, experiment_id: int) -> AnalysisRecord:
        m = self.edie(region.vertices)
        return self._edie_record(AnalysisMode.POLYGON, m, region.vertices,
                                 experiment_id)

    def measure_loop_detector(self, region: LoopDetectorRegion, experiment_id: int,
                              wave_speed: float) -> list[AnalysisRecord]:
        records = []
        for window in self.loop_windows(region, wave_speed):
            m = self.edie(window)
            records.append(self._edie_record(
                AnalysisMode.LOOP_DETECTOR, m, window, experiment_id,
                wave_speed=wave_speed, anchor=region.anchor,
            ))
        return records

    def measure_platoon(self, region: PlatoonRegion, experiment_id: int,
                        wave_speed: float) -> list[AnalysisRecord]:
        members = self.select_platoon(region.anchor, region.vehicle_count)
        first = self._tracks[members[0]]
        last = self._tracks[members[-1]]
        height = region.segment_height
        intercept = region.anchor.position - wave_speed * region.anchor.time

        records = []
        for _ in range(self._cfg.platoon_max_steps):
            corners = (
                geometry.polyline_line_crossing(first, wave_speed, intercept),
                geometry.polyline_line_crossing(last, wave_speed, intercept),
                geometry.polyline_line_crossing(last, wave_speed, intercept + height),
                geometry.polyline_line_crossing(first, wave_speed, intercept + height),
            )
            if any(c is None for c in corners):
                break
            if max(c.position for c in corners) > self._extent.spatial + geometry.EPSILON:
                break

            m = self.edie(corners)
            records.append(self._edie_record(
                AnalysisMode.PLATOON, m, corners, experiment_id,
                wave_speed=wave_speed, anchor=region.anchor,
            ))
            intercept += height
        else:
            logger.warning("Platoon stopped at the %d step cap",
                           self._cfg.platoon_max_steps)

        return records

    # --- region construction ---

    def loop_windows(self, region: LoopDetectorRegion,
                     wave_speed: float) -> list[tuple[Point, Point, Point, Point]]:
        """Build one wave-aligned parallelogram per time window.

        Windows tile [0, extent.temporal); a trailing partial window is kept
        and shortened to the extent end.
        """
        total = self._extent.temporal
        duration = region.window_duration
        half = region.aperture_length / 2.0
        y0 = region.anchor.position
        shift = half / wave_speed if abs(wave_speed) > geometry.EPSILON else 0.0

        count = math.ceil(total / duration - geometry.EPSILON)
        if count > self._cfg.loop_max_windows:
            raise ValueError(
                f"{count} loop detector windows exceed the limit of "
                f"{self._cfg.loop_max_windows}; use a longer window duration")
        windows = []
        for k in range(count):
            t0 = k * duration
            t1 = min((k + 1) * duration, total)
            if t1 - t0 < geometry.EPSILON:
                continue
            windows.append((
                Point(t0 - shift, y0 - half),
                Point(t1 - shift, y0 - half),
                Point(t1 + shift, y0 + half),
                Point(t0 + shift, y0 + half),
            ))
        return windows

    def nearest_trajectory(self, point: Point) -> int:
        """Index of the trajectory closest to `point`.

        Distances are measured in pixel space when a pixel mapping is known,
        so both axes weigh the same as on screen.
        """
        if self._mapper is not None:
            target = self._mapper.to_pixel(point)
            w, h = self._mapper.width, self._mapper.height
            ext = self._extent
            tracks = [
                np.column_stack((t[:, 0] / ext.temporal * w,
                                 h - t[:, 1] / ext.spatial * h))
                for t in self._tracks
            ]
        else:
            target = (point.time, point.position)
            tracks = self._tracks

        distances = [geometry.polyline_distance(target, t) for t in tracks]
        return int(np.argmin(distances))

    def select_platoon(self, anchor: Point, size: int) -> list[int]:
        """Indices of the platoon members ordered by position at the anchor time."""
        if not self._trajectories:
            raise InsufficientDataError(Insufficiency.NO_TRAJECTORIES,
                                        "no trajectories have been extracted")

        nearest = self.nearest_trajectory(anchor)
        active = []
        for i, traj in enumerate(self._trajectories):
            pos = geometry.position_at_time(traj.points, anchor.time)
            if pos is not None:
                active.append((pos, i))

        if not active:
            raise InsufficientDataError(
                Insufficiency.NO_ACTIVE_TRAJECTORY,
                f"no trajectory is active at t={anchor.time:.2f} min")
        if len(active) < 2:
            raise InsufficientDataError(
                Insufficiency.TOO_FEW_ACTIVE,
                f"only {len(active)} trajectory active at t={anchor.time:.2f} min")

        active.sort(key=lambda item: item[0])
        order = [i for _, i in active]
        if nearest not in order:
            raise InsufficientDataError(
                Insufficiency.ANCHOR_NOT_ACTIVE,
                f"trajectory #{self._trajectories[nearest].id} nearest the anchor "
                f"is not active at t={anchor.time:.2f} min")

        rank = order.index(nearest)
        start = max(0, min(rank, len(order) - size))
        return order[start:start + size]

    @staticmethod
    def _edie_record(mode: AnalysisMode, m: EdieMeasure, polygon: Sequence[Point],
                     experiment_id: int, wave_speed: Optional[float] = None,
                     anchor: Optional[Point] = None) -> AnalysisRecord:
        result = AnalysisResult(
            mode=mode,
            flow=m.flow,
            density=m.density,
            speed=m.speed,
            area=m.area,
            ttd=m.ttd,
            ttt=m.ttt,
            wave_speed=wave_speed,
            experiment_id=experiment_id,
        )
        visual = AnalysisVisual(
            mode=mode,
            points=tuple(polygon),
            anchor=anchor,
            experiment_id=experiment_id,
        )
        return AnalysisRecord(result, visual)


def summarize(region: AnalysisRegion, records: list[AnalysisRecord]) -> str:
    """Human-readable summary of one completed measurement."""
    if isinstance(region, LineRegion):
        r = records[0].result
        if r.wave_speed is None:
            return (f"Line analysis: {r.count} trajectories crossed, "
                    f"wave speed undefined for a vertical line.")
        return (f"Line analysis: {r.count} trajectories crossed, "
                f"wave speed {to_speed_kmh(r.wave_speed):.1f} km/h.")
    if isinstance(region, PolygonRegion):
        r = records[0].result
        return (f"Edie's definition: q={to_flow_per_hour(r.flow):.0f} veh/h, "
                f"k={to_density_per_km(r.density):.1f} veh/km, "
                f"v={to_speed_kmh(r.speed):.1f} km/h.")
    if isinstance(region, LoopDetectorRegion):
        return (f"Simulated {len(records)} loop detector windows at "
                f"y={region.anchor.position:.1f} m.")
    return (f"Platoon N={region.vehicle_count} tracked over "
            f"{len(records)} segments.")
