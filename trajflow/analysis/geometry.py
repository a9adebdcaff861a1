"""2-D geometry in the time-space plane: x is time, y is position.

Scalar functions work on `Point` values. The `polyline_*`, `points_in_polygon`
and `clipped_travel` helpers are numpy versions applied to whole trajectories
at once; they follow the scalar rules exactly.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from trajflow.recording.models import Point

EPSILON = 1e-9
INTERP_EPSILON = 1e-4


@dataclass(frozen=True)
class SegmentMetrics:
    travel_distance: float
    travel_time: float


def point_in_polygon(point: Point, polygon: Sequence[Point]) -> bool:
    """Even-odd ray casting; the last vertex connects back to the first."""
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i].time, polygon[i].position
        xj, yj = polygon[j].time, polygon[j].position
        if (yi > point.position) != (yj > point.position):
            x_cross = (xj - xi) * (point.position - yi) / (yj - yi) + xi
            if point.time < x_cross:
                inside = not inside
        j = i
    return inside


def segment_intersection(p1: Point, p2: Point,
                         p3: Point, p4: Point) -> Optional[Point]:
    """Intersection of segment p1-p2 with segment p3-p4.

    Parallel and collinear segments (zero denominator) never intersect.
    """
    denom = ((p4.position - p3.position) * (p2.time - p1.time)
             - (p4.time - p3.time) * (p2.position - p1.position))
    if denom == 0:
        return None

    ua = ((p4.time - p3.time) * (p1.position - p3.position)
          - (p4.position - p3.position) * (p1.time - p3.time)) / denom
    ub = ((p2.time - p1.time) * (p1.position - p3.position)
          - (p2.position - p1.position) * (p1.time - p3.time)) / denom

    if 0 <= ua <= 1 and 0 <= ub <= 1:
        return Point(
            time=p1.time + ua * (p2.time - p1.time),
            position=p1.position + ua * (p2.position - p1.position),
        )
    return None


def segment_line_intersection(p1: Point, p2: Point, slope: float,
                              intercept: float) -> Optional[Point]:
    """Intersection of segment p1-p2 with the line y = slope * x + intercept."""
    if abs(p2.time - p1.time) < EPSILON:
        y = slope * p1.time + intercept
        if min(p1.position, p2.position) <= y <= max(p1.position, p2.position):
            return Point(p1.time, y)
        return None

    seg_slope = (p2.position - p1.position) / (p2.time - p1.time)
    if abs(slope - seg_slope) < EPSILON:
        return None

    x = (p1.position - seg_slope * p1.time - intercept) / (slope - seg_slope)
    if min(p1.time, p2.time) - EPSILON <= x <= max(p1.time, p2.time) + EPSILON:
        return Point(x, slope * x + intercept)
    return None


def polygon_area(polygon: Sequence[Point]) -> float:
    """Shoelace area, independent of vertex orientation."""
    area = 0.0
    n = len(polygon)
    for i in range(n):
        j = (i + 1) % n
        area += polygon[i].time * polygon[j].position
        area -= polygon[j].time * polygon[i].position
    return abs(area) / 2.0


def clipped_segment_metrics(p1: Point, p2: Point, polygon: Sequence[Point],
                            samples: int = 10) -> SegmentMetrics:
    """Approximate the part of segment p1-p2 lying inside `polygon`.

    The segment is cut into `samples` equal sub-intervals and a sub-interval
    counts as inside when its midpoint is. This is an approximation whose
    accuracy grows with `samples` and trajectory sampling density.
    """
    distance = 0.0
    duration = 0.0
    for i in range(samples):
        t0 = i / samples
        t1 = (i + 1) / samples
        start = Point(p1.time + (p2.time - p1.time) * t0,
                      p1.position + (p2.position - p1.position) * t0)
        end = Point(p1.time + (p2.time - p1.time) * t1,
                    p1.position + (p2.position - p1.position) * t1)
        mid = Point((start.time + end.time) / 2, (start.position + end.position) / 2)
        if point_in_polygon(mid, polygon):
            distance += abs(end.position - start.position)
            duration += abs(end.time - start.time)
    return SegmentMetrics(travel_distance=distance, travel_time=duration)


def position_at_time(points: Sequence[Point], time: float) -> Optional[float]:
    """Interpolated position of a trajectory at `time`, or None if inactive."""
    for p1, p2 in zip(points, points[1:]):
        if p1.time <= time <= p2.time:
            span = p2.time - p1.time
            ratio = 0.0 if abs(span) < INTERP_EPSILON else (time - p1.time) / span
            return p1.position + ratio * (p2.position - p1.position)
    return None


# --- vectorized helpers ---

def polygon_array(polygon: Sequence[Point]) -> np.ndarray:
    return np.array([(p.time, p.position) for p in polygon], dtype=np.float64)


def points_in_polygon(xs: np.ndarray, ys: np.ndarray,
                      polygon: np.ndarray) -> np.ndarray:
    """Even-odd test for many points against an (m, 2) polygon array."""
    inside = np.zeros(xs.shape, dtype=bool)
    m = len(polygon)
    with np.errstate(divide="ignore", invalid="ignore"):
        for i in range(m):
            xi, yi = polygon[i]
            xj, yj = polygon[i - 1]
            straddles = (yi > ys) != (yj > ys)
            x_cross = (xj - xi) * (ys - yi) / (yj - yi) + xi
            inside ^= straddles & (xs < x_cross)
    return inside


def clipped_travel(track: np.ndarray, polygon: np.ndarray,
                   samples: int = 10) -> SegmentMetrics:
    """Sum of `clipped_segment_metrics` over every segment of an (n, 2) track."""
    if len(track) < 2:
        return SegmentMetrics(0.0, 0.0)

    # Segments entirely outside the polygon's bounding box contribute nothing
    lo = polygon.min(axis=0)
    hi = polygon.max(axis=0)
    starts = track[:-1]
    ends = track[1:]
    seg_lo = np.minimum(starts, ends)
    seg_hi = np.maximum(starts, ends)
    overlap = np.all((seg_hi >= lo) & (seg_lo <= hi), axis=1)
    if not np.any(overlap):
        return SegmentMetrics(0.0, 0.0)
    starts = starts[overlap]
    deltas = ends[overlap] - starts

    fractions = (np.arange(samples) + 0.5) / samples
    mids = starts[:, np.newaxis, :] + deltas[:, np.newaxis, :] * fractions[np.newaxis, :, np.newaxis]
    inside = points_in_polygon(mids[..., 0], mids[..., 1], polygon)

    hits = inside.sum(axis=1)
    distance = float(np.sum(hits * np.abs(deltas[:, 1]) / samples))
    duration = float(np.sum(hits * np.abs(deltas[:, 0]) / samples))
    return SegmentMetrics(travel_distance=distance, travel_time=duration)


def polyline_line_crossing(track: np.ndarray, slope: float,
                           intercept: float) -> Optional[Point]:
    """First crossing of an (n, 2) track with y = slope * x + intercept."""
    if len(track) < 2:
        return None

    x1, y1 = track[:-1, 0], track[:-1, 1]
    x2, y2 = track[1:, 0], track[1:, 1]
    dx = x2 - x1
    vertical = np.abs(dx) < EPSILON

    with np.errstate(divide="ignore", invalid="ignore"):
        y_vert = slope * x1 + intercept
        hit_vert = vertical & (y_vert >= np.minimum(y1, y2)) & (y_vert <= np.maximum(y1, y2))

        seg_slope = np.where(vertical, 0.0, (y2 - y1) / np.where(vertical, 1.0, dx))
        parallel = np.abs(slope - seg_slope) < EPSILON
        x_cross = (y1 - seg_slope * x1 - intercept) / np.where(parallel, 1.0, slope - seg_slope)
        hit_slanted = (~vertical & ~parallel
                       & (x_cross >= np.minimum(x1, x2) - EPSILON)
                       & (x_cross <= np.maximum(x1, x2) + EPSILON))

    hits = np.flatnonzero(hit_vert | hit_slanted)
    if hits.size == 0:
        return None
    i = hits[0]
    if vertical[i]:
        return Point(float(x1[i]), float(y_vert[i]))
    x = float(x_cross[i])
    return Point(x, slope * x + intercept)


def polyline_distance(point: tuple[float, float], track: np.ndarray) -> float:
    """Minimum distance from `point` to any segment of an (n, 2) track."""
    if len(track) == 0:
        return math.inf
    p = np.asarray(point, dtype=np.float64)
    if len(track) == 1:
        return float(np.linalg.norm(track[0] - p))

    starts = track[:-1]
    deltas = track[1:] - starts
    length_sq = np.sum(deltas ** 2, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        t = np.where(length_sq > 0, np.sum((p - starts) * deltas, axis=1) / length_sq, 0.0)
    t = np.clip(t, 0.0, 1.0)
    nearest = starts + deltas * t[:, np.newaxis]
    return float(np.min(np.linalg.norm(nearest - p, axis=1)))
