"""Flow-density (fundamental diagram) views of the measurement history."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Optional

from trajflow.analysis.units import to_density_per_km, to_flow_per_hour, to_speed_kmh
from trajflow.recording.models import AnalysisMode, AnalysisResult

MIN_DENSITY_SPAN = 1e-4


@dataclass(frozen=True)
class DiagramPoint:
    density: float            # veh/km
    flow: float               # veh/h
    speed: float              # km/h
    mode: AnalysisMode
    index: int                # position within its experiment


def diagram_points(results: Iterable[AnalysisResult]) -> dict[int, list[DiagramPoint]]:
    """Group flow-density points by experiment id, in order of appearance.

    Line results carry no Edie flow or density and are left out.
    """
    grouped: dict[int, list[DiagramPoint]] = OrderedDict()
    for r in results:
        if r.mode == AnalysisMode.LINE:
            continue
        group = grouped.setdefault(r.experiment_id, [])
        group.append(DiagramPoint(
            density=to_density_per_km(r.density),
            flow=to_flow_per_hour(r.flow),
            speed=to_speed_kmh(r.speed),
            mode=r.mode,
            index=len(group),
        ))
    return grouped


def diagram_slope(k1: float, q1: float, k2: float, q2: float) -> Optional[float]:
    """Wave speed (km/h) between two diagram points in veh/km and veh/h.

    Returns None when the two densities coincide.
    """
    if abs(k2 - k1) < MIN_DENSITY_SPAN:
        return None
    return (q2 - q1) / (k2 - k1)
