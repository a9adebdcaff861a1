"""Tabular export of measurement records in display units."""

from __future__ import annotations

import csv
import io
from typing import Iterable

from trajflow.analysis.units import to_density_per_km, to_flow_per_hour, to_speed_kmh
from trajflow.recording.models import AnalysisMode, AnalysisRecord

EXPORT_COLUMNS = [
    "Experiment",
    "Mode",
    "Time (min)",
    "Position (m)",
    "Flow (veh/h)",
    "Density (veh/km)",
    "Speed (km/h)",
    "Area",
    "TTD (m)",
    "TTT (min)",
]


def export_rows(records: Iterable[AnalysisRecord]) -> list[list]:
    """One row per record.

    The experiment index numbers experiment ids from 1 in order of first
    appearance. The corner is the visual's lower-right point (latest time,
    lowest position). Line rows report the wave speed in the speed column.
    """
    rows = []
    index_of: dict[int, int] = {}
    for record in records:
        r = record.result
        exp = index_of.setdefault(r.experiment_id, len(index_of) + 1)

        pts = record.visual.points
        corner_time = max(p.time for p in pts) if pts else 0.0
        corner_pos = min(p.position for p in pts) if pts else 0.0

        if r.mode == AnalysisMode.LINE:
            # Vertical lines have no wave speed; the cell is left empty
            speed = round(to_speed_kmh(r.wave_speed), 2) if r.wave_speed is not None else ""
        else:
            speed = round(to_speed_kmh(r.speed), 2)

        rows.append([
            exp,
            r.mode.value,
            round(corner_time, 4),
            round(corner_pos, 2),
            round(to_flow_per_hour(r.flow), 2),
            round(to_density_per_km(r.density), 2),
            speed,
            round(r.area, 4),
            round(r.ttd, 4),
            round(r.ttt, 4),
        ])
    return rows


def to_delimited(records: Iterable[AnalysisRecord], delimiter: str = ",") -> str:
    """Render records as CSV (default) or tab-separated text with a header."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    writer.writerows(export_rows(records))
    return buffer.getvalue()
