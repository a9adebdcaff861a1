"""Conversions between internal units (veh/min, veh/m, m/min) and display units."""

from __future__ import annotations


def to_flow_per_hour(flow: float) -> float:
    return flow * 60.0


def to_density_per_km(density: float) -> float:
    return density * 1000.0


def to_speed_kmh(speed: float) -> float:
    return speed * 60.0 / 1000.0


def from_speed_kmh(speed_kmh: float) -> float:
    """km/h to m/min."""
    return speed_kmh * 1000.0 / 60.0
