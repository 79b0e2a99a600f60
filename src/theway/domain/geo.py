from __future__ import annotations

import math

EARTH_RADIUS_METERS = 6_371_000
TRADE_DISTANCE_LIMIT_METERS = 400


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle (haversine) distance between two coordinates."""

    phi1 = math.radians(float(lat1))
    phi2 = math.radians(float(lat2))
    delta_phi = math.radians(float(lat2) - float(lat1))
    delta_lambda = math.radians(float(lon2) - float(lon1))
    a = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def within_trade_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    *,
    limit_meters: float = TRADE_DISTANCE_LIMIT_METERS,
) -> bool:
    return distance_meters(lat1, lon1, lat2, lon2) <= float(limit_meters)
