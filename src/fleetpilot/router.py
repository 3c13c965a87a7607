"""Distance, fuel and travel-time estimates between waypoints.

Flight mode parameters (from SpaceTraders docs + observations):
    CRUISE: fuel = distance,   time = round(15 + distance * 25 / speed)
    DRIFT:  fuel = 1,          time = round(15 + distance * 250 / speed)
    BURN:   fuel = 2*distance, time = round(15 + distance * 12.5 / speed)
"""

from __future__ import annotations

import math

# Default engine speed when a ship reports none
DEFAULT_SPEED = 30


def distance(x1: int, y1: int, x2: int, y2: int) -> float:
    """Euclidean distance between two waypoints."""
    return math.sqrt((x2 - x1) ** 2 + (y2 - y1) ** 2)


def fuel_cost(dist: float, mode: str = "CRUISE") -> int:
    """Estimate fuel consumed for a given distance and flight mode."""
    if dist <= 0:
        return 0
    d = max(1, math.ceil(dist))
    if mode == "DRIFT":
        return 1
    if mode == "BURN":
        return d * 2
    # CRUISE (default)
    return d


def travel_time(dist: float, speed: int, mode: str = "CRUISE") -> int:
    """Estimate travel time in seconds for a given distance, speed, and flight mode."""
    if dist <= 0:
        return 0
    if mode == "DRIFT":
        multiplier = 250.0
    elif mode == "BURN":
        multiplier = 12.5
    else:  # CRUISE
        multiplier = 25.0
    return round(15 + dist * multiplier / max(speed, 1))


def can_reach(fuel_current: int, fuel_capacity: int, dist: float) -> bool:
    """Can a ship with this fuel cruise the distance? Fuel-less ships always can."""
    if fuel_capacity == 0:
        return True
    return fuel_cost(dist) <= fuel_current
