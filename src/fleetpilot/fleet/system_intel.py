"""System intelligence — load waypoint data for a system into the world view."""

from __future__ import annotations

import logging
from datetime import datetime

from fleetpilot.api import navigation
from fleetpilot.client import SpaceTradersClient
from fleetpilot.fleet.state import FleetState

logger = logging.getLogger(__name__)


async def load_system_intel(
    client: SpaceTradersClient,
    system_symbol: str,
    state: FleetState,
    now: datetime,
) -> int:
    """Load waypoints for a system once and merge them into the world view.

    Returns the number of waypoints now known in the system.
    """
    if system_symbol in state.systems:
        return len(state.world.waypoints_in(system_symbol))

    logger.info("Loading system intel for %s...", system_symbol)
    waypoints = await navigation.list_waypoints(client, system_symbol)
    for wp in waypoints:
        state.world.observe_waypoint(wp, now)
    state.systems.add(system_symbol)

    logger.info(
        "System %s: %d waypoints, %d markets, %d shipyards, %d asteroids",
        system_symbol,
        len(waypoints),
        sum(1 for wp in waypoints if wp.has_market),
        sum(1 for wp in waypoints if wp.has_shipyard),
        sum(1 for wp in waypoints if wp.is_extractable),
    )
    return len(waypoints)
