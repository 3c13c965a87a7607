"""Shared fleet state — what the commander and every ship actor can see."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from fleetpilot.fleet.clock import Clock
from fleetpilot.fleet.events import FleetEvent
from fleetpilot.fleet.world import WorldView
from fleetpilot.models import Agent

if TYPE_CHECKING:
    from fleetpilot.fleet.ship_actor import ShipActor


@dataclass
class FleetState:
    """Global fleet state shared by all ship actors."""

    world: WorldView = field(default_factory=WorldView)
    clock: Clock = field(default_factory=Clock)
    shutdown: asyncio.Event = field(default_factory=asyncio.Event)

    # Event queue for the commander's supervision loop
    event_queue: asyncio.Queue[FleetEvent] = field(default_factory=asyncio.Queue)

    # Latest agent record (credits are read by strategies)
    agent: Agent | None = None

    # Systems whose waypoints have been loaded into the world view
    systems: set[str] = field(default_factory=set)

    # All active ship actors keyed by ship symbol
    actors: dict[str, ShipActor] = field(default_factory=dict)

    def update_agent(self, agent: Agent) -> None:
        """Replace the cached agent record with a newer one from a response."""
        self.agent = agent

    def emit(self, event: FleetEvent) -> None:
        """Push an event onto the queue for the commander's event loop."""
        self.event_queue.put_nowait(event)
