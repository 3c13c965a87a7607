"""Fleet events — typed notifications from ship actors to the commander."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Events the commander's supervision loop reacts to."""

    SHIP_ACQUIRED = "ship_acquired"
    SHIP_LOST = "ship_lost"
    ACTOR_CRASHED = "actor_crashed"
    ACTOR_ENDED = "actor_ended"
    SHIP_DEGRADED = "ship_degraded"
    TRADE_COMPLETED = "trade_completed"
    AUTH_FAILED = "auth_failed"


@dataclass(frozen=True)
class FleetEvent:
    """A single event emitted by a ship actor or the commander."""

    type: EventType
    ship_symbol: str
    timestamp: float = field(default_factory=time.monotonic)
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.type.value}({self.ship_symbol})"
