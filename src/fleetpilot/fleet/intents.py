"""Action intents — what a strategy wants a ship to do next.

A closed set of frozen values. The ship actor dispatches on the concrete
type and treats anything else as a programming error.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union


@dataclass(frozen=True)
class TradeTask:
    """A committed route: buy `good` at `source`, sell it at `destination`."""

    good: str
    source: str
    destination: str
    units: int
    expected_profit: int = 0

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.good, self.source, self.destination)


@dataclass(frozen=True)
class Navigate:
    target: str
    # Route the ship commits to by flying this leg (None clears it)
    task: TradeTask | None = None
    reason: str = ""


@dataclass(frozen=True)
class Dock:
    reason: str = ""


@dataclass(frozen=True)
class Orbit:
    reason: str = ""


@dataclass(frozen=True)
class Extract:
    pass


@dataclass(frozen=True)
class Refuel:
    pass


@dataclass(frozen=True)
class SellCargo:
    good: str
    units: int


@dataclass(frozen=True)
class BuyCargo:
    good: str
    units: int
    task: TradeTask | None = None


@dataclass(frozen=True)
class Idle:
    until: datetime
    reason: str = ""


ActionIntent = Union[Navigate, Dock, Orbit, Extract, Refuel, SellCargo, BuyCargo, Idle]


def describe(intent: ActionIntent) -> str:
    """Short human-readable form for logs."""
    if isinstance(intent, Navigate):
        suffix = f" ({intent.reason})" if intent.reason else ""
        return f"navigate → {intent.target}{suffix}"
    if isinstance(intent, (SellCargo, BuyCargo)):
        verb = "sell" if isinstance(intent, SellCargo) else "buy"
        return f"{verb} {intent.units}x {intent.good}"
    if isinstance(intent, Idle):
        suffix = f" ({intent.reason})" if intent.reason else ""
        return f"idle until {intent.until:%H:%M:%S}{suffix}"
    return type(intent).__name__.lower()
