"""Local ship state — owned and mutated by exactly one ship actor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from fleetpilot.fleet.intents import TradeTask
from fleetpilot.models import Cooldown, Ship, ShipCargo, ShipFuel, ShipNav, ShipNavStatus
from fleetpilot.router import DEFAULT_SPEED


class ShipPhase(str, Enum):
    """States of the ship actor's machine."""

    DOCKED = "docked"
    ORBITING = "orbiting"
    IN_TRANSIT = "in_transit"
    ON_COOLDOWN = "on_cooldown"
    AWAITING_DECISION = "awaiting_decision"


class CargoOverflowError(ValueError):
    """A cargo update would put more units in the hold than it can carry."""


@dataclass
class ShipState:
    """Everything the strategy needs to know about one ship.

    Invariants: cargo units never exceed capacity; `arrival` is set iff
    the ship is IN_TRANSIT.
    """

    symbol: str
    system: str
    waypoint: str
    nav_status: ShipNavStatus
    cargo_capacity: int
    fuel: int = 0
    fuel_capacity: int = 0
    speed: int = DEFAULT_SPEED
    can_extract: bool = False
    arrival: datetime | None = None
    cooldown_until: datetime | None = None
    inventory: dict[str, int] = field(default_factory=dict)
    task: TradeTask | None = None
    # (good, source, destination) → when the route may be tried again
    failed_routes: dict[tuple[str, str, str], datetime] = field(default_factory=dict)
    degraded_until: datetime | None = None

    def __post_init__(self) -> None:
        self._check_cargo(self.inventory)
        if self.nav_status != ShipNavStatus.IN_TRANSIT:
            self.arrival = None

    @classmethod
    def from_ship(cls, ship: Ship, now: datetime | None = None) -> ShipState:
        """Build local state from a full API ship record."""
        state = cls(
            symbol=ship.symbol,
            system=ship.nav.system_symbol,
            waypoint=ship.nav.waypoint_symbol,
            nav_status=ship.nav.status,
            cargo_capacity=ship.cargo.capacity,
            fuel=ship.fuel.current,
            fuel_capacity=ship.fuel.capacity,
            speed=(ship.engine.speed if ship.engine and ship.engine.speed else DEFAULT_SPEED),
            can_extract=ship.can_extract,
            inventory=_inventory(ship.cargo),
        )
        state.apply_nav(ship.nav)
        if ship.cooldown is not None and now is not None:
            state.apply_cooldown(ship.cooldown, now)
        return state

    def refresh(self, ship: Ship, now: datetime) -> None:
        """Overwrite API-owned fields from a fresh ship record; keep local plans."""
        fresh = ShipState.from_ship(ship, now)
        fresh.task = self.task
        fresh.failed_routes = self.failed_routes
        fresh.degraded_until = self.degraded_until
        self.__dict__.update(fresh.__dict__)

    # ------------------------------------------------------------------
    # Phase
    # ------------------------------------------------------------------

    def phase(self, now: datetime) -> ShipPhase:
        if self.nav_status == ShipNavStatus.IN_TRANSIT and self.arrival and now < self.arrival:
            return ShipPhase.IN_TRANSIT
        if self.cooldown_until is not None and now < self.cooldown_until:
            return ShipPhase.ON_COOLDOWN
        if self.nav_status == ShipNavStatus.DOCKED:
            return ShipPhase.DOCKED
        return ShipPhase.ORBITING

    def busy_until(self, now: datetime) -> datetime | None:
        """When the current transit or cooldown ends, or None if neither is active."""
        phase = self.phase(now)
        if phase == ShipPhase.IN_TRANSIT:
            return self.arrival
        if phase == ShipPhase.ON_COOLDOWN:
            return self.cooldown_until
        return None

    def settle(self, now: datetime) -> bool:
        """Complete a transit whose arrival time has passed. Returns True if it did."""
        if self.nav_status != ShipNavStatus.IN_TRANSIT:
            return False
        if self.arrival is not None and now < self.arrival:
            return False
        self.nav_status = ShipNavStatus.IN_ORBIT
        self.arrival = None
        return True

    def is_degraded(self, now: datetime) -> bool:
        return self.degraded_until is not None and now < self.degraded_until

    # ------------------------------------------------------------------
    # Cargo
    # ------------------------------------------------------------------

    @property
    def cargo_units(self) -> int:
        return sum(self.inventory.values())

    @property
    def cargo_free(self) -> int:
        return self.cargo_capacity - self.cargo_units

    def units_of(self, good: str) -> int:
        return self.inventory.get(good, 0)

    def _check_cargo(self, inventory: dict[str, int]) -> None:
        total = sum(inventory.values())
        if total > self.cargo_capacity:
            raise CargoOverflowError(
                f"{self.symbol}: {total} units exceed capacity {self.cargo_capacity}",
            )
        if any(units < 0 for units in inventory.values()):
            raise CargoOverflowError(f"{self.symbol}: negative cargo {inventory}")

    def set_cargo(self, cargo: ShipCargo) -> None:
        inventory = _inventory(cargo)
        self.cargo_capacity = cargo.capacity
        self._check_cargo(inventory)
        self.inventory = inventory

    def add_cargo(self, good: str, units: int) -> None:
        inventory = dict(self.inventory)
        inventory[good] = inventory.get(good, 0) + units
        self._check_cargo(inventory)
        self.inventory = {g: u for g, u in inventory.items() if u > 0}

    def remove_cargo(self, good: str, units: int) -> None:
        self.add_cargo(good, -units)

    # ------------------------------------------------------------------
    # API responses
    # ------------------------------------------------------------------

    def apply_nav(self, nav: ShipNav) -> None:
        self.system = nav.system_symbol
        self.waypoint = nav.waypoint_symbol
        self.nav_status = nav.status
        self.arrival = nav.route.arrival if nav.status == ShipNavStatus.IN_TRANSIT else None

    def apply_fuel(self, fuel: ShipFuel) -> None:
        self.fuel = fuel.current
        self.fuel_capacity = fuel.capacity

    def apply_cooldown(self, cooldown: Cooldown | None, now: datetime) -> None:
        if cooldown is None or cooldown.remaining_seconds <= 0:
            self.cooldown_until = None
        elif cooldown.expiration is not None:
            self.cooldown_until = cooldown.expiration
        else:
            self.cooldown_until = now + timedelta(seconds=cooldown.remaining_seconds)

    # ------------------------------------------------------------------
    # Route memory
    # ------------------------------------------------------------------

    def remember_failed_route(self, key: tuple[str, str, str], until: datetime) -> None:
        self.failed_routes[key] = until

    def blocked_routes(self, now: datetime) -> frozenset[tuple[str, str, str]]:
        """Routes that failed recently and should not be picked again yet."""
        return frozenset(k for k, until in self.failed_routes.items() if now < until)

    def prune_failed_routes(self, now: datetime) -> None:
        self.failed_routes = {k: v for k, v in self.failed_routes.items() if now < v}


def _inventory(cargo: ShipCargo) -> dict[str, int]:
    inventory: dict[str, int] = {}
    for item in cargo.inventory:
        if item.units > 0:
            inventory[item.symbol] = inventory.get(item.symbol, 0) + item.units
    return inventory
