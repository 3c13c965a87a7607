"""Tests for ShipState: phase machine, cargo invariant, route memory."""

from datetime import datetime, timedelta, timezone

import pytest

from factories import ship, wp
from fleetpilot.fleet.intents import TradeTask
from fleetpilot.fleet.ship_state import CargoOverflowError, ShipPhase, ShipState
from fleetpilot.models import Cooldown, ShipCargo, ShipNavStatus

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def cargo(capacity: int, **goods: int) -> ShipCargo:
    return ShipCargo.model_validate({
        "capacity": capacity,
        "units": sum(goods.values()),
        "inventory": [{"symbol": s, "units": u} for s, u in goods.items()],
    })


class TestCargoInvariant:
    def test_sequence_never_exceeds_capacity(self) -> None:
        """Extract/buy/sell updates keep sum(cargo) <= capacity or fail loudly."""
        s = ship(capacity=10)
        s.set_cargo(cargo(10, IRON_ORE=3))
        s.add_cargo("X", 5)
        assert s.cargo_units == 8
        with pytest.raises(CargoOverflowError):
            s.add_cargo("X", 3)
        assert s.cargo_units == 8
        s.remove_cargo("X", 5)
        assert s.inventory == {"IRON_ORE": 3}
        assert s.cargo_free == 7

    def test_rejects_overfull_manifest(self) -> None:
        s = ship(capacity=5)
        with pytest.raises(CargoOverflowError):
            s.set_cargo(cargo(5, X=6))

    def test_rejects_overfull_construction(self) -> None:
        with pytest.raises(CargoOverflowError):
            ship(capacity=2, inventory={"X": 3})

    def test_cannot_remove_more_than_held(self) -> None:
        s = ship(capacity=5, inventory={"X": 1})
        with pytest.raises(CargoOverflowError):
            s.remove_cargo("X", 2)


class TestPhase:
    def test_docked_and_orbiting(self) -> None:
        assert ship().phase(T0) == ShipPhase.DOCKED
        assert ship(status=ShipNavStatus.IN_ORBIT).phase(T0) == ShipPhase.ORBITING

    def test_transit_settles_locally_at_arrival(self) -> None:
        s = ship(status=ShipNavStatus.IN_ORBIT)
        s.nav_status = ShipNavStatus.IN_TRANSIT
        s.arrival = T0 + timedelta(seconds=30)
        assert s.phase(T0) == ShipPhase.IN_TRANSIT
        assert s.busy_until(T0) == s.arrival
        assert not s.settle(T0 + timedelta(seconds=29))
        assert s.settle(T0 + timedelta(seconds=30))
        assert s.phase(T0 + timedelta(seconds=30)) == ShipPhase.ORBITING
        assert s.arrival is None

    def test_cooldown_from_remaining_seconds(self) -> None:
        s = ship(status=ShipNavStatus.IN_ORBIT)
        s.apply_cooldown(
            Cooldown.model_validate({"shipSymbol": "TESTER-1", "totalSeconds": 70, "remainingSeconds": 70}),
            T0,
        )
        assert s.phase(T0) == ShipPhase.ON_COOLDOWN
        assert s.cooldown_until == T0 + timedelta(seconds=70)
        assert s.phase(T0 + timedelta(seconds=70)) == ShipPhase.ORBITING

    def test_zero_cooldown_clears(self) -> None:
        s = ship()
        s.cooldown_until = T0 + timedelta(seconds=5)
        s.apply_cooldown(None, T0)
        assert s.cooldown_until is None

    def test_arrival_only_while_in_transit(self) -> None:
        s = ShipState(
            symbol="S", system="X1-TEST", waypoint=wp("A"),
            nav_status=ShipNavStatus.DOCKED, cargo_capacity=1,
            arrival=T0,
        )
        assert s.arrival is None


class TestRouteMemory:
    def test_failed_route_expires(self) -> None:
        s = ship()
        task = TradeTask(good="X", source=wp("B"), destination=wp("A"), units=5)
        s.remember_failed_route(task.key, T0 + timedelta(seconds=1800))
        assert task.key in s.blocked_routes(T0)
        assert task.key not in s.blocked_routes(T0 + timedelta(seconds=1800))
        s.prune_failed_routes(T0 + timedelta(seconds=1801))
        assert s.failed_routes == {}
