"""Tests for the shared WorldView cache."""

from datetime import datetime, timedelta, timezone

from factories import market, waypoint, wp
from fake_game import good
from fleetpilot.fleet.world import WorldView

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


class TestObserve:
    def test_new_waypoint_is_stored(self) -> None:
        world = WorldView()
        assert world.observe_waypoint(waypoint("A", 1, 2), T0)
        entry = world.lookup(wp("A"))
        assert entry is not None
        assert world.coords(wp("A")) == (1, 2)

    def test_replay_is_a_no_op(self) -> None:
        world = WorldView()
        m = market("A", good("X", 10, 8))
        world.observe_waypoint(waypoint("A", 0, 0, market=True), T0)
        assert world.observe_market(m, at(5))
        assert not world.observe_market(m, at(5))
        assert world.market_for(wp("A"), at(5)) == m

    def test_older_observation_never_regresses(self) -> None:
        world = WorldView()
        world.observe_waypoint(waypoint("A", 0, 0, market=True), T0)
        new = market("A", good("X", 12, 9))
        old = market("A", good("X", 10, 8))
        world.observe_market(new, at(10))
        assert not world.observe_market(old, at(5))
        assert world.market_for(wp("A"), at(10)) == new

        assert not world.observe_waypoint(waypoint("A", 99, 99, market=True), T0)
        assert world.coords(wp("A")) == (0, 0)

    def test_newer_waypoint_data_wins(self) -> None:
        world = WorldView()
        world.observe_waypoint(waypoint("A", 0, 0), T0)
        assert world.observe_waypoint(waypoint("A", 0, 0, market=True), at(1))
        assert world.lookup(wp("A")).has_market

    def test_market_before_waypoint_is_kept(self) -> None:
        world = WorldView()
        m = market("A", good("X", 10, 8))
        world.observe_market(m, at(1))
        assert world.market_for(wp("A"), at(1)) == m
        world.observe_waypoint(waypoint("A", 0, 0, market=True), at(2))
        assert world.lookup(wp("A")).market == m


class TestFreshness:
    def test_stale_market_is_unknown(self) -> None:
        world = WorldView(market_max_age=60)
        world.observe_waypoint(waypoint("A", 0, 0, market=True), T0)
        world.observe_market(market("A", good("X", 10, 8)), T0)
        assert world.market_for(wp("A"), at(60)) is not None
        assert world.market_for(wp("A"), at(61)) is None
        assert world.markets_in("X1-TEST", at(61)) == {}

    def test_invalidate_then_refresh_at_same_instant(self) -> None:
        world = WorldView()
        world.observe_waypoint(waypoint("A", 0, 0, market=True), T0)
        world.observe_market(market("A", good("X", 10, 8)), T0)
        world.invalidate_market(wp("A"))
        assert world.market_for(wp("A"), T0) is None

        fresh = market("A", good("X", 11, 8))
        assert world.observe_market(fresh, T0)
        assert world.market_for(wp("A"), T0) == fresh

    def test_invalidate_blocks_older_snapshot(self) -> None:
        world = WorldView()
        world.observe_waypoint(waypoint("A", 0, 0, market=True), T0)
        world.observe_market(market("A", good("X", 10, 8)), at(10))
        world.invalidate_market(wp("A"))
        assert not world.observe_market(market("A", good("X", 10, 8)), at(5))
        assert world.market_for(wp("A"), at(10)) is None


class TestQueries:
    def test_waypoints_in_sorted_and_filtered(self) -> None:
        world = WorldView()
        for name in ("C", "A", "B"):
            world.observe_waypoint(waypoint(name, 0, 0), T0)
        assert [e.symbol for e in world.waypoints_in("X1-TEST")] == [wp("A"), wp("B"), wp("C")]
        assert world.waypoints_in("X1-OTHER") == []

    def test_exploration(self) -> None:
        world = WorldView()
        world.observe_waypoint(waypoint("A", 0, 0, market=True), T0)
        world.observe_waypoint(waypoint("R", 5, 5), T0)
        assert not world.is_explored(wp("A"), T0)
        assert not world.is_explored(wp("R"), T0)

        world.mark_visited(wp("R"))
        world.observe_market(market("A"), T0)
        assert world.is_explored(wp("R"), T0)
        assert world.is_explored(wp("A"), T0)
        assert not world.is_explored(wp("A"), at(world.market_max_age + 1))

    def test_fuel_price_is_cheapest_known(self) -> None:
        world = WorldView()
        world.observe_waypoint(waypoint("A", 0, 0, market=True), T0)
        world.observe_waypoint(waypoint("B", 1, 0, market=True), T0)
        assert world.fuel_price("X1-TEST", T0) is None
        world.observe_market(market("A", good("FUEL", 80, 70)), T0)
        world.observe_market(market("B", good("FUEL", 65, 60)), T0)
        assert world.fuel_price("X1-TEST", T0) == 65
