"""Ship strategies — pure decision engines for the next action of one ship.

No I/O, no async. A strategy takes the ship's state, the shared world view,
the agent and the current time, and returns one ActionIntent. Identical
inputs always produce the identical intent: every collection is walked in
sorted order and every ranking has an explicit tie-break.

Two policies ship with the fleet:
    trade — haul goods along the most profitable known buy→sell route
    mine  — extract at asteroids and haul the yield to the best buyer

Both share the same preamble (transit/cooldown waits, refuelling, docking
to read an unknown market) and the same exploration fallback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from fleetpilot.fleet.intents import (
    ActionIntent,
    BuyCargo,
    Dock,
    Extract,
    Idle,
    Navigate,
    Orbit,
    Refuel,
    SellCargo,
    TradeTask,
)
from fleetpilot.fleet.ship_state import ShipPhase, ShipState
from fleetpilot.fleet.world import WorldView
from fleetpilot.models import Agent, Market, MarketTradeGood, ShipNavStatus, Waypoint
from fleetpilot.router import can_reach, distance, fuel_cost, travel_time

logger = logging.getLogger(__name__)

# Supply → base multiplier for safe sell volume (units = trade_volume × multiplier).
_SUPPLY_MULTIPLIER: dict[str, float] = {
    "SCARCE": 2.0,
    "LIMITED": 3.0,
    "MODERATE": 4.0,
    "HIGH": 5.0,
    "ABUNDANT": 6.0,
}

# Goods a mining laser can pull from each deposit trait
DEPOSIT_GOODS: dict[str, frozenset[str]] = {
    "COMMON_METAL_DEPOSITS": frozenset({"IRON_ORE", "COPPER_ORE", "ALUMINUM_ORE"}),
    "PRECIOUS_METAL_DEPOSITS": frozenset({"SILVER_ORE", "GOLD_ORE", "PLATINUM_ORE"}),
    "RARE_METAL_DEPOSITS": frozenset({"URANITE_ORE", "MERITIUM_ORE"}),
    "RADIOACTIVE_DEPOSITS": frozenset({"URANITE_ORE"}),
    "MINERAL_DEPOSITS": frozenset({"SILICON_CRYSTALS", "QUARTZ_SAND", "PRECIOUS_STONES"}),
    "ICE_CRYSTALS": frozenset({"ICE_WATER", "AMMONIA_ICE"}),
}

# Fields mined out by other players
STRIPPED_TRAIT = "STRIPPED"


@dataclass(frozen=True)
class StrategyPolicy:
    """Tunables shared by every strategy."""

    # Sell here if the price is at least this fraction of the best known price
    sell_threshold: float = 0.8
    # Refuel at a fuel-selling market when below this fraction of capacity
    refuel_below: float = 0.7
    # Credits per fuel unit when no market has reported a FUEL price
    default_fuel_price: int = 72
    # Seconds to idle when there is nothing useful to do
    idle_interval: float = 60.0
    # Minimum estimated net credits for a trade route to be worth flying
    min_route_profit: int = 1


@dataclass(frozen=True)
class TradeRoute:
    """A scored trade route: buy good at source, sell at destination."""

    good: str
    source: str
    destination: str
    buy_price: int
    sell_price: int
    units: int
    profit_per_unit: int
    fuel_cost_credits: int
    net_profit: int
    travel_seconds: int

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.good, self.source, self.destination)

    def task(self) -> TradeTask:
        return TradeTask(
            good=self.good,
            source=self.source,
            destination=self.destination,
            units=self.units,
            expected_profit=self.net_profit,
        )


class Strategy(Protocol):
    """Capability every ship policy provides."""

    name: str

    def decide(
        self, ship: ShipState, world: WorldView, agent: Agent, now: datetime,
    ) -> ActionIntent: ...


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def safe_sell_volume(
    dest_supply: str,
    dest_activity: str | None,
    trade_volume: int,
    cargo_capacity: int,
) -> int:
    """Estimate how many units a destination market can absorb without crashing.

    Based on supply level and trade volume. STRONG activity adds +1.0 to
    the multiplier (faster market recovery = more absorption).
    """
    multiplier = _SUPPLY_MULTIPLIER.get(dest_supply, 3.0)
    if dest_activity == "STRONG":
        multiplier += 1.0
    return max(0, min(int(trade_volume * multiplier), cargo_capacity))


def waypoint_gap(world: WorldView, a: str, b: str) -> float | None:
    """Distance between two waypoints, or None if either position is unknown."""
    if a == b:
        return 0.0
    ca = world.coords(a)
    cb = world.coords(b)
    if ca is None or cb is None:
        return None
    return distance(ca[0], ca[1], cb[0], cb[1])


def reachable(ship: ShipState, world: WorldView, target: str, *, full_tank: bool = False) -> bool:
    """Can the ship cruise to `target` on its current (or a full) tank?"""
    gap = waypoint_gap(world, ship.waypoint, target)
    if gap is None:
        return False
    available = ship.fuel_capacity if full_tank else ship.fuel
    return can_reach(available, ship.fuel_capacity, gap)


def _fuel_price(world: WorldView, ship: ShipState, now: datetime, policy: StrategyPolicy) -> int:
    if ship.fuel_capacity == 0:
        return 0
    price = world.fuel_price(ship.system, now)
    return price if price is not None else policy.default_fuel_price


def find_routes(
    ship: ShipState,
    world: WorldView,
    credits: int,
    now: datetime,
    policy: StrategyPolicy,
) -> list[TradeRoute]:
    """Score every known buy-low/sell-high route in the ship's system.

    Net profit = margin × units − fuel for the deadhead and the loaded leg.
    Units are capped by free cargo, by what the destination can absorb and
    by what the agent can afford. Best net first; equal nets prefer the
    shorter trip, then symbol order.
    """
    markets = world.markets_in(ship.system, now)
    blocked = ship.blocked_routes(now)
    fuel_price = _fuel_price(world, ship, now, policy)
    free = ship.cargo_free
    if free <= 0:
        return []

    routes: list[TradeRoute] = []
    for src_symbol in sorted(markets):
        for src_good in sorted(markets[src_symbol].trade_goods, key=lambda g: g.symbol):
            if src_good.symbol == "FUEL" or src_good.purchase_price <= 0:
                continue
            affordable = credits // src_good.purchase_price
            if affordable <= 0:
                continue
            for dst_symbol in sorted(markets):
                if dst_symbol == src_symbol:
                    continue
                key = (src_good.symbol, src_symbol, dst_symbol)
                if key in blocked:
                    continue
                dst_good = markets[dst_symbol].good(src_good.symbol)
                if dst_good is None:
                    continue
                margin = dst_good.sell_price - src_good.purchase_price
                if margin <= 0:
                    continue

                deadhead = waypoint_gap(world, ship.waypoint, src_symbol)
                leg = waypoint_gap(world, src_symbol, dst_symbol)
                if deadhead is None or leg is None:
                    continue
                deadhead_fuel = fuel_cost(deadhead)
                leg_fuel = fuel_cost(leg)
                if ship.fuel_capacity > 0 and (
                    deadhead_fuel > ship.fuel or leg_fuel > ship.fuel_capacity
                ):
                    continue

                units = min(
                    free,
                    affordable,
                    safe_sell_volume(
                        dst_good.supply, dst_good.activity, dst_good.trade_volume, free,
                    ),
                )
                if units <= 0:
                    continue
                fuel_credits = (deadhead_fuel + leg_fuel) * fuel_price
                net = margin * units - fuel_credits
                if net < policy.min_route_profit:
                    continue
                routes.append(TradeRoute(
                    good=src_good.symbol,
                    source=src_symbol,
                    destination=dst_symbol,
                    buy_price=src_good.purchase_price,
                    sell_price=dst_good.sell_price,
                    units=units,
                    profit_per_unit=margin,
                    fuel_cost_credits=fuel_credits,
                    net_profit=net,
                    travel_seconds=travel_time(deadhead, ship.speed) + travel_time(leg, ship.speed),
                ))

    routes.sort(key=lambda r: (-r.net_profit, r.travel_seconds, r.good, r.source, r.destination))
    return routes


def best_sell_price(world: WorldView, system: str, good: str, now: datetime) -> int:
    """Highest fresh sell price for a good anywhere in the system (0 if none)."""
    best = 0
    for market in world.markets_in(system, now).values():
        listing = market.good(good)
        if listing is not None and listing.sell_price > best:
            best = listing.sell_price
    return best


def best_buyer(
    ship: ShipState, world: WorldView, now: datetime,
) -> tuple[str, str] | None:
    """Best (waypoint, good) to haul held cargo to: highest value, then nearest."""
    candidates: list[tuple[int, float, str, str]] = []
    markets = world.markets_in(ship.system, now)
    for good in sorted(ship.inventory):
        units = ship.inventory[good]
        for symbol in sorted(markets):
            if symbol == ship.waypoint:
                continue
            listing = markets[symbol].good(good)
            if listing is None or listing.sell_price <= 0:
                continue
            if not reachable(ship, world, symbol):
                continue
            gap = waypoint_gap(world, ship.waypoint, symbol) or 0.0
            candidates.append((-listing.sell_price * units, gap, symbol, good))
    if not candidates:
        return None
    _, _, symbol, good = min(candidates)
    return symbol, good


def nearest(
    ship: ShipState, world: WorldView, symbols: list[str],
) -> str | None:
    """Closest reachable waypoint among `symbols`; ties broken by symbol."""
    ranked: list[tuple[float, str]] = []
    for symbol in symbols:
        if symbol == ship.waypoint or not reachable(ship, world, symbol):
            continue
        gap = waypoint_gap(world, ship.waypoint, symbol)
        if gap is not None:
            ranked.append((gap, symbol))
    if not ranked:
        return None
    return min(ranked)[1]


def _docked(ship: ShipState) -> bool:
    return ship.nav_status == ShipNavStatus.DOCKED


def _here_market(ship: ShipState, world: WorldView, now: datetime) -> Market | None:
    return world.market_for(ship.waypoint, now)


# ---------------------------------------------------------------------------
# Shared decision steps: each returns an intent, or None to fall through
# ---------------------------------------------------------------------------


def wait_step(
    ship: ShipState, now: datetime, policy: StrategyPolicy,
) -> ActionIntent | None:
    """Ships in transit, on cooldown or degraded only wait."""
    if ship.is_degraded(now):
        return Idle(until=ship.degraded_until, reason="degraded")
    phase = ship.phase(now)
    if phase == ShipPhase.IN_TRANSIT:
        return Idle(until=ship.arrival, reason="in transit")
    if phase == ShipPhase.ON_COOLDOWN:
        return Idle(until=ship.cooldown_until, reason="cooldown")
    return None


def observe_step(
    ship: ShipState, world: WorldView, now: datetime,
) -> ActionIntent | None:
    """Dock at a marketplace whose prices are unknown or stale to read them."""
    entry = world.lookup(ship.waypoint)
    if entry is None or not entry.has_market or _docked(ship):
        return None
    if world.market_for(ship.waypoint, now) is None:
        return Dock(reason="read market")
    return None


def refuel_step(
    ship: ShipState, world: WorldView, agent: Agent, now: datetime, policy: StrategyPolicy,
) -> ActionIntent | None:
    if ship.fuel_capacity == 0 or ship.fuel >= ship.fuel_capacity * policy.refuel_below:
        return None
    market = _here_market(ship, world, now)
    fuel = market.good("FUEL") if market else None
    if fuel is None or agent.credits < fuel.purchase_price:
        return None
    return Refuel() if _docked(ship) else Dock(reason="refuel")


def sell_step(
    ship: ShipState, world: WorldView, now: datetime, policy: StrategyPolicy,
) -> ActionIntent | None:
    """Sell held goods the current market pays well for."""
    market = _here_market(ship, world, now)
    if market is None or not ship.inventory:
        return None
    task = ship.task
    for good in sorted(ship.inventory):
        listing = market.good(good)
        if listing is None or listing.sell_price <= 0:
            continue
        if task is not None and good == task.good:
            if ship.waypoint != task.destination:
                continue
        else:
            best = best_sell_price(world, ship.system, good, now)
            if listing.sell_price < best * policy.sell_threshold:
                continue
        if not _docked(ship):
            return Dock(reason=f"sell {good}")
        units = min(ship.inventory[good], max(1, listing.trade_volume))
        return SellCargo(good=good, units=units)
    return None


def _buy_units(
    ship: ShipState, listing: MarketTradeGood, wanted: int, credits: int,
) -> int:
    return min(
        ship.cargo_free,
        wanted,
        max(1, listing.trade_volume),
        credits // listing.purchase_price if listing.purchase_price > 0 else 0,
    )


def task_step(
    ship: ShipState, world: WorldView, agent: Agent, now: datetime,
) -> ActionIntent | None:
    """Carry out the route the ship has committed to."""
    task = ship.task
    if task is None:
        return None
    held = ship.units_of(task.good)

    if ship.waypoint == task.source and held < task.units and ship.cargo_free > 0:
        market = _here_market(ship, world, now)
        listing = market.good(task.good) if market else None
        if listing is not None and listing.purchase_price > 0:
            units = _buy_units(ship, listing, task.units - held, agent.credits)
            if units > 0:
                if not _docked(ship):
                    return Dock(reason=f"buy {task.good}")
                return BuyCargo(good=task.good, units=units, task=task)

    if held > 0:
        if ship.waypoint != task.destination:
            return Navigate(target=task.destination, task=task, reason=f"deliver {task.good}")
        return None
    if ship.waypoint != task.source and task.key not in ship.blocked_routes(now):
        return Navigate(target=task.source, task=task, reason=f"buy {task.good}")
    return None


def route_step(
    ship: ShipState, world: WorldView, agent: Agent, now: datetime, policy: StrategyPolicy,
) -> ActionIntent | None:
    """Pick the most profitable route and start flying it."""
    routes = find_routes(ship, world, agent.credits, now, policy)
    if not routes:
        return None
    best = routes[0]
    task = best.task()
    if ship.waypoint != best.source:
        return Navigate(target=best.source, task=task, reason=f"buy {best.good}")
    market = _here_market(ship, world, now)
    listing = market.good(best.good) if market else None
    if listing is None:
        return None
    units = _buy_units(ship, listing, best.units, agent.credits)
    if units <= 0:
        return None
    if not _docked(ship):
        return Dock(reason=f"buy {best.good}")
    return BuyCargo(good=best.good, units=units, task=task)


def extract_step(
    ship: ShipState, world: WorldView,
) -> ActionIntent | None:
    """Mine here if the ship can and the hold has room."""
    if not ship.can_extract or ship.cargo_free <= 0:
        return None
    entry = world.lookup(ship.waypoint)
    if entry is None or not entry.waypoint.is_extractable:
        return None
    if _docked(ship):
        return Orbit(reason="extract")
    return Extract()


def haul_step(
    ship: ShipState, world: WorldView, now: datetime,
) -> ActionIntent | None:
    """Take held cargo to the market that pays most for it."""
    if not ship.inventory:
        return None
    target = best_buyer(ship, world, now)
    if target is None:
        return None
    symbol, good = target
    return Navigate(target=symbol, reason=f"haul {good}")


def deposit_goods(waypoint: Waypoint) -> frozenset[str]:
    """Goods the waypoint's deposit traits can yield."""
    goods: set[str] = set()
    for trait in waypoint.traits:
        goods |= DEPOSIT_GOODS.get(trait.symbol, frozenset())
    return frozenset(goods)


def rank_fields(ship: ShipState, world: WorldView, now: datetime) -> list[str]:
    """Reachable extractable waypoints, best first.

    A field ranks higher the more of its deposit goods some fresh market
    buys; distance breaks ties, then symbol. Stripped fields are skipped.
    """
    wanted: set[str] = set()
    for market in world.markets_in(ship.system, now).values():
        wanted.update(g.symbol for g in market.trade_goods if g.sell_price > 0)

    ranked: list[tuple[int, float, str]] = []
    for entry in world.waypoints_in(ship.system):
        waypoint = entry.waypoint
        if entry.symbol == ship.waypoint or not waypoint.is_extractable:
            continue
        if waypoint.has_trait(STRIPPED_TRAIT) or not reachable(ship, world, entry.symbol):
            continue
        gap = waypoint_gap(world, ship.waypoint, entry.symbol)
        if gap is None:
            continue
        matches = len(deposit_goods(waypoint) & wanted)
        ranked.append((-matches, gap, entry.symbol))
    return [symbol for _, _, symbol in sorted(ranked)]


def go_extract_step(
    ship: ShipState, world: WorldView, now: datetime,
) -> ActionIntent | None:
    """Fly to the field whose deposits best match what markets buy."""
    if not ship.can_extract or ship.cargo_free <= 0:
        return None
    fields = rank_fields(ship, world, now)
    if not fields:
        return None
    return Navigate(target=fields[0], reason="extract")


def explore_step(
    ship: ShipState, world: WorldView, now: datetime,
) -> ActionIntent | None:
    """Visit the nearest waypoint never seen up close or with unknown prices."""
    unexplored = [
        e.symbol for e in world.waypoints_in(ship.system)
        if not world.is_explored(e.symbol, now)
    ]
    target = nearest(ship, world, unexplored)
    if target is None:
        return None
    return Navigate(target=target, reason="explore")


def idle(now: datetime, policy: StrategyPolicy, reason: str = "nothing to do") -> Idle:
    return Idle(until=now + timedelta(seconds=policy.idle_interval), reason=reason)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class TradingStrategy:
    """Hauler policy: sell, follow the route, find a route, mine, explore."""

    name = "trade"

    def __init__(self, policy: StrategyPolicy | None = None) -> None:
        self.policy = policy or StrategyPolicy()

    def decide(
        self, ship: ShipState, world: WorldView, agent: Agent, now: datetime,
    ) -> ActionIntent:
        p = self.policy
        return (
            wait_step(ship, now, p)
            or observe_step(ship, world, now)
            or refuel_step(ship, world, agent, now, p)
            or sell_step(ship, world, now, p)
            or task_step(ship, world, agent, now)
            or route_step(ship, world, agent, now, p)
            or extract_step(ship, world)
            or haul_step(ship, world, now)
            or go_extract_step(ship, world, now)
            or explore_step(ship, world, now)
            or idle(now, p)
        )


class MiningStrategy:
    """Miner policy: sell, extract, haul when full, find an asteroid, explore."""

    name = "mine"

    def __init__(self, policy: StrategyPolicy | None = None) -> None:
        self.policy = policy or StrategyPolicy()

    def decide(
        self, ship: ShipState, world: WorldView, agent: Agent, now: datetime,
    ) -> ActionIntent:
        p = self.policy
        return (
            wait_step(ship, now, p)
            or observe_step(ship, world, now)
            or refuel_step(ship, world, agent, now, p)
            or sell_step(ship, world, now, p)
            or extract_step(ship, world)
            or haul_step(ship, world, now)
            or go_extract_step(ship, world, now)
            or explore_step(ship, world, now)
            or idle(now, p)
        )


STRATEGIES: dict[str, type[TradingStrategy] | type[MiningStrategy]] = {
    TradingStrategy.name: TradingStrategy,
    MiningStrategy.name: MiningStrategy,
}


def get_strategy(name: str, policy: StrategyPolicy | None = None) -> Strategy:
    """Instantiate a policy by name."""
    try:
        cls = STRATEGIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown strategy '{name}' (choose from {', '.join(sorted(STRATEGIES))})",
        ) from None
    return cls(policy)


def assign_policies(
    ships: list[ShipState],
    default: str,
    overrides: dict[str, str] | None = None,
) -> dict[str, str]:
    """Decide which policy each ship runs.

    Manual overrides win. `auto` gives extraction-capable ships the mining
    policy and everyone else the trading policy.
    """
    overrides = overrides or {}
    plan: dict[str, str] = {}
    for ship in ships:
        name = overrides.get(ship.symbol, default)
        if name == "auto":
            name = MiningStrategy.name if ship.can_extract else TradingStrategy.name
        if name not in STRATEGIES:
            logger.warning(
                "[%s] Unknown strategy '%s', falling back to %s",
                ship.symbol, name, TradingStrategy.name,
            )
            name = TradingStrategy.name
        plan[ship.symbol] = name
    return plan
