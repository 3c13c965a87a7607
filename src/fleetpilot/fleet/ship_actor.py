"""ShipActor — one asyncio task driving one ship through its state machine.

Each cycle the actor settles any finished transit, asks its strategy for
the next intent, checks the intent against the ship's phase and executes
it. Transit and cooldown are waited out on the clock, never polled. The
actor is the only writer of its ShipState and publishes every waypoint or
market it sees into the shared world view.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from fleetpilot.api import agent as agent_api
from fleetpilot.api import fleet as fleet_api
from fleetpilot.api import mining, navigation
from fleetpilot.client import ApiError, ErrorKind, SpaceTradersClient
from fleetpilot.fleet.events import EventType, FleetEvent
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
    describe,
)
from fleetpilot.fleet.ship_state import ShipPhase, ShipState
from fleetpilot.fleet.state import FleetState
from fleetpilot.fleet.strategy import StrategyPolicy, get_strategy
from fleetpilot.fleet.system_intel import load_system_intel
from fleetpilot.fleet.world import WorldView
from fleetpilot.models import Cooldown, ShipNavStatus

logger = logging.getLogger(__name__)


def check_intent(
    ship: ShipState, world: WorldView, intent: ActionIntent, now: datetime,
) -> str | None:
    """Why `intent` cannot run in the ship's current phase, or None if it can."""
    if isinstance(intent, Idle):
        return None
    phase = ship.phase(now)
    if phase in (ShipPhase.IN_TRANSIT, ShipPhase.ON_COOLDOWN):
        return f"ship is {phase.value}"

    if isinstance(intent, Navigate):
        if intent.target == ship.waypoint:
            return f"already at {intent.target}"
        return None
    if isinstance(intent, Dock):
        return "already docked" if phase == ShipPhase.DOCKED else None
    if isinstance(intent, Orbit):
        return "already in orbit" if phase == ShipPhase.ORBITING else None
    if isinstance(intent, Extract):
        if phase != ShipPhase.ORBITING:
            return "must be in orbit to extract"
        if ship.cargo_free <= 0:
            return "cargo hold is full"
        return None
    if isinstance(intent, (Refuel, SellCargo, BuyCargo)):
        if phase != ShipPhase.DOCKED:
            return "must be docked to trade"
        entry = world.lookup(ship.waypoint)
        if entry is not None and not entry.has_market:
            return f"no market at {ship.waypoint}"
        if isinstance(intent, SellCargo):
            if intent.units <= 0 or ship.units_of(intent.good) < intent.units:
                return f"holding {ship.units_of(intent.good)} {intent.good}, cannot sell {intent.units}"
        if isinstance(intent, BuyCargo):
            if intent.units <= 0 or ship.cargo_free < intent.units:
                return f"{ship.cargo_free} free cargo, cannot buy {intent.units}"
        return None
    raise TypeError(f"Unknown intent {intent!r}")


@dataclass
class ShipActor:
    """Per-ship task wrapper plus the ship's decision loop."""

    symbol: str
    strategy: str
    policy: StrategyPolicy = field(default_factory=StrategyPolicy)
    ship: ShipState | None = None
    task: asyncio.Task[None] | None = field(default=None, repr=False)
    restart_count: int = 0
    consecutive_failures: int = 0
    # Last phase the loop was in, for status reporting
    phase: ShipPhase | None = None

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def launch(
        self,
        client: SpaceTradersClient,
        state: FleetState,
    ) -> asyncio.Task[None]:
        """Create and start the asyncio task for this ship."""
        self.task = asyncio.create_task(
            self.run(client, state),
            name=f"{self.strategy}-{self.symbol}",
        )
        # Emit ACTOR_CRASHED or ACTOR_ENDED when the task finishes
        self.task.add_done_callback(self._make_done_callback(state))
        logger.info(
            "[%s] Launched %s actor (task: %s)",
            self.symbol, self.strategy, self.task.get_name(),
        )
        return self.task

    def relaunch(
        self,
        client: SpaceTradersClient,
        state: FleetState,
    ) -> asyncio.Task[None]:
        """Restart the actor after a crash; state is re-fetched from the API."""
        self.restart_count += 1
        logger.info(
            "[%s] Restarting %s actor (attempt %d)",
            self.symbol, self.strategy, self.restart_count,
        )
        return self.launch(client, state)

    def _make_done_callback(self, state: FleetState) -> Any:
        symbol = self.symbol

        def _on_done(task: asyncio.Task[None]) -> None:
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                data: dict[str, Any] = {"error": str(exc), "error_type": type(exc).__name__}
                if isinstance(exc, ApiError):
                    data["error_kind"] = exc.kind.value
                state.emit(FleetEvent(
                    type=EventType.ACTOR_CRASHED, ship_symbol=symbol, data=data,
                ))
            else:
                state.emit(FleetEvent(type=EventType.ACTOR_ENDED, ship_symbol=symbol))

        return _on_done

    # ------------------------------------------------------------------
    # Decision loop
    # ------------------------------------------------------------------

    async def run(self, client: SpaceTradersClient, state: FleetState) -> None:
        clock = state.clock
        settings = client.settings
        strategy = get_strategy(self.strategy, self.policy)

        if not await self._sync(client, state):
            return
        ship = self.ship
        assert ship is not None
        await load_system_intel(client, ship.system, state, clock.now())
        state.world.mark_visited(ship.waypoint)
        if state.agent is None:
            state.update_agent(await agent_api.get_agent(client))

        while not state.shutdown.is_set():
            now = clock.now()
            if ship.settle(now):
                state.world.mark_visited(ship.waypoint)
                logger.info("[%s] Arrived at %s", self.symbol, ship.waypoint)

            task: TradeTask | None = None
            if self._market_unread(state.world, now):
                label = "read market"
                step = self._observe_market(client, state)
            else:
                assert state.agent is not None
                self.phase = ShipPhase.AWAITING_DECISION
                intent = strategy.decide(ship, state.world, state.agent, now)
                self.phase = ship.phase(now)

                if isinstance(intent, Idle):
                    logger.debug("[%s] %s", self.symbol, describe(intent))
                    if await clock.wait_until(intent.until, state.shutdown):
                        break
                    continue

                problem = check_intent(ship, state.world, intent, now)
                if problem is not None:
                    wake = ship.busy_until(now) or now + timedelta(seconds=settings.error_backoff)
                    logger.warning(
                        "[%s] Rejected %s: %s", self.symbol, describe(intent), problem,
                    )
                    if await clock.wait_until(wake, state.shutdown):
                        break
                    continue

                label = describe(intent)
                logger.info("[%s] %s", self.symbol, label)
                if isinstance(intent, (Navigate, BuyCargo)):
                    task = intent.task
                step = self._execute(intent, client, state)

            try:
                await step
            except (KeyError, TypeError, ValidationError) as exc:
                # A 2xx body missing the fields the action reads
                error = ApiError(
                    f"Malformed response ({type(exc).__name__}: {exc})",
                    code=0, kind=ErrorKind.MALFORMED,
                )
                if not await self._on_error(error, label, task, client, state):
                    break
            except ApiError as exc:
                if not await self._on_error(exc, label, task, client, state):
                    break
            else:
                self.consecutive_failures = 0
            self.phase = ship.phase(clock.now())

        logger.info("[%s] Actor stopped", self.symbol)

    def _market_unread(self, world: WorldView, now: datetime) -> bool:
        """Docked at a marketplace whose prices are unknown or stale."""
        ship = self.ship
        assert ship is not None
        if ship.nav_status != ShipNavStatus.DOCKED or ship.is_degraded(now):
            return False
        entry = world.lookup(ship.waypoint)
        return entry is not None and entry.has_market and world.market_for(ship.waypoint, now) is None

    async def _sync(self, client: SpaceTradersClient, state: FleetState) -> bool:
        """Re-read the ship from the API. Returns False if the ship is gone."""
        try:
            record = await fleet_api.get_ship(client, self.symbol)
        except ApiError as exc:
            if exc.kind == ErrorKind.NOT_FOUND:
                logger.error("[%s] Ship no longer exists: %s", self.symbol, exc)
                state.emit(FleetEvent(type=EventType.SHIP_LOST, ship_symbol=self.symbol))
                return False
            raise
        now = state.clock.now()
        if self.ship is None:
            self.ship = ShipState.from_ship(record, now)
        else:
            self.ship.refresh(record, now)
        return True

    async def _sync_cooldown(
        self, exc: ApiError, client: SpaceTradersClient, state: FleetState,
    ) -> None:
        """Take the cooldown from the error payload, or ask the API for it."""
        ship = self.ship
        assert ship is not None
        raw = exc.data.get("cooldown")
        if isinstance(raw, dict):
            cooldown = Cooldown.model_validate(raw)
        else:
            cooldown = await fleet_api.get_cooldown(client, self.symbol)
        ship.apply_cooldown(cooldown, state.clock.now())

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(
        self, intent: ActionIntent, client: SpaceTradersClient, state: FleetState,
    ) -> None:
        ship = self.ship
        assert ship is not None
        world = state.world
        clock = state.clock

        if isinstance(intent, Navigate):
            if ship.nav_status == ShipNavStatus.DOCKED:
                ship.apply_nav(await fleet_api.orbit(client, self.symbol))
            nav, fuel = await fleet_api.navigate(client, self.symbol, intent.target)
            ship.apply_nav(nav)
            ship.apply_fuel(fuel)
            ship.task = intent.task
            if ship.arrival is not None:
                eta = (ship.arrival - clock.now()).total_seconds()
                logger.info(
                    "[%s] In transit to %s, arriving in %.0fs (fuel %d/%d)",
                    self.symbol, intent.target, max(0.0, eta), ship.fuel, ship.fuel_capacity,
                )

        elif isinstance(intent, Dock):
            ship.apply_nav(await fleet_api.dock(client, self.symbol))
            entry = world.lookup(ship.waypoint)
            if entry is not None and entry.has_market:
                await self._observe_market(client, state)

        elif isinstance(intent, Orbit):
            ship.apply_nav(await fleet_api.orbit(client, self.symbol))

        elif isinstance(intent, Extract):
            extraction, cooldown, cargo = await mining.extract(client, self.symbol)
            ship.set_cargo(cargo)
            ship.apply_cooldown(cooldown, clock.now())
            logger.info(
                "[%s] Extracted %d %s (cargo %d/%d, cooldown %ds)",
                self.symbol, extraction.yield_.units, extraction.yield_.symbol,
                ship.cargo_units, ship.cargo_capacity, cooldown.remaining_seconds,
            )

        elif isinstance(intent, Refuel):
            agent, fuel, tx = await fleet_api.refuel(client, self.symbol)
            state.update_agent(agent)
            ship.apply_fuel(fuel)
            logger.info(
                "[%s] Refueled to %d/%d (%d credits)",
                self.symbol, fuel.current, fuel.capacity, tx.total_price if tx else 0,
            )

        elif isinstance(intent, BuyCargo):
            agent, cargo, tx = await fleet_api.purchase_cargo(
                client, self.symbol, intent.good, intent.units,
            )
            state.update_agent(agent)
            ship.set_cargo(cargo)
            ship.task = intent.task
            logger.info(
                "[%s] Bought %d %s @ %d = %d (credits: %d)",
                self.symbol, tx.units, tx.trade_symbol, tx.price_per_unit,
                tx.total_price, agent.credits,
            )
            await self._observe_market(client, state)

        elif isinstance(intent, SellCargo):
            agent, cargo, tx = await fleet_api.sell_cargo(
                client, self.symbol, intent.good, intent.units,
            )
            state.update_agent(agent)
            ship.set_cargo(cargo)
            logger.info(
                "[%s] Sold %d %s @ %d = %d (credits: %d)",
                self.symbol, tx.units, tx.trade_symbol, tx.price_per_unit,
                tx.total_price, agent.credits,
            )
            task = ship.task
            if task is not None and task.good == intent.good and ship.units_of(task.good) == 0:
                ship.task = None
                state.emit(FleetEvent(
                    type=EventType.TRADE_COMPLETED,
                    ship_symbol=self.symbol,
                    data={
                        "good": task.good,
                        "source": task.source,
                        "destination": task.destination,
                        "revenue": tx.total_price,
                        "expected_profit": task.expected_profit,
                    },
                ))
            await self._observe_market(client, state)

        else:
            raise TypeError(f"Unknown intent {intent!r}")

    async def _observe_market(self, client: SpaceTradersClient, state: FleetState) -> None:
        """Drop stale prices for the current waypoint and fetch fresh ones."""
        ship = self.ship
        assert ship is not None
        state.world.invalidate_market(ship.waypoint)
        market = await navigation.get_market(client, ship.system, ship.waypoint)
        state.world.observe_market(market, state.clock.now())

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    async def _on_error(
        self,
        exc: ApiError,
        label: str,
        task: TradeTask | None,
        client: SpaceTradersClient,
        state: FleetState,
    ) -> bool:
        """React to a failed action. Returns False when the actor must exit."""
        ship = self.ship
        assert ship is not None
        clock = state.clock
        settings = client.settings
        kind = exc.kind
        logger.warning(
            "[%s] %s failed (%s, code %d): %s",
            self.symbol, label, kind.value, exc.code, exc,
        )

        if kind == ErrorKind.UNAUTHORIZED:
            state.emit(FleetEvent(
                type=EventType.AUTH_FAILED, ship_symbol=self.symbol, data={"error": str(exc)},
            ))
            return False

        if kind in (ErrorKind.CARGO_FULL, ErrorKind.INSUFFICIENT_FUNDS):
            task = task or ship.task
            if task is not None:
                until = clock.now() + timedelta(seconds=settings.failed_route_ttl)
                ship.remember_failed_route(task.key, until)
                logger.info(
                    "[%s] Route %s %s→%s blocked until %s",
                    self.symbol, task.good, task.source, task.destination,
                    f"{until:%H:%M:%S}",
                )
            ship.task = None
            state.update_agent(await agent_api.get_agent(client))
            return await self._sync(client, state)

        if kind in (
            ErrorKind.COOLDOWN, ErrorKind.INVALID_STATE, ErrorKind.NOT_FOUND, ErrorKind.MALFORMED,
        ):
            self.consecutive_failures += 1
            if not await self._sync(client, state):
                return False
            if kind == ErrorKind.COOLDOWN:
                await self._sync_cooldown(exc, client, state)
            if self.consecutive_failures >= settings.degraded_threshold:
                ship.degraded_until = clock.now() + timedelta(seconds=settings.degraded_cooldown)
                self.consecutive_failures = 0
                logger.error(
                    "[%s] Degraded after repeated failures, parked until %s",
                    self.symbol, f"{ship.degraded_until:%H:%M:%S}",
                )
                state.emit(FleetEvent(
                    type=EventType.SHIP_DEGRADED, ship_symbol=self.symbol,
                    data={"error": str(exc)},
                ))
            return True

        # TRANSIENT after retries were exhausted, or anything unclassified
        return not await clock.wait(settings.error_backoff, state.shutdown)
