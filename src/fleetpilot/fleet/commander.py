"""FleetCommander — supervisor for the entire fleet.

One process, one client, one request scheduler, every ship as its own
asyncio task. The commander spawns actors, restarts crashed ones from
fresh API state, picks up newly acquired ships and stops the fleet on a
signal or an authentication failure.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime, timedelta
from typing import Any

import httpx

from fleetpilot.api import agent as agent_api
from fleetpilot.api import contracts as contracts_api
from fleetpilot.api import fleet as fleet_api
from fleetpilot.client import ApiError, ErrorKind, SpaceTradersClient
from fleetpilot.config import Settings
from fleetpilot.fleet.clock import Clock
from fleetpilot.fleet.events import EventType, FleetEvent
from fleetpilot.fleet.scheduler import RequestScheduler
from fleetpilot.fleet.ship_actor import ShipActor
from fleetpilot.fleet.ship_state import ShipState
from fleetpilot.fleet.state import FleetState
from fleetpilot.fleet.strategy import StrategyPolicy, assign_policies
from fleetpilot.fleet.system_intel import load_system_intel
from fleetpilot.fleet.world import WorldView
from fleetpilot.models import Ship

logger = logging.getLogger(__name__)

# Upper bound on one supervision wait
EVENT_TIMEOUT = 30.0


class FatalError(RuntimeError):
    """The fleet cannot continue (bad credentials)."""


class FatalStartupError(FatalError):
    """The fleet could not start."""


def _drain_queue(queue: asyncio.Queue[FleetEvent]) -> list[FleetEvent]:
    """Drain all available events from the queue without blocking."""
    events: list[FleetEvent] = []
    while True:
        try:
            events.append(queue.get_nowait())
        except asyncio.QueueEmpty:
            break
    return events


class FleetCommander:
    """Orchestrates the entire fleet from a single process."""

    def __init__(
        self,
        settings: Settings,
        *,
        token: str | None = None,
        overrides: dict[str, str] | None = None,
        policy: StrategyPolicy | None = None,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._token = token
        self._overrides = overrides or {}  # ship_symbol → strategy name
        self._policy = policy or StrategyPolicy(idle_interval=settings.idle_interval)
        self._transport = transport
        self._scheduler = RequestScheduler(
            rate=settings.rate_limit,
            burst=settings.burst,
            max_in_flight=settings.max_in_flight,
            cooldown_base=settings.rate_limit_cooldown,
            cooldown_max=settings.rate_limit_cooldown_max,
        )
        self.state = FleetState(
            world=WorldView(market_max_age=settings.market_max_age),
            clock=clock or Clock(),
        )
        self.fatal_reason: str | None = None
        self._last_sync: datetime | None = None
        # Delayed relaunches of crashed actors
        self._restarts: set[asyncio.Task[None]] = set()

    @property
    def scheduler(self) -> RequestScheduler:
        return self._scheduler

    def make_client(self) -> SpaceTradersClient:
        return SpaceTradersClient(
            self.settings,
            scheduler=self._scheduler,
            token=self._token,
            transport=self._transport,
        )

    async def run(self) -> None:
        """Main entry point — run until a shutdown signal or a fatal error."""
        state = self.state
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, state.shutdown.set)

        try:
            async with self.make_client() as client:
                await self.start(client)
                if not state.actors:
                    logger.error("No ships found! Exiting.")
                    return
                await self.supervise(client)

                logger.info("")
                logger.info("Shutting down fleet...")
                await self.stop()
                self._log_summary()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self._scheduler.stop()

        if self.fatal_reason is not None:
            raise FatalError(self.fatal_reason)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self, client: SpaceTradersClient) -> None:
        """Fetch the agent and the fleet, then spawn one actor per ship."""
        state = self.state
        try:
            ag = await agent_api.get_agent(client)
        except ApiError as exc:
            if exc.kind == ErrorKind.UNAUTHORIZED:
                raise FatalStartupError(f"Agent token rejected: {exc}") from exc
            raise
        state.update_agent(ag)

        logger.info("=" * 70)
        logger.info("FLEET COMMANDER ONLINE")
        logger.info(
            "Agent: %s | Credits: %s | Ships: %d",
            ag.symbol, f"{ag.credits:,}", ag.ship_count,
        )
        logger.info("=" * 70)

        await self._report_contracts(client)

        ships = await self._discover_fleet(client)
        now = state.clock.now()
        for system in sorted({s.nav.system_symbol for s in ships}):
            await load_system_intel(client, system, state, now)

        plan = assign_policies(
            [ShipState.from_ship(s) for s in ships], self.settings.strategy, self._overrides,
        )
        for ship in ships:
            self.add_ship(client, ship, plan[ship.symbol])
        self._last_sync = now
        self._log_fleet_status()

    def add_ship(
        self,
        client: SpaceTradersClient,
        ship: Ship,
        strategy: str | None = None,
    ) -> ShipActor | None:
        """Spawn an actor for a ship. Returns None if one is already running."""
        existing = self.state.actors.get(ship.symbol)
        if existing is not None and existing.is_running:
            return None
        if strategy is None:
            strategy = assign_policies(
                [ShipState.from_ship(ship)], self.settings.strategy, self._overrides,
            )[ship.symbol]
        actor = ShipActor(symbol=ship.symbol, strategy=strategy, policy=self._policy)
        self.state.actors[ship.symbol] = actor
        actor.launch(client, self.state)
        return actor

    async def stop(self) -> None:
        """Ask every actor to finish its current action and wait for them."""
        self.state.shutdown.set()
        if self._restarts:
            await asyncio.gather(*self._restarts, return_exceptions=True)
        tasks = [a.task for a in self.state.actors.values() if a.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _discover_fleet(self, client: SpaceTradersClient) -> list[Ship]:
        logger.info("Discovering fleet...")
        ships = await fleet_api.list_ships(client)
        for ship in ships:
            logger.info(
                "  %s at %s (%s)",
                ship.symbol, ship.nav.waypoint_symbol, ship.nav.status.value,
            )
        logger.info("Discovered %d ships", len(ships))
        return ships

    async def _report_contracts(self, client: SpaceTradersClient) -> None:
        try:
            contracts = await contracts_api.list_contracts(client)
        except ApiError as exc:
            logger.warning("Could not list contracts: %s", exc)
            return
        open_contracts = [c for c in contracts if not c.fulfilled]
        for c in open_contracts:
            payment = c.terms.payment.on_accepted + c.terms.payment.on_fulfilled
            goods = ", ".join(
                f"{d.units_fulfilled}/{d.units_required} {d.trade_symbol}"
                for d in c.terms.deliver
            )
            logger.info(
                "  Contract %s (%s%s): %s for %s credits",
                c.id, c.type.value, ", accepted" if c.accepted else "",
                goods or "no deliveries", f"{payment:,}",
            )

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def _next_event(self, timeout: float) -> FleetEvent | None:
        """Wait for an event, the shutdown signal or the timeout."""
        state = self.state
        getter = asyncio.ensure_future(state.event_queue.get())
        stopper = asyncio.ensure_future(state.shutdown.wait())
        try:
            await asyncio.wait(
                {getter, stopper}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stopper.cancel()
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        return None

    async def supervise(self, client: SpaceTradersClient) -> None:
        """React to fleet events until shutdown or until no actor remains."""
        state = self.state
        while not state.shutdown.is_set() and state.actors:
            event = await self._next_event(EVENT_TIMEOUT)

            batch: list[FleetEvent] = []
            if event is not None:
                batch.append(event)
            batch.extend(_drain_queue(state.event_queue))

            for ev in batch:
                logger.info("EVENT: %s", ev)
                try:
                    await self._handle_event(client, ev)
                except ApiError as exc:
                    if exc.kind == ErrorKind.UNAUTHORIZED:
                        self._fatal(f"Authentication failed handling {ev}: {exc}")
                    else:
                        logger.warning("Could not handle %s: %s", ev, exc)
                if state.shutdown.is_set():
                    break

            if not state.shutdown.is_set() and self._sync_due():
                await self._sync_fleet(client)

    async def _handle_event(self, client: SpaceTradersClient, ev: FleetEvent) -> None:
        state = self.state
        if ev.type == EventType.AUTH_FAILED or (
            ev.type == EventType.ACTOR_CRASHED
            and ev.data.get("error_kind") == ErrorKind.UNAUTHORIZED.value
        ):
            self._fatal(f"Authentication failed for {ev.ship_symbol}: {ev.data.get('error', '')}")
        elif ev.type == EventType.ACTOR_CRASHED:
            await self._handle_crash(client, ev.ship_symbol, ev.data)
        elif ev.type == EventType.ACTOR_ENDED:
            actor = state.actors.get(ev.ship_symbol)
            if actor is not None and not state.shutdown.is_set():
                logger.info("[%s] Actor ended", ev.ship_symbol)
                state.actors.pop(ev.ship_symbol, None)
        elif ev.type == EventType.SHIP_LOST:
            logger.warning("[%s] Removed from the fleet", ev.ship_symbol)
            state.actors.pop(ev.ship_symbol, None)
        elif ev.type == EventType.SHIP_ACQUIRED:
            ship = ev.data.get("ship")
            if ship is None:
                ship = await fleet_api.get_ship(client, ev.ship_symbol)
            await self._acquire(client, ship)
        elif ev.type == EventType.TRADE_COMPLETED:
            logger.info(
                "[%s] Trade complete: %s %s→%s, revenue %s (expected profit %s)",
                ev.ship_symbol, ev.data.get("good"), ev.data.get("source"),
                ev.data.get("destination"), ev.data.get("revenue"),
                ev.data.get("expected_profit"),
            )
        elif ev.type == EventType.SHIP_DEGRADED:
            logger.error("[%s] Ship degraded: %s", ev.ship_symbol, ev.data.get("error", ""))

    def _fatal(self, reason: str) -> None:
        logger.critical("FATAL: %s, stopping fleet", reason)
        self.fatal_reason = reason
        self.state.shutdown.set()

    async def _handle_crash(
        self,
        client: SpaceTradersClient,
        ship_symbol: str,
        data: dict[str, Any],
    ) -> None:
        """Schedule a relaunch of a crashed actor after its backoff."""
        actor = self.state.actors.get(ship_symbol)
        if actor is None:
            return

        logger.error(
            "[%s] Actor crashed: %s (%s)",
            ship_symbol, data.get("error", "unknown"), data.get("error_type", ""),
        )

        schedule = self.settings.restart_backoff or (10.0,)
        backoff = schedule[min(actor.restart_count, len(schedule) - 1)]
        logger.info("[%s] Restarting in %ds...", ship_symbol, backoff)
        restart = asyncio.create_task(
            self._restart_later(client, actor, backoff), name=f"restart-{ship_symbol}",
        )
        self._restarts.add(restart)
        restart.add_done_callback(self._restarts.discard)

    async def _restart_later(
        self, client: SpaceTradersClient, actor: ShipActor, backoff: float,
    ) -> None:
        """Wait out the backoff, then relaunch from fresh API state."""
        state = self.state
        if await state.clock.wait(backoff, state.shutdown):
            return
        if state.actors.get(actor.symbol) is not actor or actor.is_running:
            return
        actor.ship = None
        actor.consecutive_failures = 0
        actor.relaunch(client, state)

    def _sync_due(self) -> bool:
        if self._last_sync is None:
            return True
        elapsed = self.state.clock.now() - self._last_sync
        return elapsed >= timedelta(seconds=self.settings.fleet_sync_interval)

    async def _sync_fleet(self, client: SpaceTradersClient) -> None:
        """Announce ships the fleet does not command yet."""
        state = self.state
        self._last_sync = state.clock.now()
        try:
            ships = await fleet_api.list_ships(client)
            state.update_agent(await agent_api.get_agent(client))
        except ApiError as exc:
            if exc.kind == ErrorKind.UNAUTHORIZED:
                self._fatal(f"Authentication failed during fleet sync: {exc}")
                return
            logger.warning("Fleet sync failed: %s", exc)
            return
        for ship in ships:
            if ship.symbol not in state.actors:
                logger.info("New ship %s at %s", ship.symbol, ship.nav.waypoint_symbol)
                state.emit(FleetEvent(
                    type=EventType.SHIP_ACQUIRED, ship_symbol=ship.symbol, data={"ship": ship},
                ))

    async def _acquire(self, client: SpaceTradersClient, ship: Ship) -> ShipActor | None:
        """Load the ship's system and spawn its actor.

        A failed system load skips the ship; the next fleet sync offers it again.
        """
        state = self.state
        try:
            await load_system_intel(client, ship.nav.system_symbol, state, state.clock.now())
        except ApiError as exc:
            if exc.kind == ErrorKind.UNAUTHORIZED:
                raise
            logger.warning("[%s] Not added, system load failed: %s", ship.symbol, exc)
            return None
        return self.add_ship(client, ship)

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def _log_fleet_status(self) -> None:
        actors = self.state.actors
        logger.info("")
        logger.info("--- %d actors active ---", len(actors))
        for symbol in sorted(actors):
            actor = actors[symbol]
            ship = actor.ship
            where = ship.waypoint if ship else "?"
            phase = actor.phase.value if actor.phase else "starting"
            logger.info("  [%s] %s at %s (%s)", symbol, actor.strategy.upper(), where, phase)
        logger.info("")

    def _log_summary(self) -> None:
        ag = self.state.agent
        logger.info("")
        logger.info("=" * 70)
        logger.info("FLEET COMMANDER OFFLINE")
        if ag is not None:
            logger.info("Credits: %s", f"{ag.credits:,}")
        for symbol in sorted(self.state.actors):
            actor = self.state.actors[symbol]
            logger.info(
                "  [%s] %s (restarts: %d)", symbol, actor.strategy, actor.restart_count,
            )
        logger.info("=" * 70)
