"""In-memory SpaceTraders game served through httpx.MockTransport.

Just enough of the API for the fleet to play: agent, ships, navigation,
extraction, markets, refuelling. Arrivals and cooldowns follow the test's
fake clock. Responses can be overridden per call with `inject`.
"""

from __future__ import annotations

import json
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

import httpx

from fleetpilot.router import travel_time

SYSTEM = "X1-TEST"


def wp(name: str) -> str:
    return f"{SYSTEM}-{name}"


def good(
    symbol: str,
    purchase: int,
    sell: int,
    *,
    volume: int = 10,
    supply: str = "MODERATE",
    type_: str = "EXCHANGE",
) -> dict[str, Any]:
    """A market trade-good listing as the API returns it."""
    return {
        "symbol": symbol,
        "type": type_,
        "tradeVolume": volume,
        "supply": supply,
        "activity": "WEAK",
        "purchasePrice": purchase,
        "sellPrice": sell,
    }


def error_body(code: int, message: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "data": data or {}}}


@dataclass
class FakeShip:
    symbol: str
    waypoint: str
    status: str = "DOCKED"
    cargo_capacity: int = 40
    inventory: dict[str, int] = field(default_factory=dict)
    fuel: int = 400
    fuel_capacity: int = 400
    speed: int = 30
    miner: bool = False
    origin: str = ""
    arrival: datetime | None = None
    departure: datetime | None = None
    cooldown_until: datetime | None = None

    @property
    def cargo_units(self) -> int:
        return sum(self.inventory.values())


class FakeGame:
    """Game state plus a request handler for httpx.MockTransport."""

    def __init__(self, now: Callable[[], datetime], credits: int = 1000) -> None:
        self.now = now
        self.credits = credits
        self.agent_symbol = "TESTER"
        self.waypoints: dict[str, dict[str, Any]] = {}
        self.markets: dict[str, list[dict[str, Any]]] = {}
        self.ships: dict[str, FakeShip] = {}
        self.yields: dict[str, str] = {}
        self.extract_units = 3
        self.extract_cooldown = 70
        self.calls: list[tuple[str, str]] = []
        self.call_times: list[tuple[str, str, datetime]] = []
        self._injected: dict[tuple[str, str], deque[httpx.Response]] = {}

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def add_waypoint(
        self,
        name: str,
        x: int,
        y: int,
        *,
        type_: str = "PLANET",
        market: list[dict[str, Any]] | None = None,
        yields: str | None = None,
    ) -> str:
        symbol = wp(name)
        traits = [{"symbol": "MARKETPLACE"}] if market is not None else []
        self.waypoints[symbol] = {
            "symbol": symbol, "type": type_, "systemSymbol": SYSTEM,
            "x": x, "y": y, "traits": traits,
        }
        if market is not None:
            self.markets[symbol] = market
        if yields is not None:
            self.yields[symbol] = yields
        return symbol

    def add_ship(self, symbol: str, waypoint: str, **kwargs: Any) -> FakeShip:
        ship = FakeShip(symbol=symbol, waypoint=waypoint, origin=waypoint, **kwargs)
        self.ships[symbol] = ship
        return ship

    def inject(self, method: str, path: str, response: httpx.Response, times: int = 1) -> None:
        """Serve `response` for the next `times` calls to METHOD path."""
        queue = self._injected.setdefault((method, path), deque())
        for _ in range(times):
            queue.append(response)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def count(self, method: str, suffix: str) -> int:
        return sum(1 for m, p in self.calls if m == method and p.endswith(suffix))

    def actions(self, ship: str) -> list[str]:
        """Action names (navigate, purchase, …) posted for a ship, in order."""
        prefix = f"/v2/my/ships/{ship}/"
        return [p[len(prefix):] for m, p in self.calls if m == "POST" and p.startswith(prefix)]

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _settle(self, ship: FakeShip) -> None:
        if ship.status == "IN_TRANSIT" and ship.arrival and self.now() >= ship.arrival:
            ship.status = "IN_ORBIT"

    def _route_wp(self, symbol: str) -> dict[str, Any]:
        w = self.waypoints[symbol]
        return {k: w[k] for k in ("symbol", "type", "systemSymbol", "x", "y")}

    def _nav(self, ship: FakeShip) -> dict[str, Any]:
        self._settle(ship)
        now = self.now()
        return {
            "systemSymbol": SYSTEM,
            "waypointSymbol": ship.waypoint,
            "route": {
                "origin": self._route_wp(ship.origin),
                "destination": self._route_wp(ship.waypoint),
                "departureTime": (ship.departure or now).isoformat(),
                "arrival": (ship.arrival or now).isoformat(),
            },
            "status": ship.status,
            "flightMode": "CRUISE",
        }

    def _cargo(self, ship: FakeShip) -> dict[str, Any]:
        return {
            "capacity": ship.cargo_capacity,
            "units": ship.cargo_units,
            "inventory": [
                {"symbol": s, "name": s, "description": "", "units": u}
                for s, u in sorted(ship.inventory.items())
            ],
        }

    def _fuel(self, ship: FakeShip) -> dict[str, Any]:
        return {"current": ship.fuel, "capacity": ship.fuel_capacity}

    def _cooldown(self, ship: FakeShip) -> dict[str, Any]:
        now = self.now()
        remaining = 0
        if ship.cooldown_until and ship.cooldown_until > now:
            remaining = math.ceil((ship.cooldown_until - now).total_seconds())
        return {
            "shipSymbol": ship.symbol,
            "totalSeconds": self.extract_cooldown,
            "remainingSeconds": remaining,
            "expiration": ship.cooldown_until.isoformat() if remaining else None,
        }

    def _ship(self, ship: FakeShip) -> dict[str, Any]:
        mounts = [{"symbol": "MOUNT_MINING_LASER_I"}] if ship.miner else []
        return {
            "symbol": ship.symbol,
            "registration": {
                "name": ship.symbol, "factionSymbol": "COSMIC",
                "role": "EXCAVATOR" if ship.miner else "HAULER",
            },
            "nav": self._nav(ship),
            "engine": {"symbol": "ENGINE_ION_DRIVE_I", "name": "Ion drive", "speed": ship.speed},
            "mounts": mounts,
            "cargo": self._cargo(ship),
            "fuel": self._fuel(ship),
            "cooldown": self._cooldown(ship),
        }

    def _agent(self) -> dict[str, Any]:
        return {
            "accountId": "acc-1",
            "symbol": self.agent_symbol,
            "headquarters": wp("A"),
            "credits": self.credits,
            "startingFaction": "COSMIC",
            "shipCount": len(self.ships),
        }

    def _market(self, symbol: str) -> dict[str, Any]:
        return {
            "symbol": symbol,
            "exports": [], "imports": [], "exchange": [],
            "tradeGoods": self.markets[symbol],
        }

    def _transaction(self, ship: FakeShip, kind: str, good_: str, units: int, price: int) -> dict[str, Any]:
        return {
            "waypointSymbol": ship.waypoint,
            "shipSymbol": ship.symbol,
            "tradeSymbol": good_,
            "type": kind,
            "units": units,
            "pricePerUnit": price,
            "totalPrice": units * price,
            "timestamp": self.now().isoformat(),
        }

    # ------------------------------------------------------------------
    # Handler
    # ------------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        self.calls.append((method, path))
        self.call_times.append((method, path, self.now()))

        queue = self._injected.get((method, path.removeprefix("/v2")))
        if queue:
            canned = queue.popleft()
            return httpx.Response(canned.status_code, headers=canned.headers, content=canned.content)

        body = json.loads(request.content) if request.content else {}
        parts = path.removeprefix("/v2/").split("/")
        try:
            return self._route(method, parts, body, request)
        except KeyError as exc:
            return httpx.Response(404, json=error_body(404, f"Not found: {exc}"))

    def _ok(self, data: Any, status: int = 200) -> httpx.Response:
        return httpx.Response(status, json={"data": data})

    def _page(self, items: list[Any], request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", 1))
        limit = int(request.url.params.get("limit", 20))
        chunk = items[(page - 1) * limit: page * limit]
        return httpx.Response(200, json={
            "data": chunk, "meta": {"total": len(items), "page": page, "limit": limit},
        })

    def _error(self, status: int, code: int, message: str, data: dict[str, Any] | None = None) -> httpx.Response:
        return httpx.Response(status, json=error_body(code, message, data))

    def _route(
        self, method: str, parts: list[str], body: dict[str, Any], request: httpx.Request,
    ) -> httpx.Response:
        if parts == ["my", "agent"]:
            return self._ok(self._agent())
        if parts == ["register"] and method == "POST":
            self.agent_symbol = body["symbol"]
            return self._ok({"token": "fresh-token", "agent": self._agent()}, status=201)
        if parts == ["my", "contracts"]:
            return self._page([], request)
        if parts == ["my", "ships"]:
            return self._page([self._ship(s) for _, s in sorted(self.ships.items())], request)
        if parts[:2] == ["my", "ships"]:
            ship = self.ships[parts[2]]
            self._settle(ship)
            if len(parts) == 3:
                return self._ok(self._ship(ship))
            action = parts[3]
            if action == "cooldown":
                cooldown = self._cooldown(ship)
                if not cooldown["remainingSeconds"]:
                    return httpx.Response(204)
                return self._ok(cooldown)
            return self._ship_action(ship, action, body)
        if parts[0] == "systems" and parts[2] == "waypoints":
            if len(parts) == 3:
                items = [self.waypoints[s] for s in sorted(self.waypoints)]
                return self._page(items, request)
            symbol = parts[3]
            if len(parts) == 4:
                return self._ok(self.waypoints[symbol])
            if parts[4] == "market":
                return self._ok(self._market(symbol))
        return self._error(404, 404, f"No route for {method} /{'/'.join(parts)}")

    def _ship_action(self, ship: FakeShip, action: str, body: dict[str, Any]) -> httpx.Response:
        now = self.now()
        if ship.status == "IN_TRANSIT":
            return self._error(400, 4214, "Ship is in transit")

        if action == "orbit":
            ship.status = "IN_ORBIT"
            return self._ok({"nav": self._nav(ship)})
        if action == "dock":
            ship.status = "DOCKED"
            return self._ok({"nav": self._nav(ship)})

        if action == "navigate":
            if ship.status != "IN_ORBIT":
                return self._error(400, 4236, "Ship must be in orbit")
            target = body["waypointSymbol"]
            if target == ship.waypoint:
                return self._error(400, 4204, "Already at destination")
            a, b = self.waypoints[ship.waypoint], self.waypoints[target]
            dist = math.hypot(b["x"] - a["x"], b["y"] - a["y"])
            cost = max(1, math.ceil(dist))
            if ship.fuel_capacity and cost > ship.fuel:
                return self._error(400, 4203, "Insufficient fuel")
            if ship.fuel_capacity:
                ship.fuel -= cost
            ship.origin = ship.waypoint
            ship.waypoint = target
            ship.status = "IN_TRANSIT"
            ship.departure = now
            ship.arrival = now + timedelta(seconds=travel_time(dist, ship.speed))
            return self._ok({"nav": self._nav(ship), "fuel": self._fuel(ship)})

        if action == "extract":
            if ship.cooldown_until and ship.cooldown_until > now:
                return self._error(
                    409, 4000, "Ship action is still on cooldown",
                    {"cooldown": self._cooldown(ship)},
                )
            if ship.status != "IN_ORBIT":
                return self._error(400, 4236, "Ship must be in orbit")
            if ship.cargo_units >= ship.cargo_capacity:
                return self._error(400, 4228, "Cargo full")
            yielded = self.yields.get(ship.waypoint)
            if yielded is None:
                return self._error(400, 4205, "Cannot extract here")
            units = min(self.extract_units, ship.cargo_capacity - ship.cargo_units)
            ship.inventory[yielded] = ship.inventory.get(yielded, 0) + units
            ship.cooldown_until = now + timedelta(seconds=self.extract_cooldown)
            return self._ok({
                "extraction": {"shipSymbol": ship.symbol, "yield": {"symbol": yielded, "units": units}},
                "cooldown": self._cooldown(ship),
                "cargo": self._cargo(ship),
            }, status=201)

        if action in ("purchase", "sell", "refuel"):
            if ship.status != "DOCKED":
                return self._error(400, 4244, "Ship must be docked")
            if ship.waypoint not in self.markets:
                return self._error(400, 4219, "No market here")
            listings = {g["symbol"]: g for g in self.markets[ship.waypoint]}

            if action == "refuel":
                fuel = listings.get("FUEL")
                if fuel is None:
                    return self._error(400, 4602, "No fuel sold here")
                units = ship.fuel_capacity - ship.fuel
                price = fuel["purchasePrice"] * math.ceil(units / 100)
                if price > self.credits:
                    return self._error(400, 4600, "Insufficient funds")
                self.credits -= price
                ship.fuel = ship.fuel_capacity
                return self._ok({
                    "agent": self._agent(),
                    "fuel": self._fuel(ship),
                    "transaction": self._transaction(ship, "PURCHASE", "FUEL", units, fuel["purchasePrice"]),
                })

            symbol, units = body["symbol"], body["units"]
            listing = listings.get(symbol)
            if listing is None:
                return self._error(400, 4602, f"{symbol} not traded here")
            if units > listing["tradeVolume"]:
                return self._error(400, 4604, "Trade volume exceeded")
            if action == "purchase":
                price = listing["purchasePrice"]
                if units * price > self.credits:
                    return self._error(400, 4600, "Insufficient funds")
                if ship.cargo_units + units > ship.cargo_capacity:
                    return self._error(400, 4217, "Cargo exceeds capacity")
                self.credits -= units * price
                ship.inventory[symbol] = ship.inventory.get(symbol, 0) + units
                kind = "PURCHASE"
            else:
                price = listing["sellPrice"]
                if ship.inventory.get(symbol, 0) < units:
                    return self._error(400, 4219, "Not enough cargo")
                self.credits += units * price
                ship.inventory[symbol] -= units
                if not ship.inventory[symbol]:
                    del ship.inventory[symbol]
                kind = "SELL"
            return self._ok({
                "agent": self._agent(),
                "cargo": self._cargo(ship),
                "transaction": self._transaction(ship, kind, symbol, units, price),
            }, status=201)

        return self._error(404, 404, f"Unknown action {action}")
