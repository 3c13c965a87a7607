"""Fleet (ships) API operations."""

from __future__ import annotations

from typing import Any

from fleetpilot.client import SpaceTradersClient
from fleetpilot.fleet.scheduler import Priority
from fleetpilot.models import (
    Agent,
    Cooldown,
    MarketTransaction,
    Ship,
    ShipCargo,
    ShipFuel,
    ShipNav,
)


async def list_ships(client: SpaceTradersClient) -> list[Ship]:
    """Fetch all ships in the fleet."""
    items, _ = await client.get_paginated("/my/ships")
    return [Ship.model_validate(s) for s in items]


async def get_ship(client: SpaceTradersClient, ship_symbol: str) -> Ship:
    """Fetch a single ship's details."""
    body = await client.get(f"/my/ships/{ship_symbol}")
    return Ship.model_validate(body["data"])


async def orbit(client: SpaceTradersClient, ship_symbol: str) -> ShipNav:
    """Move ship into orbit."""
    body = await client.post(f"/my/ships/{ship_symbol}/orbit")
    return ShipNav.model_validate(body["data"]["nav"])


async def dock(client: SpaceTradersClient, ship_symbol: str) -> ShipNav:
    """Dock ship at current waypoint."""
    body = await client.post(f"/my/ships/{ship_symbol}/dock")
    return ShipNav.model_validate(body["data"]["nav"])


async def navigate(
    client: SpaceTradersClient, ship_symbol: str, waypoint_symbol: str
) -> tuple[ShipNav, ShipFuel]:
    """Navigate ship to a waypoint. Returns the new nav (with arrival) and fuel."""
    body = await client.post(
        f"/my/ships/{ship_symbol}/navigate",
        json={"waypointSymbol": waypoint_symbol},
    )
    data = body["data"]
    return ShipNav.model_validate(data["nav"]), ShipFuel.model_validate(data["fuel"])


async def refuel(
    client: SpaceTradersClient, ship_symbol: str,
) -> tuple[Agent, ShipFuel, MarketTransaction | None]:
    """Refuel ship at current waypoint (must be docked)."""
    body = await client.post(
        f"/my/ships/{ship_symbol}/refuel", priority=Priority.CRITICAL,
    )
    data = body["data"]
    transaction = data.get("transaction")
    return (
        Agent.model_validate(data["agent"]),
        ShipFuel.model_validate(data["fuel"]),
        MarketTransaction.model_validate(transaction) if transaction else None,
    )


async def _trade(
    client: SpaceTradersClient,
    ship_symbol: str,
    action: str,
    trade_symbol: str,
    units: int,
) -> tuple[Agent, ShipCargo, MarketTransaction]:
    body = await client.post(
        f"/my/ships/{ship_symbol}/{action}",
        json={"symbol": trade_symbol, "units": units},
        priority=Priority.HIGH,
    )
    data: dict[str, Any] = body["data"]
    return (
        Agent.model_validate(data["agent"]),
        ShipCargo.model_validate(data["cargo"]),
        MarketTransaction.model_validate(data["transaction"]),
    )


async def purchase_cargo(
    client: SpaceTradersClient, ship_symbol: str, trade_symbol: str, units: int
) -> tuple[Agent, ShipCargo, MarketTransaction]:
    """Buy goods at the current market."""
    return await _trade(client, ship_symbol, "purchase", trade_symbol, units)


async def sell_cargo(
    client: SpaceTradersClient, ship_symbol: str, trade_symbol: str, units: int
) -> tuple[Agent, ShipCargo, MarketTransaction]:
    """Sell goods at the current market."""
    return await _trade(client, ship_symbol, "sell", trade_symbol, units)


async def get_cooldown(
    client: SpaceTradersClient, ship_symbol: str
) -> Cooldown | None:
    """Get ship cooldown status. Returns None if no active cooldown."""
    body = await client.get(f"/my/ships/{ship_symbol}/cooldown")
    if not body or "data" not in body:
        return None
    return Cooldown.model_validate(body["data"])
