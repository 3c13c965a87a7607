"""Rich rendering of the agent and its fleet for `python -m fleetpilot status`."""

from __future__ import annotations

from datetime import datetime

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from fleetpilot.api import agent as agent_api
from fleetpilot.api import fleet as fleet_api
from fleetpilot.client import SpaceTradersClient
from fleetpilot.models import Agent, Ship, ShipNavStatus


def _format_credits(n: int | float) -> str:
    """Format credits with thousands separators."""
    return f"{int(n):,}"


def _short_wp(waypoint: str) -> str:
    """Shorten waypoint symbol: X1-XV5-B7 -> B7."""
    parts = waypoint.rsplit("-", 1)
    return parts[-1] if len(parts) > 1 else waypoint


def _eta(ship: Ship, now: datetime) -> str:
    if ship.nav.status != ShipNavStatus.IN_TRANSIT:
        return ""
    secs = int((ship.nav.route.arrival - now).total_seconds())
    if secs <= 0:
        return "arriving"
    if secs < 60:
        return f"{secs}s"
    return f"{secs // 60}m{secs % 60:02d}s"


def build_header(agent: Agent) -> Panel:
    """Agent overview panel."""
    text = Text()
    text.append("  Credits: ", style="bold")
    text.append(_format_credits(agent.credits), style="bold cyan")
    text.append("  HQ: ", style="bold")
    text.append(agent.headquarters, style="cyan")
    text.append("  Ships: ", style="bold")
    text.append(str(agent.ship_count), style="bold cyan")
    return Panel(text, title=agent.symbol, border_style="bright_blue")


def build_fleet_table(ships: list[Ship], now: datetime) -> Table:
    """One row per ship: location, status, fuel, cargo."""
    table = Table(title="Fleet", expand=True)
    table.add_column("Ship", style="bold")
    table.add_column("Role")
    table.add_column("Location")
    table.add_column("Status")
    table.add_column("ETA", justify="right")
    table.add_column("Fuel", justify="right")
    table.add_column("Cargo", justify="right")
    table.add_column("Hold")

    status_styles = {
        ShipNavStatus.DOCKED: "green",
        ShipNavStatus.IN_ORBIT: "yellow",
        ShipNavStatus.IN_TRANSIT: "cyan",
    }
    for ship in sorted(ships, key=lambda s: s.symbol):
        hold = ", ".join(
            f"{item.units} {item.symbol}" for item in sorted(ship.cargo.inventory, key=lambda i: i.symbol)
        )
        fuel = f"{ship.fuel.current}/{ship.fuel.capacity}" if ship.fuel.capacity else "-"
        table.add_row(
            ship.symbol,
            ship.registration.role if ship.registration else "",
            _short_wp(ship.nav.waypoint_symbol),
            Text(ship.nav.status.value, style=status_styles.get(ship.nav.status, "")),
            _eta(ship, now),
            fuel,
            f"{ship.cargo.units}/{ship.cargo.capacity}",
            hold,
        )
    return table


def build_status(agent: Agent, ships: list[Ship], now: datetime) -> Group:
    return Group(build_header(agent), build_fleet_table(ships, now))


async def fetch_status(client: SpaceTradersClient, now: datetime) -> Group:
    """Read the agent and fleet from the API and render them."""
    agent = await agent_api.get_agent(client)
    ships = await fleet_api.list_ships(client)
    return build_status(agent, ships, now)
