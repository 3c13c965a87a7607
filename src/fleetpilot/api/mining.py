"""Mining and extraction API operations."""

from __future__ import annotations

from fleetpilot.client import SpaceTradersClient
from fleetpilot.models import Cooldown, Extraction, ShipCargo


async def extract(
    client: SpaceTradersClient, ship_symbol: str,
) -> tuple[Extraction, Cooldown, ShipCargo]:
    """Extract resources at the current location."""
    body = await client.post(f"/my/ships/{ship_symbol}/extract")
    data = body["data"]
    return (
        Extraction.model_validate(data["extraction"]),
        Cooldown.model_validate(data["cooldown"]),
        ShipCargo.model_validate(data["cargo"]),
    )
