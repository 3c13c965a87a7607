"""Contract API operations."""

from __future__ import annotations

from fleetpilot.client import SpaceTradersClient
from fleetpilot.models import Contract


async def list_contracts(client: SpaceTradersClient) -> list[Contract]:
    """Fetch all contracts."""
    items, _ = await client.get_paginated("/my/contracts")
    return [Contract.model_validate(c) for c in items]
