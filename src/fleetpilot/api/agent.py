"""Agent API operations."""

from __future__ import annotations

from fleetpilot.client import SpaceTradersClient
from fleetpilot.fleet.scheduler import Priority
from fleetpilot.models import Agent


async def get_agent(client: SpaceTradersClient) -> Agent:
    """Fetch the current agent's info."""
    body = await client.get("/my/agent")
    return Agent.model_validate(body["data"])


async def register(
    client: SpaceTradersClient, faction: str, symbol: str,
) -> tuple[str, Agent]:
    """Register a new agent. Returns the agent token and the created agent."""
    body = await client.post(
        "/register",
        json={"faction": faction, "symbol": symbol},
        priority=Priority.CRITICAL,
    )
    data = body["data"]
    return data["token"], Agent.model_validate(data["agent"])
