"""Entry point: python -m fleetpilot

    run       Run the fleet commander, all ships in one process (default)
    register  Register a new agent and store its token
    status    Print the agent and fleet as a table
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console

from fleetpilot.client import ApiError, SpaceTradersClient
from fleetpilot.config import MissingTokenError, Settings, load_settings, load_token, save_token
from fleetpilot.fleet.scheduler import RequestScheduler

logger = logging.getLogger("fleetpilot")


def setup_logging(log_dir: Path, verbose: bool = False) -> None:
    """Configure logging for the fleet commander."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "fleet_commander.log"

    formatter = logging.Formatter(
        "[%(asctime)s] %(message)s", datefmt="%H:%M:%S",
    )

    file_handler = logging.FileHandler(log_file, mode="a")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    root = logging.getLogger("fleetpilot")
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    root.info("Logging to %s", log_file)


def parse_overrides(raw: list[str] | None) -> dict[str, str]:
    """Parse --assign SHIP:strategy pairs into a dict."""
    if not raw:
        return {}
    overrides: dict[str, str] = {}
    for item in raw:
        if ":" not in item:
            print(f"Invalid --assign format: '{item}' (expected SHIP:strategy)")
            sys.exit(1)
        ship, strategy = item.split(":", 1)
        overrides[ship.upper()] = strategy.lower()
    return overrides


def _scheduler(settings: Settings) -> RequestScheduler:
    return RequestScheduler(
        rate=settings.rate_limit,
        burst=settings.burst,
        max_in_flight=settings.max_in_flight,
        cooldown_base=settings.rate_limit_cooldown,
        cooldown_max=settings.rate_limit_cooldown_max,
    )


def cmd_run(settings: Settings, args: argparse.Namespace) -> int:
    from fleetpilot.fleet.commander import FatalError, FleetCommander

    try:
        token = load_token(settings)
    except MissingTokenError as exc:
        logger.error("FATAL: %s", exc)
        return 1

    if args.strategy:
        settings = settings.model_copy(update={"strategy": args.strategy})
    commander = FleetCommander(
        settings, token=token, overrides=parse_overrides(args.assign),
    )
    try:
        asyncio.run(commander.run())
    except FatalError as exc:
        logger.error("FATAL: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Fleet interrupted by user.")
    return 0


async def _register(settings: Settings, faction: str, symbol: str) -> int:
    from fleetpilot.api import agent as agent_api

    scheduler = _scheduler(settings)
    try:
        async with SpaceTradersClient(settings, scheduler=scheduler) as client:
            token, agent = await agent_api.register(client, faction, symbol)
    finally:
        await scheduler.stop()
    path = save_token(settings, token)
    logger.info(
        "Registered %s (%s) with %s credits, token saved to %s",
        agent.symbol, faction, f"{agent.credits:,}", path,
    )
    return 0


def cmd_register(settings: Settings, args: argparse.Namespace) -> int:
    symbol = (args.symbol or settings.callsign).upper()
    if not symbol:
        logger.error("No callsign: pass --symbol or set SPACETRADERS_CALLSIGN")
        return 1
    faction = (args.faction or settings.faction).upper()
    try:
        return asyncio.run(_register(settings, faction, symbol))
    except ApiError as exc:
        logger.error("Registration failed (code %d): %s", exc.code, exc)
        return 1


async def _status(settings: Settings, token: str) -> None:
    from fleetpilot.fleet.clock import Clock
    from fleetpilot.status import fetch_status

    scheduler = _scheduler(settings)
    try:
        async with SpaceTradersClient(settings, scheduler=scheduler, token=token) as client:
            renderable = await fetch_status(client, Clock().now())
    finally:
        await scheduler.stop()
    Console().print(renderable)


def cmd_status(settings: Settings, args: argparse.Namespace) -> int:
    try:
        token = load_token(settings)
        asyncio.run(_status(settings, token))
    except MissingTokenError as exc:
        logger.error("FATAL: %s", exc)
        return 1
    except ApiError as exc:
        logger.error("Status failed (code %d): %s", exc.code, exc)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetpilot",
        description="Autonomous SpaceTraders fleet: every ship in one process",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run the fleet commander (default)")
    run.add_argument(
        "--assign", nargs="*", metavar="SHIP:STRATEGY",
        help="Override strategy assignment (e.g. AGENT-3:trade)",
    )
    run.add_argument(
        "--strategy", choices=["auto", "trade", "mine"],
        help="Default strategy for ships without an override",
    )

    register = sub.add_parser("register", help="Register a new agent")
    register.add_argument("--symbol", help="Agent callsign (default: SPACETRADERS_CALLSIGN)")
    register.add_argument("--faction", help="Starting faction (default: SPACETRADERS_FACTION)")

    sub.add_parser("status", help="Show agent and fleet")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    raw = sys.argv[1:] if argv is None else argv
    args = parser.parse_args(raw)
    if args.command is None:
        args = parser.parse_args([*raw, "run"])
    command = args.command

    settings = load_settings()
    setup_logging(settings.data_dir / "logs", verbose=args.verbose)

    handlers = {"run": cmd_run, "register": cmd_register, "status": cmd_status}
    return handlers[command](settings, args)


if __name__ == "__main__":
    sys.exit(main())
