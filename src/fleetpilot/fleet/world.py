"""World view — the fleet's shared cache of waypoints and markets.

Every ship actor writes what it observes and the strategies read it.
Entries are keyed by waypoint symbol and merged last-writer-wins by
observation time, so replaying an older observation is harmless.
All access happens on the event loop; updates never span keys, so no
fleet-wide lock is taken.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from fleetpilot.models import Market, Waypoint

logger = logging.getLogger(__name__)

DEFAULT_MARKET_MAX_AGE = 900.0


@dataclass
class WaypointEntry:
    """Last-known facts about one waypoint."""

    waypoint: Waypoint
    observed_at: datetime
    market: Market | None = None
    market_observed_at: datetime | None = None
    visited: bool = False

    @property
    def symbol(self) -> str:
        return self.waypoint.symbol

    @property
    def has_market(self) -> bool:
        return self.waypoint.has_market

    @property
    def has_shipyard(self) -> bool:
        return self.waypoint.has_shipyard


@dataclass
class WorldView:
    """Shared, eventually-consistent map of waypoint symbol → entry."""

    market_max_age: float = DEFAULT_MARKET_MAX_AGE
    _entries: dict[str, WaypointEntry] = field(default_factory=dict)
    # market observations for waypoints whose descriptive data is not loaded yet
    _orphan_markets: dict[str, tuple[Market, datetime]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._entries

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def observe_waypoint(self, waypoint: Waypoint, observed_at: datetime) -> bool:
        """Merge descriptive waypoint data. Returns True if the entry changed."""
        entry = self._entries.get(waypoint.symbol)
        if entry is None:
            entry = WaypointEntry(waypoint=waypoint, observed_at=observed_at)
            self._entries[waypoint.symbol] = entry
            orphan = self._orphan_markets.pop(waypoint.symbol, None)
            if orphan is not None:
                entry.market, entry.market_observed_at = orphan
            return True
        if observed_at <= entry.observed_at:
            return False
        entry.waypoint = waypoint
        entry.observed_at = observed_at
        return True

    def observe_market(self, market: Market, observed_at: datetime) -> bool:
        """Merge a market snapshot. Returns True if the entry changed."""
        entry = self._entries.get(market.symbol)
        if entry is None:
            previous = self._orphan_markets.get(market.symbol)
            if previous is not None and observed_at <= previous[1]:
                return False
            self._orphan_markets[market.symbol] = (market, observed_at)
            return True
        watermark = entry.market_observed_at
        if watermark is not None:
            if observed_at < watermark:
                return False
            if observed_at == watermark and entry.market is not None:
                return False
        entry.market = market
        entry.market_observed_at = observed_at
        logger.debug(
            "Market %s observed (%d goods)", market.symbol, len(market.trade_goods),
        )
        return True

    def invalidate_market(self, symbol: str) -> None:
        """Forget a market's prices after a transaction moved them.

        The observation time stays as a watermark so a delayed older
        snapshot cannot bring the pre-transaction prices back.
        """
        entry = self._entries.get(symbol)
        if entry is not None:
            entry.market = None
        self._orphan_markets.pop(symbol, None)

    def mark_visited(self, symbol: str) -> None:
        entry = self._entries.get(symbol)
        if entry is not None:
            entry.visited = True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookup(self, symbol: str) -> WaypointEntry | None:
        """Return the entry for a waypoint, or None if unknown."""
        return self._entries.get(symbol)

    def is_fresh(self, observed_at: datetime | None, now: datetime) -> bool:
        if observed_at is None:
            return False
        return now - observed_at <= timedelta(seconds=self.market_max_age)

    def market_for(self, symbol: str, now: datetime) -> Market | None:
        """Return market data, or None when unknown or stale."""
        entry = self._entries.get(symbol)
        if entry is not None:
            if entry.market is not None and self.is_fresh(entry.market_observed_at, now):
                return entry.market
            return None
        orphan = self._orphan_markets.get(symbol)
        if orphan is not None and self.is_fresh(orphan[1], now):
            return orphan[0]
        return None

    def waypoints_in(self, system_symbol: str) -> list[WaypointEntry]:
        """All known waypoints of a system, in symbol order."""
        return sorted(
            (e for e in self._entries.values()
             if e.waypoint.system_symbol == system_symbol),
            key=lambda e: e.symbol,
        )

    def markets_in(self, system_symbol: str, now: datetime) -> dict[str, Market]:
        """Fresh markets of a system keyed by waypoint symbol."""
        markets: dict[str, Market] = {}
        for entry in self.waypoints_in(system_symbol):
            if entry.market is not None and self.is_fresh(entry.market_observed_at, now):
                markets[entry.symbol] = entry.market
        return markets

    def is_explored(self, symbol: str, now: datetime) -> bool:
        """Visited, and if it hosts a market, with fresh prices on file."""
        entry = self._entries.get(symbol)
        if entry is None:
            return False
        if entry.has_market:
            return entry.market is not None and self.is_fresh(entry.market_observed_at, now)
        return entry.visited

    def coords(self, symbol: str) -> tuple[int, int] | None:
        entry = self._entries.get(symbol)
        if entry is None:
            return None
        return entry.waypoint.x, entry.waypoint.y

    def fuel_price(self, system_symbol: str, now: datetime) -> int | None:
        """Cheapest fresh FUEL purchase price in a system, if any market lists it."""
        prices = [
            good.purchase_price
            for market in self.markets_in(system_symbol, now).values()
            for good in market.trade_goods
            if good.symbol == "FUEL"
        ]
        return min(prices) if prices else None
