"""Pydantic models for SpaceTraders API responses."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# --- Enums ---


class ShipNavStatus(str, Enum):
    DOCKED = "DOCKED"
    IN_ORBIT = "IN_ORBIT"
    IN_TRANSIT = "IN_TRANSIT"


class FlightMode(str, Enum):
    CRUISE = "CRUISE"
    DRIFT = "DRIFT"
    BURN = "BURN"
    STEALTH = "STEALTH"


class ContractType(str, Enum):
    PROCUREMENT = "PROCUREMENT"
    TRANSPORT = "TRANSPORT"
    SHUTTLE = "SHUTTLE"


class WaypointType(str, Enum):
    PLANET = "PLANET"
    GAS_GIANT = "GAS_GIANT"
    MOON = "MOON"
    ORBITAL_STATION = "ORBITAL_STATION"
    JUMP_GATE = "JUMP_GATE"
    ASTEROID_FIELD = "ASTEROID_FIELD"
    ASTEROID = "ASTEROID"
    ENGINEERED_ASTEROID = "ENGINEERED_ASTEROID"
    ASTEROID_BASE = "ASTEROID_BASE"
    NEBULA = "NEBULA"
    DEBRIS_FIELD = "DEBRIS_FIELD"
    GRAVITY_WELL = "GRAVITY_WELL"
    ARTIFICIAL_GRAVITY_WELL = "ARTIFICIAL_GRAVITY_WELL"
    FUEL_STATION = "FUEL_STATION"


# Waypoint types a mining laser can work
EXTRACTABLE_TYPES: frozenset[WaypointType] = frozenset({
    WaypointType.ASTEROID,
    WaypointType.ASTEROID_FIELD,
    WaypointType.ENGINEERED_ASTEROID,
})

# Mount symbol prefixes that allow POST /extract
EXTRACTOR_MOUNT_PREFIXES = ("MOUNT_MINING_LASER",)


# --- Response envelope ---


class Meta(BaseModel):
    total: int
    page: int
    limit: int


# --- Agent ---


class Agent(BaseModel):
    account_id: str | None = Field(None, alias="accountId")
    symbol: str
    headquarters: str
    credits: int
    starting_faction: str = Field(alias="startingFaction")
    ship_count: int = Field(0, alias="shipCount")


# --- Ship sub-models ---


class ShipRegistration(BaseModel):
    name: str
    faction_symbol: str = Field(alias="factionSymbol")
    role: str


class RouteWaypoint(BaseModel):
    symbol: str
    type: str
    system_symbol: str = Field(alias="systemSymbol")
    x: int
    y: int


class ShipRoute(BaseModel):
    destination: RouteWaypoint
    origin: RouteWaypoint
    departure_time: datetime = Field(alias="departureTime")
    arrival: datetime


class ShipNav(BaseModel):
    system_symbol: str = Field(alias="systemSymbol")
    waypoint_symbol: str = Field(alias="waypointSymbol")
    route: ShipRoute
    status: ShipNavStatus
    flight_mode: FlightMode = Field(FlightMode.CRUISE, alias="flightMode")


class ShipEngine(BaseModel):
    symbol: str
    name: str = ""
    speed: int = 0


class ShipMount(BaseModel):
    symbol: str
    name: str = ""
    strength: int | None = None
    deposits: list[str] | None = None


class CargoItem(BaseModel):
    symbol: str
    name: str = ""
    description: str = ""
    units: int


class ShipCargo(BaseModel):
    capacity: int
    units: int
    inventory: list[CargoItem] = Field(default_factory=list)


class FuelConsumed(BaseModel):
    amount: int
    timestamp: datetime


class ShipFuel(BaseModel):
    current: int
    capacity: int
    consumed: FuelConsumed | None = None


class Cooldown(BaseModel):
    ship_symbol: str = Field(alias="shipSymbol")
    total_seconds: int = Field(alias="totalSeconds")
    remaining_seconds: int = Field(alias="remainingSeconds")
    expiration: datetime | None = None


class Ship(BaseModel):
    symbol: str
    registration: ShipRegistration | None = None
    nav: ShipNav
    engine: ShipEngine | None = None
    mounts: list[ShipMount] = Field(default_factory=list)
    cargo: ShipCargo
    fuel: ShipFuel
    cooldown: Cooldown | None = None

    @property
    def can_extract(self) -> bool:
        return any(
            m.symbol.startswith(EXTRACTOR_MOUNT_PREFIXES) for m in self.mounts
        )


# --- Contracts ---


class ContractDelivery(BaseModel):
    trade_symbol: str = Field(alias="tradeSymbol")
    destination_symbol: str = Field(alias="destinationSymbol")
    units_required: int = Field(alias="unitsRequired")
    units_fulfilled: int = Field(alias="unitsFulfilled")


class ContractPayment(BaseModel):
    on_accepted: int = Field(alias="onAccepted")
    on_fulfilled: int = Field(alias="onFulfilled")


class ContractTerms(BaseModel):
    deadline: datetime
    payment: ContractPayment
    deliver: list[ContractDelivery] = Field(default_factory=list)


class Contract(BaseModel):
    id: str
    faction_symbol: str = Field(alias="factionSymbol")
    type: ContractType
    terms: ContractTerms
    accepted: bool
    fulfilled: bool


# --- Waypoints ---


class WaypointTrait(BaseModel):
    symbol: str
    name: str = ""
    description: str = ""


class Waypoint(BaseModel):
    symbol: str
    type: WaypointType
    system_symbol: str = Field(alias="systemSymbol")
    x: int
    y: int
    traits: list[WaypointTrait] = Field(default_factory=list)

    def has_trait(self, symbol: str) -> bool:
        return any(t.symbol == symbol for t in self.traits)

    @property
    def has_market(self) -> bool:
        return self.has_trait("MARKETPLACE")

    @property
    def has_shipyard(self) -> bool:
        return self.has_trait("SHIPYARD")

    @property
    def is_extractable(self) -> bool:
        return self.type in EXTRACTABLE_TYPES


# --- Market ---


class TradeGood(BaseModel):
    symbol: str
    name: str = ""
    description: str = ""


class MarketTransaction(BaseModel):
    waypoint_symbol: str = Field(alias="waypointSymbol")
    ship_symbol: str = Field(alias="shipSymbol")
    trade_symbol: str = Field(alias="tradeSymbol")
    type: str
    units: int
    price_per_unit: int = Field(alias="pricePerUnit")
    total_price: int = Field(alias="totalPrice")
    timestamp: datetime


class MarketTradeGood(BaseModel):
    symbol: str
    type: str
    trade_volume: int = Field(alias="tradeVolume")
    supply: str
    activity: str | None = None
    purchase_price: int = Field(alias="purchasePrice")
    sell_price: int = Field(alias="sellPrice")


class Market(BaseModel):
    symbol: str
    exports: list[TradeGood] = Field(default_factory=list)
    imports: list[TradeGood] = Field(default_factory=list)
    exchange: list[TradeGood] = Field(default_factory=list)
    trade_goods: list[MarketTradeGood] = Field(default_factory=list, alias="tradeGoods")

    def good(self, symbol: str) -> MarketTradeGood | None:
        """Return the live listing for a good, or None if not traded here."""
        for g in self.trade_goods:
            if g.symbol == symbol:
                return g
        return None


# --- Extraction ---


class ExtractionYield(BaseModel):
    symbol: str
    units: int


class Extraction(BaseModel):
    ship_symbol: str = Field(alias="shipSymbol")
    yield_: ExtractionYield = Field(alias="yield")


# --- Utilities ---


def system_symbol_from_waypoint(waypoint_symbol: str) -> str:
    """Extract system symbol from a waypoint symbol (e.g. 'X1-XV5-H58' → 'X1-XV5')."""
    parts = waypoint_symbol.split("-")
    if len(parts) < 3:
        raise ValueError(
            f"Invalid waypoint symbol '{waypoint_symbol}': expected format like 'X1-XV5-H58'",
        )
    return f"{parts[0]}-{parts[1]}"
