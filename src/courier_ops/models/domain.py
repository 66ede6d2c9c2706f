"""Domain models for couriers, zones and consumed order snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, NamedTuple, Optional


class Coordinate(NamedTuple):
    """Canonical (longitude, latitude) pair in decimal degrees."""

    longitude: float
    latitude: float


ACTIVE_COURIER_STATUSES = frozenset({"approved", "active"})


@dataclass(slots=True)
class Zone:
    """Named service-area polygon."""

    zone_id: str
    name: str
    polygon: tuple[Coordinate, ...] = ()
    is_active: bool = True


@dataclass(slots=True)
class Courier:
    """Courier as seen by the assignment engine at lookup time."""

    courier_id: str
    name: str = ""
    phone: Optional[str] = None
    is_online: bool = False
    status: str = "approved"
    is_active: bool = True
    position: Optional[Coordinate] = None
    position_updated_at: Optional[datetime] = None
    zone_id: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.is_online and self.is_active and self.status in ACTIVE_COURIER_STATUSES


@dataclass(slots=True)
class CandidateCourier:
    """A courier that passed the pool filters, with its distance to the restaurant."""

    courier: Courier
    distance_km: float
    in_zone: bool

    @property
    def courier_id(self) -> str:
        return self.courier.courier_id


@dataclass(slots=True)
class OrderPricing:
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    delivery_fee: Decimal = Decimal("0")
    platform_fee: Optional[Decimal] = None
    tax: Decimal = Decimal("0")
    tip: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    restaurant_commission: Decimal = Decimal("0")


@dataclass(slots=True)
class Order:
    """Order snapshot consumed from the order workflow.

    ``restaurant_location`` and ``destination`` are kept in whatever shape the
    workflow supplied them; the geo utility normalizes them on use.
    """

    order_id: str
    restaurant_location: Any
    destination: Any
    pricing: OrderPricing = field(default_factory=OrderPricing)
    payment_method: str = "online"
    payment_confirmed: bool = False
    status: str = "placed"
    zone_id: Optional[str] = None
    courier_id: Optional[str] = None
    route_distance_km: Optional[float] = None
    assignment_distance_km: Optional[float] = None
    surge_multiplier: Optional[float] = None
    cash_limit_override: bool = False
    delivered_at: Optional[datetime] = None

    @property
    def is_cash(self) -> bool:
        return self.payment_method in {"cash", "cod"}
