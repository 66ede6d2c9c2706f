"""Courier pool query: who is eligible to receive an order right now."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from ...models.domain import CandidateCourier, Courier, Zone
from ..geospatial import haversine_km_many, is_null_island, normalize_coordinate, point_in_polygon

logger = logging.getLogger(__name__)

# accepted by a courier but not yet delivered
OPEN_ORDER_STATUS = "assigned"


def _fresh(courier: Courier, now: datetime, max_fix_age_seconds: Optional[int]) -> bool:
    if max_fix_age_seconds is None:
        return True
    if courier.position_updated_at is None:
        return False
    updated_at = courier.position_updated_at
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return (now - updated_at).total_seconds() <= max_fix_age_seconds


def in_zone(courier: Courier, zone: Optional[Zone]) -> bool:
    """A courier matches a zone by assigned zone id, or by position when it has none."""

    if zone is None:
        return False
    if courier.zone_id:
        return courier.zone_id == zone.zone_id
    if courier.position is None:
        return False
    return point_in_polygon(courier.position, zone.polygon)


def find_candidates(
    restaurant: Any,
    zone: Optional[Zone],
    couriers: Iterable[Courier],
    *,
    cash_in_hand: Mapping[str, Decimal] | None = None,
    cash_limit: Decimal | None = None,
    courier_cash_limits: Mapping[str, Decimal] | None = None,
    order_cash: Decimal = Decimal("0"),
    now: datetime | None = None,
    max_fix_age_seconds: int | None = None,
    exclude_ids: Iterable[str] = (),
) -> list[CandidateCourier]:
    """Return available couriers with their great-circle distance from the restaurant.

    When ``cash_limit`` is given, couriers whose cash in hand plus the order's
    cash amount would exceed it are dropped. A courier listed in
    ``courier_cash_limits`` is held to the lower of that limit and its own.
    An unresolvable restaurant coordinate yields an empty pool.
    """

    origin = normalize_coordinate(restaurant)
    if origin is None:
        logger.warning(f"Restaurant location {restaurant!r} could not be resolved; empty courier pool")
        return []

    now = now or datetime.now(timezone.utc)
    excluded = set(exclude_ids)
    cash_in_hand = cash_in_hand or {}
    courier_cash_limits = courier_cash_limits or {}

    eligible: list[Courier] = []
    for courier in couriers:
        if not courier.is_available or courier.courier_id in excluded:
            continue
        position = normalize_coordinate(courier.position)
        if position is None or is_null_island(position):
            continue
        if not _fresh(courier, now, max_fix_age_seconds):
            continue
        if cash_limit is not None:
            held = cash_in_hand.get(courier.courier_id, Decimal("0"))
            limit = min(cash_limit, courier_cash_limits.get(courier.courier_id, cash_limit))
            if held + order_cash > limit:
                continue
        courier.position = position
        eligible.append(courier)

    distances = haversine_km_many(origin, [courier.position for courier in eligible])
    candidates = [
        CandidateCourier(courier=courier, distance_km=distance, in_zone=in_zone(courier, zone))
        for courier, distance in zip(eligible, distances)
    ]
    logger.debug(f"Courier pool for {origin}: {len(candidates)} candidates (cash limit={cash_limit})")
    return candidates


class CourierPool:
    """Binds the pool query to the courier and wallet repositories."""

    def __init__(
        self, couriers: Any, wallets: Any, orders: Any = None, *, max_fix_age_seconds: int | None = None
    ) -> None:
        self.couriers = couriers
        self.wallets = wallets
        self.orders = orders
        self.max_fix_age_seconds = max_fix_age_seconds

    def committed_cash(self, courier_id: str) -> Decimal:
        """Cash in hand plus cash still to be collected on accepted, unsettled COD orders."""
        wallet = self.wallets.get(courier_id)
        held = wallet.cash_in_hand if wallet is not None else Decimal("0")
        if self.orders is not None:
            for order in self.orders.list_by_courier(courier_id):
                if order.is_cash and order.status == OPEN_ORDER_STATUS:
                    held += order.pricing.total
        return held

    def cash_limit_for(self, courier_id: str, requested: Decimal) -> Decimal:
        """The tighter of the requested limit and the courier's wallet limit."""
        wallet = self.wallets.get(courier_id)
        if wallet is None:
            default = getattr(self.wallets, "default_cash_limit", None)
            return requested if default is None else min(requested, Decimal(str(default)))
        return min(requested, wallet.cash_limit)

    def fits_cash(self, courier_id: str, order_cash: Decimal, requested: Decimal) -> bool:
        return self.committed_cash(courier_id) + order_cash <= self.cash_limit_for(courier_id, requested)

    def query(
        self,
        restaurant: Any,
        zone: Optional[Zone],
        *,
        cash_limit: Decimal | None = None,
        order_cash: Decimal = Decimal("0"),
        exclude_ids: Iterable[str] = (),
    ) -> list[CandidateCourier]:
        couriers = self.couriers.list_available()
        cash_in_hand: dict[str, Decimal] | None = None
        courier_limits: dict[str, Decimal] | None = None
        if cash_limit is not None:
            cash_in_hand = {courier.courier_id: self.committed_cash(courier.courier_id) for courier in couriers}
            courier_limits = {
                courier.courier_id: self.cash_limit_for(courier.courier_id, cash_limit) for courier in couriers
            }
        return find_candidates(
            restaurant,
            zone,
            couriers,
            cash_in_hand=cash_in_hand,
            cash_limit=cash_limit,
            courier_cash_limits=courier_limits,
            order_cash=order_cash,
            max_fix_age_seconds=self.max_fix_age_seconds,
            exclude_ids=exclude_ids,
        )
