"""Assignment engine: pick a courier for an order and manage the resulting offer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

import httpx

from ...config import settings
from ...models.domain import CandidateCourier, Order, Zone
from ...persistence.repositories import Repositories, get_repositories
from ..audit import AuditTrail
from ..errors import OrderNotFoundError, ZoneNotFoundError
from ..geospatial import distance_km, normalize_coordinate
from ..locks import KeyedLock
from ..routing.osrm_client import OSRMClient
from .offers import OfferNotFoundError, OfferRegistry
from .pool import CourierPool
from .ranking import preference_order, rank_for_order

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CashConstraint:
    """Cash the courier will collect for the order and the limit it must stay under."""

    order_cash: Decimal
    cash_limit: Decimal


@dataclass(slots=True)
class AssignmentResult:
    order_id: str
    status: Literal["offered", "assigned", "unassigned"]
    courier_id: Optional[str] = None
    distance_km: Optional[float] = None
    in_zone: bool = False
    fallback_used: bool = False
    offer_expires_in_seconds: Optional[float] = None
    reason: Optional[str] = None


@dataclass(slots=True)
class PriorityResult:
    order_id: str
    candidates: list[CandidateCourier] = field(default_factory=list)
    fallback_used: bool = False


class AssignmentService:
    def __init__(
        self,
        repositories: Repositories,
        *,
        offers: OfferRegistry | None = None,
        osrm: OSRMClient | None = None,
        max_distance_km: float | None = None,
        priority_distance_km: float | None = None,
    ) -> None:
        self.repositories = repositories
        self.offers = offers or OfferRegistry(settings.offer_timeout_seconds)
        self.osrm = osrm
        self.max_distance_km = max_distance_km or settings.max_assignment_distance_km
        self.priority_distance_km = priority_distance_km or settings.priority_distance_km
        self.pool = CourierPool(
            repositories.couriers,
            repositories.wallets,
            repositories.orders,
            max_fix_age_seconds=settings.max_position_age_seconds,
        )
        self.audit = AuditTrail(repositories.audit)
        self._order_locks = KeyedLock()
        self._courier_locks = KeyedLock()

    def _require_order(self, order_id: str) -> Order:
        order = self.repositories.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"order {order_id} not found")
        return order

    def _zone(self, order: Order) -> Optional[Zone]:
        if not order.zone_id:
            return None
        zone = self.repositories.zones.get(order.zone_id)
        if zone is None:
            raise ZoneNotFoundError(f"zone {order.zone_id} not found")
        return zone

    @staticmethod
    def default_cash_constraint(order: Order) -> Optional[CashConstraint]:
        if not order.is_cash:
            return None
        return CashConstraint(order_cash=order.pricing.total, cash_limit=Decimal(str(settings.default_cash_limit)))

    def _query(
        self, order: Order, zone: Optional[Zone], constraint: Optional[CashConstraint], held: set[str]
    ) -> list[CandidateCourier]:
        return self.pool.query(
            order.restaurant_location,
            zone,
            cash_limit=constraint.cash_limit if constraint else None,
            order_cash=constraint.order_cash if constraint else Decimal("0"),
            exclude_ids=held,
        )

    def _within_bound(
        self, order: Order, zone: Optional[Zone], constraint: Optional[CashConstraint], held: set[str], bound_km: float
    ) -> list[CandidateCourier]:
        return [c for c in self._query(order, zone, constraint, held) if c.distance_km <= bound_km]

    def _candidates_with_fallback(
        self, order: Order, constraint: Optional[CashConstraint], bound_km: float
    ) -> tuple[list[CandidateCourier], bool]:
        zone = self._zone(order)
        held = self.offers.held_couriers(except_order=order.order_id)
        candidates = self._within_bound(order, zone, constraint, held, bound_km)
        if candidates or constraint is None:
            return candidates, False

        # nobody fits the cash limit; retry without it, same distance bound and zone
        candidates = self._within_bound(order, zone, None, held, bound_km)
        if candidates:
            logger.warning(
                f"No courier within cash limit {constraint.cash_limit} for order {order.order_id}; "
                f"falling back to {len(candidates)} couriers without cash constraint"
            )
        return candidates, bool(candidates)

    def _reserve_first(
        self,
        order_id: str,
        candidates: list[CandidateCourier],
        constraint: Optional[CashConstraint],
        fallback_used: bool,
    ) -> Optional[CandidateCourier]:
        """Reserve the first candidate in preference order that is still free.

        Under a cash constraint the courier's committed cash is checked again
        while its lock is held, so two orders cannot both fill the same room.
        """

        for candidate in preference_order(candidates, self.max_distance_km):
            with self._courier_locks.hold(candidate.courier_id):
                if constraint is not None and not self.pool.fits_cash(
                    candidate.courier_id, constraint.order_cash, constraint.cash_limit
                ):
                    logger.info(f"Courier {candidate.courier_id} no longer fits the cash limit for order {order_id}")
                    continue
                offer = self.offers.reserve(
                    order_id,
                    candidate.courier_id,
                    distance_km=candidate.distance_km,
                    in_zone=candidate.in_zone,
                    fallback_used=fallback_used,
                )
            if offer is not None:
                return candidate
        return None

    def _record_route_distance(self, order: Order) -> None:
        if self.osrm is None or order.route_distance_km is not None:
            return
        origin = normalize_coordinate(order.restaurant_location)
        destination = normalize_coordinate(order.destination)
        if origin is None or destination is None:
            return
        try:
            order.route_distance_km = round(self.osrm.route_distance_km(origin, destination), 3)
        except (ConnectionError, ValueError, KeyError, httpx.HTTPError) as e:
            logger.warning(f"Route distance lookup failed for order {order.order_id}: {e}")

    def request_assignment(
        self, order_id: str, cash_constraint: CashConstraint | None = None
    ) -> AssignmentResult:
        """Offer the order to the best reservable courier, or report it unassigned."""

        with self._order_locks.hold(order_id):
            order = self._require_order(order_id)
            if order.courier_id:
                return AssignmentResult(
                    order_id=order_id,
                    status="assigned",
                    courier_id=order.courier_id,
                    distance_km=order.assignment_distance_km,
                )

            constraint = cash_constraint or self.default_cash_constraint(order)
            zone = self._zone(order)
            held = self.offers.held_couriers(except_order=order_id)
            candidates = self._within_bound(order, zone, constraint, held, self.max_distance_km)
            candidate = self._reserve_first(order_id, candidates, constraint, fallback_used=False)

            fallback_used = False
            if candidate is None and constraint is not None:
                # nobody could be reserved within the cash limit; retry without it, same bound and zone
                candidates = self._within_bound(order, zone, None, held, self.max_distance_km)
                if candidates:
                    logger.warning(
                        f"No courier within cash limit {constraint.cash_limit} for order {order_id}; "
                        f"falling back to {len(candidates)} couriers without cash constraint"
                    )
                candidate = self._reserve_first(order_id, candidates, None, fallback_used=True)
                fallback_used = candidate is not None

            if candidate is None:
                logger.info(f"No courier available for order {order_id}; left pending")
                return AssignmentResult(order_id=order_id, status="unassigned", reason="no_available_courier")

            if fallback_used:
                self.audit.record(
                    "fallback_used",
                    candidate.courier_id,
                    order_id=order_id,
                    cash_limit=str(constraint.cash_limit),
                    order_cash=str(constraint.order_cash),
                )
            self._record_route_distance(order)
            self.repositories.orders.save(order)
            logger.info(
                f"Offered order {order_id} to courier {candidate.courier_id} "
                f"({candidate.distance_km:.2f} km, in_zone={candidate.in_zone}, fallback={fallback_used})"
            )
            return AssignmentResult(
                order_id=order_id,
                status="offered",
                courier_id=candidate.courier_id,
                distance_km=round(candidate.distance_km, 3),
                in_zone=candidate.in_zone,
                fallback_used=fallback_used,
                offer_expires_in_seconds=self.offers.timeout_seconds,
            )

    def find_priority_couriers(
        self, order_id: str, cash_constraint: CashConstraint | None = None, limit: int | None = None
    ) -> PriorityResult:
        """Nearest couriers inside the priority radius, for notification fan-out."""

        order = self._require_order(order_id)
        bound = min(self.priority_distance_km, self.max_distance_km)
        constraint = cash_constraint or self.default_cash_constraint(order)
        candidates, fallback_used = self._candidates_with_fallback(order, constraint, bound)
        if fallback_used:
            self.audit.record("fallback_used", order_id, order_id=order_id, scope="priority_list")
        return PriorityResult(
            order_id=order_id,
            candidates=rank_for_order(candidates, bound, limit),
            fallback_used=fallback_used,
        )

    def accept_offer(self, order_id: str, courier_id: str) -> Order:
        """Confirm the courier's acceptance and record the assignment on the order."""

        with self._order_locks.hold(order_id), self._courier_locks.hold(courier_id):
            order = self._require_order(order_id)
            offer = self.offers.get(order_id)
            if offer is None or offer.courier_id != courier_id:
                raise OfferNotFoundError(f"no live offer of order {order_id} to courier {courier_id}")
            order.courier_id = courier_id
            order.status = "assigned"
            if order.assignment_distance_km is None:
                delivery_km = distance_km(order.restaurant_location, order.destination)
                order.assignment_distance_km = round(delivery_km, 3) if delivery_km is not None else None
            order.cash_limit_override = offer.fallback_used and order.is_cash
            # the order counts toward committed cash before the courier is released
            self.repositories.orders.save(order)
            self.offers.release(offer)
            logger.info(f"Courier {courier_id} accepted order {order_id}")
            return order

    def revoke_offer(self, order_id: str) -> bool:
        """Withdraw an unaccepted offer; the courier returns to the pool."""

        offer = self.offers.revoke(order_id)
        if offer is not None:
            logger.info(f"Revoked offer of order {order_id} to courier {offer.courier_id}")
        return offer is not None


@lru_cache()
def get_assignment_service() -> AssignmentService:
    osrm = OSRMClient() if settings.osrm_base_url else None
    return AssignmentService(get_repositories(), osrm=osrm)
