"""Exclusive, time-limited assignment offers."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class OfferNotFoundError(LookupError):
    """No live offer matches the order/courier pair."""


@dataclass(frozen=True, slots=True)
class Offer:
    order_id: str
    courier_id: str
    distance_km: float
    in_zone: bool
    fallback_used: bool
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


class OfferRegistry:
    """Holds at most one live offer per courier and per order.

    A courier reserved for one order cannot be offered another until it accepts
    (which releases the reservation) or the offer times out.
    """

    def __init__(self, timeout_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._by_courier: dict[str, Offer] = {}
        self._by_order: dict[str, Offer] = {}

    def _prune(self, now: float) -> None:
        expired = [offer for offer in self._by_order.values() if not offer.is_live(now)]
        for offer in expired:
            logger.info(f"Offer for order {offer.order_id} to courier {offer.courier_id} expired")
            self._drop(offer)

    def _drop(self, offer: Offer) -> None:
        if self._by_order.get(offer.order_id) == offer:
            del self._by_order[offer.order_id]
        if self._by_courier.get(offer.courier_id) == offer:
            del self._by_courier[offer.courier_id]

    def reserve(
        self,
        order_id: str,
        courier_id: str,
        *,
        distance_km: float,
        in_zone: bool,
        fallback_used: bool,
    ) -> Optional[Offer]:
        """Reserve ``courier_id`` for ``order_id``; None if the courier is already held."""

        with self._lock:
            now = self.clock()
            self._prune(now)
            held = self._by_courier.get(courier_id)
            if held is not None and held.order_id != order_id:
                return None
            previous = self._by_order.get(order_id)
            if previous is not None:
                self._drop(previous)
            offer = Offer(
                order_id=order_id,
                courier_id=courier_id,
                distance_km=distance_km,
                in_zone=in_zone,
                fallback_used=fallback_used,
                expires_at=now + self.timeout_seconds,
            )
            self._by_courier[courier_id] = offer
            self._by_order[order_id] = offer
            return offer

    def held_couriers(self, *, except_order: str | None = None) -> set[str]:
        with self._lock:
            self._prune(self.clock())
            return {courier_id for courier_id, offer in self._by_courier.items() if offer.order_id != except_order}

    def get(self, order_id: str) -> Optional[Offer]:
        with self._lock:
            self._prune(self.clock())
            return self._by_order.get(order_id)

    def release(self, offer: Offer) -> None:
        """Drop ``offer`` if it is still the one registered; a no-op once expired."""

        with self._lock:
            self._drop(offer)

    def revoke(self, order_id: str) -> Optional[Offer]:
        with self._lock:
            offer = self._by_order.get(order_id)
            if offer is not None:
                self._drop(offer)
            return offer
