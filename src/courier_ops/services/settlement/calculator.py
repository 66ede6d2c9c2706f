"""Settlement calculator: the three-way split of a delivered order's money.

The calculation is pure. Given the same order snapshot and rule it returns an
identical ``Settlement``; nothing time-dependent is stored on the record.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Literal, Optional

from ...config import Settings
from ...models.domain import Order
from ...models.ledger import to_money
from ...models.settlement import (
    CourierEarning,
    CustomerPayment,
    DistanceSource,
    PlatformEarning,
    RuleSnapshot,
    Settlement,
)
from ..geospatial import distance_km

logger = logging.getLogger(__name__)

MissingDistancePolicy = Literal["zero", "default", "block"]


class DistanceUnavailableError(ValueError):
    """No delivery distance could be resolved and the policy forbids guessing."""


def rule_from_settings(config: Settings) -> RuleSnapshot:
    return RuleSnapshot(
        base_payout=to_money(config.base_payout),
        free_threshold_km=Decimal(str(config.free_threshold_km)),
        per_km_rate=to_money(config.per_km_rate),
        minimum_guarantee=config.minimum_guarantee,
    )


def resolve_distance(
    order: Order,
    *,
    policy: MissingDistancePolicy = "zero",
    fallback_distance_km: float = 0.0,
) -> tuple[float, DistanceSource]:
    """First available of route, assignment-time and great-circle distance, then the policy."""

    if order.route_distance_km is not None and order.route_distance_km >= 0:
        return round(order.route_distance_km, 3), "route"
    if order.assignment_distance_km is not None and order.assignment_distance_km >= 0:
        return round(order.assignment_distance_km, 3), "assignment"
    great_circle = distance_km(order.restaurant_location, order.destination)
    if great_circle is not None:
        return round(great_circle, 3), "great_circle"

    if policy == "block":
        raise DistanceUnavailableError(f"no delivery distance can be resolved for order {order.order_id}")
    if policy == "default":
        logger.warning(f"Order {order.order_id} has no resolvable distance; using fallback {fallback_distance_km} km")
        return round(fallback_distance_km, 3), "default"
    logger.warning(f"Order {order.order_id} has no resolvable distance; settling with 0 km")
    return 0.0, "none"


def resolve_surge(order: Order, surge_for_hour: Optional[Callable[[int], float]] = None) -> float:
    if order.surge_multiplier is not None:
        return max(1.0, order.surge_multiplier)
    if surge_for_hour is not None and order.delivered_at is not None:
        return max(1.0, surge_for_hour(order.delivered_at.hour))
    return 1.0


def compute_settlement(
    order: Order,
    rule: RuleSnapshot,
    *,
    platform_fee_default: Decimal | float = Decimal("0"),
    missing_distance_policy: MissingDistancePolicy = "zero",
    fallback_distance_km: float = 0.0,
    subsidy_account: str = "platform:delivery-subsidy",
    surge_for_hour: Optional[Callable[[int], float]] = None,
) -> Settlement:
    pricing = order.pricing
    delivery_fee = to_money(pricing.delivery_fee)
    tip = to_money(pricing.tip)
    platform_fee = to_money(pricing.platform_fee if pricing.platform_fee is not None else platform_fee_default)

    customer = CustomerPayment(
        subtotal=to_money(pricing.subtotal),
        discount=to_money(pricing.discount),
        delivery_fee=delivery_fee,
        platform_fee=platform_fee,
        tax=to_money(pricing.tax),
        tip=tip,
        total=to_money(pricing.total),
    )

    distance, source = resolve_distance(
        order, policy=missing_distance_policy, fallback_distance_km=fallback_distance_km
    )
    surge = resolve_surge(order, surge_for_hour)

    if order.courier_id:
        chargeable_km = max(Decimal("0"), Decimal(str(distance)) - rule.free_threshold_km)
        distance_commission = to_money(chargeable_km * rule.per_km_rate)
        surge_amount = to_money(distance_commission * (Decimal(str(surge)) - 1))
        rule_total = rule.base_payout + distance_commission + surge_amount
        delivery_earning = max(delivery_fee, rule_total) if rule.minimum_guarantee else rule_total
        top_up = to_money(delivery_earning - rule_total)
        base_payout = to_money(rule.base_payout + top_up)
    else:
        # nobody delivered it, so nobody is paid for the delivery
        distance_commission = surge_amount = top_up = base_payout = to_money(0)
        delivery_earning = Decimal("0")
    delivery_earning = to_money(delivery_earning)

    courier = CourierEarning(
        courier_id=order.courier_id,
        distance_km=distance,
        base_payout=base_payout,
        per_km_rate=rule.per_km_rate,
        distance_commission=distance_commission,
        surge_multiplier=surge,
        surge_amount=surge_amount,
        guarantee_top_up=top_up,
        delivery_earning=delivery_earning,
        tip=tip,
        total=to_money(delivery_earning + tip),
    )

    margin = to_money(delivery_fee - delivery_earning)
    negative = margin < 0
    commission = to_money(pricing.restaurant_commission)
    platform = PlatformEarning(
        commission=commission,
        platform_fee=platform_fee,
        delivery_margin=margin,
        total=to_money(commission + platform_fee + margin),
        negative_margin=negative,
        subsidy_account=subsidy_account if negative else None,
        subsidy_amount=to_money(-margin) if negative else to_money(0),
        gst=to_money(pricing.tax),
        restaurant_net=to_money(pricing.subtotal - commission),
    )
    if negative:
        logger.warning(
            f"Negative delivery margin {margin} on order {order.order_id}; absorbed by {subsidy_account}"
        )

    return Settlement(
        order_id=order.order_id,
        distance_source=source,
        customer=customer,
        courier=courier,
        platform=platform,
        rule=rule,
        cash_order=order.is_cash,
    )
