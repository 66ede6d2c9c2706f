"""Settlement records: the three-way split computed for one delivered order."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DistanceSource = Literal["route", "assignment", "great_circle", "default", "none"]


class CustomerPayment(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: Decimal
    discount: Decimal
    delivery_fee: Decimal
    platform_fee: Decimal
    tax: Decimal
    tip: Decimal
    total: Decimal


class CourierEarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    courier_id: Optional[str]
    distance_km: float
    base_payout: Decimal
    per_km_rate: Decimal
    distance_commission: Decimal
    surge_multiplier: float
    surge_amount: Decimal
    guarantee_top_up: Decimal
    delivery_earning: Decimal
    tip: Decimal
    total: Decimal


class PlatformEarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    commission: Decimal
    platform_fee: Decimal
    delivery_margin: Decimal
    total: Decimal
    negative_margin: bool = False
    subsidy_account: Optional[str] = None
    subsidy_amount: Decimal = Decimal("0.00")
    # pass-through detail, not part of the platform total
    gst: Decimal = Decimal("0.00")
    restaurant_net: Decimal = Decimal("0.00")


class RuleSnapshot(BaseModel):
    """Commission-rule parameters the settlement was computed with."""

    model_config = ConfigDict(frozen=True)

    base_payout: Decimal
    free_threshold_km: Decimal
    per_km_rate: Decimal
    minimum_guarantee: bool


class Settlement(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    distance_source: DistanceSource
    customer: CustomerPayment
    courier: CourierEarning
    platform: PlatformEarning
    rule: RuleSnapshot
    cash_order: bool = False


class SubsidyEntry(BaseModel):
    """Negative delivery margin absorbed by the named subsidy account for one order."""

    account: str
    order_id: str
    amount: Decimal
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
