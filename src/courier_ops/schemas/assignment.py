"""Assignment request/response schemas."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from ..models.domain import Order, OrderPricing


class PricingModel(BaseModel):
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    delivery_fee: Decimal = Decimal("0")
    platform_fee: Optional[Decimal] = Field(default=None, description="Falls back to the configured platform fee.")
    tax: Decimal = Decimal("0")
    tip: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    restaurant_commission: Decimal = Decimal("0")


class AssignmentRequest(BaseModel):
    order_id: str
    restaurant_location: Any = Field(..., description="[lng, lat], {lat, lng}, {latitude, longitude} or GeoJSON point")
    destination: Any = None
    zone_id: Optional[str] = None
    payment_method: str = Field(default="online", description="'cash'/'cod' orders are subject to the cash limit")
    payment_confirmed: bool = False
    pricing: PricingModel = Field(default_factory=PricingModel)
    surge_multiplier: Optional[float] = Field(default=None, ge=1.0)
    route_distance_km: Optional[float] = Field(default=None, ge=0)
    cash_limit: Optional[Decimal] = Field(default=None, ge=0, description="Override the default courier cash limit.")

    def to_order(self) -> Order:
        return Order(
            order_id=self.order_id,
            restaurant_location=self.restaurant_location,
            destination=self.destination,
            pricing=OrderPricing(**self.pricing.model_dump()),
            payment_method=self.payment_method,
            payment_confirmed=self.payment_confirmed,
            zone_id=self.zone_id,
            route_distance_km=self.route_distance_km,
            surge_multiplier=self.surge_multiplier,
        )


class AssignmentResponse(BaseModel):
    order_id: str
    status: str
    courier_id: Optional[str] = None
    distance_km: Optional[float] = None
    in_zone: bool = False
    fallback_used: bool = False
    offer_expires_in_seconds: Optional[float] = None
    reason: Optional[str] = None


class CandidateModel(BaseModel):
    courier_id: str
    name: str = ""
    distance_km: float
    in_zone: bool


class CandidatesResponse(BaseModel):
    order_id: str
    fallback_used: bool
    candidates: List[CandidateModel]


class AcceptOfferRequest(BaseModel):
    courier_id: str


class OrderAssignmentModel(BaseModel):
    order_id: str
    status: str
    courier_id: Optional[str] = None
    assignment_distance_km: Optional[float] = None
    route_distance_km: Optional[float] = None
    cash_limit_override: bool = False


class RevokeResponse(BaseModel):
    order_id: str
    revoked: bool
