"""Settlement request schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SettlementRequest(BaseModel):
    """Delivery facts recorded on the order before it is settled."""

    delivered_at: Optional[datetime] = None
    route_distance_km: Optional[float] = Field(default=None, ge=0)
    surge_multiplier: Optional[float] = Field(default=None, ge=1.0)


class ReverseSettlementRequest(BaseModel):
    reason: str = "order cancelled"
