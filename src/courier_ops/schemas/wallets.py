"""Wallet API schemas."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..models.ledger import WalletTransaction


class WalletSummaryModel(BaseModel):
    courier_id: str
    total_balance: Decimal
    pocket_balance: Decimal
    cash_in_hand: Decimal
    cash_limit: Decimal
    remaining_cash_limit: Decimal
    total_earned: Decimal
    tips_total: Decimal
    bonus_total: Decimal
    total_withdrawn: Decimal
    pending_amount: Decimal
    transaction_count: int


class WalletResponse(BaseModel):
    summary: WalletSummaryModel
    version: int
    transactions: List[WalletTransaction] = Field(default_factory=list)


class AdjustmentRequest(BaseModel):
    kind: Literal["bonus", "deduction", "withdrawal"]
    amount: Decimal
    reason: str = ""
    operator_id: Optional[str] = None
    payout_reference: Optional[str] = None
    idempotency_key: Optional[str] = None


class CashRemittanceRequest(BaseModel):
    amount: Decimal
    reference: str = ""
    idempotency_key: Optional[str] = None


class RepairRequest(BaseModel):
    operator_id: Optional[str] = None
