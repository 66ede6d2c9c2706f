"""
Ledger models - append-only courier transaction history.

Invariants:
- A transaction is immutable except for its status (pending -> completed | failed)
- Wallet aggregates are always a fold over the completed transactions and
  cash movements; they are cached on the wallet, never the source of truth
- All amounts are Decimals quantized to 0.01
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


CENT = Decimal("0.01")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value: object) -> Decimal:
    """Quantize a number (or numeric string) to cents, half-up."""

    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class TransactionKind(str, Enum):
    PAYMENT = "payment"
    TIP = "tip"
    BONUS = "bonus"
    DEDUCTION = "deduction"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"
    CREDIT = "credit"
    DEBIT = "debit"


CREDIT_KINDS = frozenset(
    {TransactionKind.PAYMENT, TransactionKind.TIP, TransactionKind.BONUS, TransactionKind.CREDIT, TransactionKind.REFUND}
)
DEBIT_KINDS = frozenset({TransactionKind.WITHDRAWAL, TransactionKind.DEDUCTION, TransactionKind.DEBIT})
# kinds that count toward total earned
EARNING_KINDS = frozenset({TransactionKind.PAYMENT, TransactionKind.TIP, TransactionKind.BONUS})


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["payment"] = "payment"
    order_id: str
    base_payout: Decimal = Decimal("0")
    distance_commission: Decimal = Decimal("0")
    surge_amount: Decimal = Decimal("0")
    cash_order: bool = False


class TipDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["tip"] = "tip"
    order_id: str
    source: str = "customer"


class AdjustmentDetails(BaseModel):
    """Operator bonus or deduction."""

    model_config = ConfigDict(frozen=True)

    type: Literal["adjustment"] = "adjustment"
    reason: str = ""
    operator_id: Optional[str] = None


class WithdrawalDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["withdrawal"] = "withdrawal"
    payout_reference: Optional[str] = None


class CorrectionDetails(BaseModel):
    """Refunds, credits and debits, including settlement adjustments and reversals."""

    model_config = ConfigDict(frozen=True)

    type: Literal["correction"] = "correction"
    order_id: Optional[str] = None
    reason: str = ""
    reverses_transaction_id: Optional[str] = None


TransactionDetails = Annotated[
    Union[PaymentDetails, TipDetails, AdjustmentDetails, WithdrawalDetails, CorrectionDetails],
    Field(discriminator="type"),
]

DETAILS_BY_KIND: dict[TransactionKind, type[BaseModel]] = {
    TransactionKind.PAYMENT: PaymentDetails,
    TransactionKind.TIP: TipDetails,
    TransactionKind.BONUS: AdjustmentDetails,
    TransactionKind.DEDUCTION: AdjustmentDetails,
    TransactionKind.WITHDRAWAL: WithdrawalDetails,
    TransactionKind.REFUND: CorrectionDetails,
    TransactionKind.CREDIT: CorrectionDetails,
    TransactionKind.DEBIT: CorrectionDetails,
}


class WalletTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    amount: Decimal
    kind: TransactionKind
    status: TransactionStatus = TransactionStatus.PENDING
    details: TransactionDetails
    idempotency_key: Optional[str] = None
    description: str = ""
    created_at: datetime = Field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def order_id(self) -> Optional[str]:
        return getattr(self.details, "order_id", None)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.kind in CREDIT_KINDS else -self.amount


class CashMovement(BaseModel):
    """Physical cash collected on a COD order (+) or remitted to the platform (-)."""

    model_config = ConfigDict(frozen=True)

    movement_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    amount: Decimal
    order_id: Optional[str] = None
    reason: str = ""
    idempotency_key: Optional[str] = None
    override: bool = False
    created_at: datetime = Field(default_factory=_now)


class Wallet(BaseModel):
    model_config = ConfigDict(frozen=True)

    courier_id: str
    total_balance: Decimal = Decimal("0.00")
    total_earned: Decimal = Decimal("0.00")
    total_withdrawn: Decimal = Decimal("0.00")
    cash_in_hand: Decimal = Decimal("0.00")
    cash_limit: Decimal = Decimal("750.00")
    version: int = 0
    transactions: tuple[WalletTransaction, ...] = ()
    cash_movements: tuple[CashMovement, ...] = ()

    def find_transaction(self, transaction_id: str) -> Optional[WalletTransaction]:
        for transaction in self.transactions:
            if transaction.transaction_id == transaction_id:
                return transaction
        return None

    def transactions_for_order(self, order_id: str) -> list[WalletTransaction]:
        return [transaction for transaction in self.transactions if transaction.order_id == order_id]

    def has_key(self, idempotency_key: str) -> bool:
        return any(transaction.idempotency_key == idempotency_key for transaction in self.transactions) or any(
            movement.idempotency_key == idempotency_key for movement in self.cash_movements
        )


class LedgerTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_balance: Decimal = Decimal("0.00")
    total_earned: Decimal = Decimal("0.00")
    total_withdrawn: Decimal = Decimal("0.00")
    cash_in_hand: Decimal = Decimal("0.00")


class DiscrepancyReport(BaseModel):
    courier_id: str
    wallet_version: int
    stored: LedgerTotals
    recomputed: LedgerTotals
    differences: dict[str, Decimal] = Field(default_factory=dict)
    checked_at: datetime = Field(default_factory=_now)

    @property
    def is_consistent(self) -> bool:
        return not self.differences
