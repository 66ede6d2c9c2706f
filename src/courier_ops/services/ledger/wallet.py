"""Pure ledger operations over immutable wallets.

Every operation returns a new ``Wallet`` with its version bumped; the caller is
responsible for persisting it atomically (see ``WalletService``).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from ...models.ledger import (
    CREDIT_KINDS,
    DETAILS_BY_KIND,
    EARNING_KINDS,
    CashMovement,
    DiscrepancyReport,
    LedgerTotals,
    TransactionKind,
    TransactionStatus,
    Wallet,
    WalletTransaction,
    to_money,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class LedgerError(Exception):
    """Base class for ledger rule violations."""


class InvalidTransactionError(LedgerError):
    pass


class InvalidTransitionError(LedgerError):
    pass


class TransactionNotFoundError(LedgerError):
    pass


class InsufficientBalanceError(LedgerError):
    pass


class CashLimitExceededError(LedgerError):
    pass


class ConcurrentUpdateError(LedgerError):
    """The wallet kept changing underneath an update until the retry budget ran out."""


def new_wallet(courier_id: str, cash_limit: Decimal | float = Decimal("750")) -> Wallet:
    return Wallet(courier_id=courier_id, cash_limit=to_money(cash_limit))


def _validate(transaction: WalletTransaction) -> None:
    if transaction.amount <= 0:
        raise InvalidTransactionError(f"amount must be > 0, got {transaction.amount}")
    try:
        kind = TransactionKind(transaction.kind)
    except ValueError as exc:
        raise InvalidTransactionError(f"unrecognized transaction kind {transaction.kind!r}") from exc
    expected = DETAILS_BY_KIND[kind]
    if not isinstance(transaction.details, expected):
        raise InvalidTransactionError(
            f"{kind.value} transactions carry {expected.__name__}, got {type(transaction.details).__name__}"
        )
    if transaction.status == TransactionStatus.FAILED:
        raise InvalidTransactionError("cannot append a transaction in failed state")


def _apply_effect(wallet: Wallet, transaction: WalletTransaction) -> dict:
    """Aggregate updates for a transaction entering the completed state."""

    if transaction.kind == TransactionKind.WITHDRAWAL and transaction.amount > wallet.total_balance:
        raise InsufficientBalanceError(
            f"withdrawal of {transaction.amount} exceeds balance {wallet.total_balance} for {wallet.courier_id}"
        )
    updates = {"total_balance": to_money(wallet.total_balance + transaction.signed_amount)}
    if transaction.kind in EARNING_KINDS:
        updates["total_earned"] = to_money(wallet.total_earned + transaction.amount)
    if transaction.kind == TransactionKind.WITHDRAWAL:
        updates["total_withdrawn"] = to_money(wallet.total_withdrawn + transaction.amount)
    return updates


def append_transaction(wallet: Wallet, transaction: WalletTransaction, *, now: datetime | None = None) -> Wallet:
    """Append a transaction; completed ones update the aggregates in the same step.

    Re-submitting a transaction whose idempotency key is already on the wallet
    is a no-op and returns the wallet unchanged.
    """

    _validate(transaction)
    if transaction.idempotency_key and wallet.has_key(transaction.idempotency_key):
        logger.info(f"Duplicate ledger append ignored for {wallet.courier_id} (key={transaction.idempotency_key})")
        return wallet
    if wallet.find_transaction(transaction.transaction_id) is not None:
        raise InvalidTransactionError(f"transaction {transaction.transaction_id} already recorded")

    transaction = transaction.model_copy(update={"amount": to_money(transaction.amount)})
    updates: dict = {}
    if transaction.status == TransactionStatus.COMPLETED:
        updates = _apply_effect(wallet, transaction)
        if transaction.completed_at is None:
            transaction = transaction.model_copy(update={"completed_at": now or datetime.now(timezone.utc)})

    updates["transactions"] = wallet.transactions + (transaction,)
    updates["version"] = wallet.version + 1
    return wallet.model_copy(update=updates)


def _replace_transaction(wallet: Wallet, updated: WalletTransaction) -> tuple[WalletTransaction, ...]:
    return tuple(
        updated if transaction.transaction_id == updated.transaction_id else transaction
        for transaction in wallet.transactions
    )


def _require(wallet: Wallet, transaction_id: str) -> WalletTransaction:
    transaction = wallet.find_transaction(transaction_id)
    if transaction is None:
        raise TransactionNotFoundError(f"transaction {transaction_id} not found on wallet {wallet.courier_id}")
    return transaction


def transition_to_completed(wallet: Wallet, transaction_id: str, *, now: datetime | None = None) -> Wallet:
    """Move a pending transaction to completed, applying its effect exactly once."""

    transaction = _require(wallet, transaction_id)
    if transaction.status == TransactionStatus.COMPLETED:
        return wallet
    if transaction.status == TransactionStatus.FAILED:
        raise InvalidTransitionError(f"transaction {transaction_id} is failed and cannot complete")

    updates = _apply_effect(wallet, transaction)
    completed = transaction.model_copy(
        update={"status": TransactionStatus.COMPLETED, "completed_at": now or datetime.now(timezone.utc)}
    )
    updates["transactions"] = _replace_transaction(wallet, completed)
    updates["version"] = wallet.version + 1
    return wallet.model_copy(update=updates)


def transition_to_failed(wallet: Wallet, transaction_id: str) -> Wallet:
    transaction = _require(wallet, transaction_id)
    if transaction.status == TransactionStatus.FAILED:
        return wallet
    if transaction.status == TransactionStatus.COMPLETED:
        raise InvalidTransitionError(f"transaction {transaction_id} is completed and cannot fail")

    failed = transaction.model_copy(update={"status": TransactionStatus.FAILED})
    return wallet.model_copy(
        update={"transactions": _replace_transaction(wallet, failed), "version": wallet.version + 1}
    )


def record_cash_movement(wallet: Wallet, movement: CashMovement) -> Wallet:
    """Record physical cash collected (+) or remitted (-).

    Collections may not push cash in hand above the wallet's cash limit unless
    the movement carries an explicit operator override.
    """

    if movement.amount == 0:
        raise InvalidTransactionError("cash movement amount must be non-zero")
    if movement.idempotency_key and wallet.has_key(movement.idempotency_key):
        logger.info(f"Duplicate cash movement ignored for {wallet.courier_id} (key={movement.idempotency_key})")
        return wallet

    movement = movement.model_copy(update={"amount": to_money(movement.amount)})
    cash_in_hand = to_money(wallet.cash_in_hand + movement.amount)
    if movement.amount > 0 and cash_in_hand > wallet.cash_limit and not movement.override:
        raise CashLimitExceededError(
            f"collecting {movement.amount} would raise cash in hand to {cash_in_hand}, "
            f"above the limit of {wallet.cash_limit} for {wallet.courier_id}"
        )
    if cash_in_hand < 0:
        raise InvalidTransactionError(
            f"remittance of {-movement.amount} exceeds cash in hand {wallet.cash_in_hand} for {wallet.courier_id}"
        )
    return wallet.model_copy(
        update={
            "cash_in_hand": cash_in_hand,
            "cash_movements": wallet.cash_movements + (movement,),
            "version": wallet.version + 1,
        }
    )


def fold(transactions: Iterable[WalletTransaction], movements: Iterable[CashMovement] = ()) -> LedgerTotals:
    """Recompute wallet aggregates purely from the logs."""

    balance = earned = withdrawn = ZERO
    for transaction in transactions:
        if transaction.status != TransactionStatus.COMPLETED:
            continue
        balance += transaction.amount if transaction.kind in CREDIT_KINDS else -transaction.amount
        if transaction.kind in EARNING_KINDS:
            earned += transaction.amount
        if transaction.kind == TransactionKind.WITHDRAWAL:
            withdrawn += transaction.amount
    cash = sum((movement.amount for movement in movements), ZERO)
    return LedgerTotals(
        total_balance=to_money(balance),
        total_earned=to_money(earned),
        total_withdrawn=to_money(withdrawn),
        cash_in_hand=to_money(cash),
    )


def stored_totals(wallet: Wallet) -> LedgerTotals:
    return LedgerTotals(
        total_balance=wallet.total_balance,
        total_earned=wallet.total_earned,
        total_withdrawn=wallet.total_withdrawn,
        cash_in_hand=wallet.cash_in_hand,
    )


def reconcile(wallet: Wallet) -> DiscrepancyReport:
    """Compare stored aggregates with the fold over the logs. Never writes."""

    stored = stored_totals(wallet)
    recomputed = fold(wallet.transactions, wallet.cash_movements)
    differences = {
        name: to_money(getattr(stored, name) - getattr(recomputed, name))
        for name in ("total_balance", "total_earned", "total_withdrawn", "cash_in_hand")
        if getattr(stored, name) != getattr(recomputed, name)
    }
    return DiscrepancyReport(
        courier_id=wallet.courier_id,
        wallet_version=wallet.version,
        stored=stored,
        recomputed=recomputed,
        differences=differences,
    )


def repair(wallet: Wallet) -> Wallet:
    """Reset cached aggregates to the fold. Operator action only."""

    totals = fold(wallet.transactions, wallet.cash_movements)
    return wallet.model_copy(update={**totals.model_dump(), "version": wallet.version + 1})
