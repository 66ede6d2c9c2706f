"""Wallet service: every ledger mutation as one atomic read-modify-write."""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Callable, Literal, Optional

from ...models.ledger import (
    AdjustmentDetails,
    CashMovement,
    DiscrepancyReport,
    TransactionKind,
    TransactionStatus,
    Wallet,
    WalletTransaction,
    WithdrawalDetails,
    to_money,
)
from ...persistence.repositories import Repositories, get_repositories
from ..audit import AuditTrail
from . import wallet as ledger

logger = logging.getLogger(__name__)

AdjustmentKind = Literal["bonus", "deduction", "withdrawal"]


class WalletService:
    def __init__(self, repositories: Repositories) -> None:
        self.repositories = repositories
        self.wallets = repositories.wallets
        self.audit = AuditTrail(repositories.audit)

    def get_wallet(self, courier_id: str) -> Wallet:
        return self.wallets.get(courier_id) or ledger.new_wallet(courier_id, self.wallets.default_cash_limit)

    def apply(self, courier_id: str, mutate: Callable[[Wallet], Wallet]) -> Wallet:
        """Run a pure ledger mutation atomically against the stored wallet."""
        return self.wallets.update(courier_id, mutate)

    def post(self, courier_id: str, transaction: WalletTransaction) -> Wallet:
        duplicate = False

        def mutate(wallet: Wallet) -> Wallet:
            nonlocal duplicate
            updated = ledger.append_transaction(wallet, transaction)
            duplicate = updated is wallet
            return updated

        wallet = self.apply(courier_id, mutate)
        if duplicate:
            self.audit.record(
                "duplicate_append",
                courier_id,
                order_id=transaction.order_id,
                idempotency_key=transaction.idempotency_key,
            )
        return wallet

    def complete(self, courier_id: str, transaction_id: str) -> Wallet:
        return self.apply(courier_id, lambda wallet: ledger.transition_to_completed(wallet, transaction_id))

    def fail(self, courier_id: str, transaction_id: str) -> Wallet:
        return self.apply(courier_id, lambda wallet: ledger.transition_to_failed(wallet, transaction_id))

    def adjust(
        self,
        courier_id: str,
        kind: AdjustmentKind,
        amount: Decimal,
        *,
        reason: str = "",
        operator_id: Optional[str] = None,
        payout_reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Wallet:
        """Operator bonus, deduction or withdrawal, completed immediately."""

        if kind == "withdrawal":
            details = WithdrawalDetails(payout_reference=payout_reference)
        else:
            details = AdjustmentDetails(reason=reason, operator_id=operator_id)
        transaction = WalletTransaction(
            amount=amount,
            kind=TransactionKind(kind),
            status=TransactionStatus.COMPLETED,
            details=details,
            idempotency_key=idempotency_key,
            description=reason,
        )
        wallet = self.post(courier_id, transaction)
        logger.info(f"{kind} of {amount} applied to wallet {courier_id} by {operator_id or 'system'}")
        return wallet

    def remit_cash(
        self, courier_id: str, amount: Decimal, *, reference: str = "", idempotency_key: Optional[str] = None
    ) -> Wallet:
        """Courier hands collected cash back to the platform."""

        if amount <= 0:
            raise ledger.InvalidTransactionError(f"remittance amount must be > 0, got {amount}")
        movement = CashMovement(amount=-to_money(amount), reason=reference or "remittance", idempotency_key=idempotency_key)
        return self.apply(courier_id, lambda wallet: ledger.record_cash_movement(wallet, movement))

    def reconcile(self, courier_id: str) -> DiscrepancyReport:
        report = ledger.reconcile(self.get_wallet(courier_id))
        if not report.is_consistent:
            logger.warning(f"Ledger discrepancy on wallet {courier_id}: {report.differences}")
            self.audit.record(
                "ledger_discrepancy",
                courier_id,
                wallet_version=report.wallet_version,
                differences={name: str(value) for name, value in report.differences.items()},
            )
        return report

    def repair(self, courier_id: str, *, operator_id: Optional[str] = None) -> Wallet:
        before = ledger.reconcile(self.get_wallet(courier_id))
        wallet = self.apply(courier_id, ledger.repair)
        self.audit.record(
            "repair",
            courier_id,
            operator_id=operator_id,
            differences={name: str(value) for name, value in before.differences.items()},
        )
        return wallet


@lru_cache()
def get_wallet_service() -> WalletService:
    return WalletService(get_repositories())
