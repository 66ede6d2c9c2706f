from decimal import Decimal

import pytest

from courier_ops.models.ledger import (
    AdjustmentDetails,
    CashMovement,
    CorrectionDetails,
    PaymentDetails,
    TipDetails,
    TransactionKind,
    TransactionStatus,
    WalletTransaction,
    WithdrawalDetails,
    to_money,
)
from courier_ops.persistence.repositories import build_memory_repositories
from courier_ops.services.ledger import wallet as ledger
from courier_ops.services.ledger.service import WalletService


def payment(amount: str, status=TransactionStatus.COMPLETED, key: str | None = None) -> WalletTransaction:
    return WalletTransaction(
        amount=Decimal(amount),
        kind=TransactionKind.PAYMENT,
        status=status,
        details=PaymentDetails(order_id="O1"),
        idempotency_key=key,
    )


def tip(amount: str, status=TransactionStatus.COMPLETED) -> WalletTransaction:
    return WalletTransaction(
        amount=Decimal(amount), kind=TransactionKind.TIP, status=status, details=TipDetails(order_id="O1")
    )


@pytest.fixture
def wallet():
    return ledger.new_wallet("C1", Decimal("500"))


def test_balance_is_sum_of_completed_credits(wallet):
    wallet = ledger.append_transaction(wallet, payment("21"))
    wallet = ledger.append_transaction(wallet, tip("10"))

    assert wallet.total_balance == Decimal("31.00")
    assert wallet.total_earned == Decimal("31.00")
    assert wallet.version == 2


def test_pending_transaction_leaves_aggregates_alone(wallet):
    pending = payment("21", status=TransactionStatus.PENDING)
    wallet = ledger.append_transaction(wallet, pending)

    assert wallet.total_balance == Decimal("0.00")
    assert wallet.transactions[0].completed_at is None

    wallet = ledger.transition_to_completed(wallet, pending.transaction_id)
    assert wallet.total_balance == Decimal("21.00")
    assert wallet.transactions[0].completed_at is not None


def test_completing_twice_applies_once(wallet):
    pending = payment("21", status=TransactionStatus.PENDING)
    wallet = ledger.append_transaction(wallet, pending)
    wallet = ledger.transition_to_completed(wallet, pending.transaction_id)
    again = ledger.transition_to_completed(wallet, pending.transaction_id)

    assert again is wallet
    assert again.total_balance == Decimal("21.00")


def test_failed_transactions_cannot_complete(wallet):
    pending = payment("21", status=TransactionStatus.PENDING)
    wallet = ledger.append_transaction(wallet, pending)
    wallet = ledger.transition_to_failed(wallet, pending.transaction_id)

    with pytest.raises(ledger.InvalidTransitionError):
        ledger.transition_to_completed(wallet, pending.transaction_id)
    assert ledger.transition_to_failed(wallet, pending.transaction_id) is wallet
    assert wallet.total_balance == Decimal("0.00")


def test_completed_transactions_cannot_fail(wallet):
    done = payment("21")
    wallet = ledger.append_transaction(wallet, done)
    with pytest.raises(ledger.InvalidTransitionError):
        ledger.transition_to_failed(wallet, done.transaction_id)


def test_unknown_transaction(wallet):
    with pytest.raises(ledger.TransactionNotFoundError):
        ledger.transition_to_completed(wallet, "missing")


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_non_positive_amounts_rejected(wallet, amount):
    with pytest.raises(ledger.InvalidTransactionError):
        ledger.append_transaction(wallet, payment(amount))


def test_details_must_match_kind(wallet):
    mismatched = WalletTransaction(
        amount=Decimal("10"),
        kind=TransactionKind.PAYMENT,
        status=TransactionStatus.COMPLETED,
        details=TipDetails(order_id="O1"),
    )
    with pytest.raises(ledger.InvalidTransactionError):
        ledger.append_transaction(wallet, mismatched)


def test_cannot_append_failed_transaction(wallet):
    with pytest.raises(ledger.InvalidTransactionError):
        ledger.append_transaction(wallet, payment("10", status=TransactionStatus.FAILED))


def test_duplicate_idempotency_key_is_a_no_op(wallet):
    wallet = ledger.append_transaction(wallet, payment("21", key="settlement:O1:payment"))
    again = ledger.append_transaction(wallet, payment("21", key="settlement:O1:payment"))

    assert again is wallet
    assert len(again.transactions) == 1
    assert again.total_balance == Decimal("21.00")


def test_same_transaction_id_twice_rejected(wallet):
    transaction = payment("21")
    wallet = ledger.append_transaction(wallet, transaction)
    with pytest.raises(ledger.InvalidTransactionError):
        ledger.append_transaction(wallet, transaction)


def test_amounts_are_quantized_to_cents(wallet):
    wallet = ledger.append_transaction(wallet, payment("10.005"))
    assert wallet.transactions[0].amount == Decimal("10.01")
    assert to_money(2.675) == Decimal("2.68")


def test_debits_and_withdrawals(wallet):
    wallet = ledger.append_transaction(wallet, payment("100"))
    wallet = ledger.append_transaction(
        wallet,
        WalletTransaction(
            amount=Decimal("15"),
            kind=TransactionKind.DEDUCTION,
            status=TransactionStatus.COMPLETED,
            details=AdjustmentDetails(reason="late delivery", operator_id="ops-1"),
        ),
    )
    wallet = ledger.append_transaction(
        wallet,
        WalletTransaction(
            amount=Decimal("50"),
            kind=TransactionKind.WITHDRAWAL,
            status=TransactionStatus.COMPLETED,
            details=WithdrawalDetails(payout_reference="PO-1"),
        ),
    )

    assert wallet.total_balance == Decimal("35.00")
    assert wallet.total_earned == Decimal("100.00")
    assert wallet.total_withdrawn == Decimal("50.00")


def test_withdrawal_over_balance_rejected(wallet):
    wallet = ledger.append_transaction(wallet, payment("20"))
    with pytest.raises(ledger.InsufficientBalanceError):
        ledger.append_transaction(
            wallet,
            WalletTransaction(
                amount=Decimal("20.01"),
                kind=TransactionKind.WITHDRAWAL,
                status=TransactionStatus.COMPLETED,
                details=WithdrawalDetails(),
            ),
        )


def test_cash_movements_respect_limit(wallet):
    wallet = ledger.record_cash_movement(wallet, CashMovement(amount=Decimal("480"), order_id="O1"))
    wallet = ledger.record_cash_movement(wallet, CashMovement(amount=Decimal("20"), order_id="O2"))
    assert wallet.cash_in_hand == Decimal("500.00")

    with pytest.raises(ledger.CashLimitExceededError):
        ledger.record_cash_movement(wallet, CashMovement(amount=Decimal("0.01"), order_id="O3"))

    wallet = ledger.record_cash_movement(wallet, CashMovement(amount=Decimal("30"), order_id="O3", override=True))
    assert wallet.cash_in_hand == Decimal("530.00")


def test_remittance_cannot_exceed_cash_in_hand(wallet):
    wallet = ledger.record_cash_movement(wallet, CashMovement(amount=Decimal("40")))
    with pytest.raises(ledger.InvalidTransactionError):
        ledger.record_cash_movement(wallet, CashMovement(amount=Decimal("-41")))
    with pytest.raises(ledger.InvalidTransactionError):
        ledger.record_cash_movement(wallet, CashMovement(amount=Decimal("0")))
    assert ledger.record_cash_movement(wallet, CashMovement(amount=Decimal("-40"))).cash_in_hand == Decimal("0.00")


def test_cash_movement_idempotency(wallet):
    movement = CashMovement(amount=Decimal("40"), idempotency_key="settlement:O1:cash")
    wallet = ledger.record_cash_movement(wallet, movement)
    assert ledger.record_cash_movement(wallet, movement) is wallet


def test_reconcile_and_repair(wallet):
    wallet = ledger.append_transaction(wallet, payment("21"))
    wallet = ledger.append_transaction(wallet, tip("10"))
    assert ledger.reconcile(wallet).is_consistent

    drifted = wallet.model_copy(update={"total_balance": Decimal("311.00")})
    report = ledger.reconcile(drifted)
    assert not report.is_consistent
    assert report.differences == {"total_balance": Decimal("280.00")}
    assert report.recomputed.total_balance == Decimal("31.00")

    repaired = ledger.repair(drifted)
    assert repaired.total_balance == Decimal("31.00")
    assert repaired.version == drifted.version + 1
    assert ledger.reconcile(repaired).is_consistent


def test_fold_ignores_pending_and_failed():
    totals = ledger.fold(
        [
            payment("21"),
            payment("5", status=TransactionStatus.PENDING),
            WalletTransaction(
                amount=Decimal("3"),
                kind=TransactionKind.CREDIT,
                status=TransactionStatus.FAILED,
                details=CorrectionDetails(),
            ),
        ]
    )
    assert totals.total_balance == Decimal("21.00")


@pytest.fixture
def wallet_service():
    return WalletService(build_memory_repositories())


def test_service_records_duplicate_appends(wallet_service):
    wallet_service.post("C1", payment("21", key="k1"))
    wallet_service.post("C1", payment("21", key="k1"))

    records = wallet_service.audit.events("duplicate_append")
    assert len(records) == 1
    assert records[0].details["idempotency_key"] == "k1"
    assert wallet_service.get_wallet("C1").total_balance == Decimal("21.00")


def test_service_adjustments(wallet_service):
    wallet_service.adjust("C1", "bonus", Decimal("50"), reason="weekend target", operator_id="ops-1")
    wallet_service.adjust("C1", "deduction", Decimal("5"), reason="uniform")
    wallet = wallet_service.adjust("C1", "withdrawal", Decimal("20"), payout_reference="PO-9")

    assert wallet.total_balance == Decimal("25.00")
    assert wallet.total_earned == Decimal("50.00")
    assert wallet.total_withdrawn == Decimal("20.00")
    assert wallet.transactions[0].details.operator_id == "ops-1"


def test_service_cash_remittance(wallet_service):
    wallet_service.apply("C1", lambda w: ledger.record_cash_movement(w, CashMovement(amount=Decimal("200"))))

    wallet = wallet_service.remit_cash("C1", Decimal("150"), reference="bank-drop")
    assert wallet.cash_in_hand == Decimal("50.00")

    with pytest.raises(ledger.InvalidTransactionError):
        wallet_service.remit_cash("C1", Decimal("0"))


def test_service_reconcile_records_discrepancy(wallet_service):
    wallet_service.post("C1", payment("21"))
    repositories = wallet_service.repositories
    stored = repositories.wallets.get("C1")
    repositories.wallets.save(stored.model_copy(update={"total_earned": Decimal("99.00")}))

    report = wallet_service.reconcile("C1")
    assert not report.is_consistent
    assert wallet_service.audit.events("ledger_discrepancy")[0].details["differences"] == {"total_earned": "78.00"}

    wallet = wallet_service.repair("C1", operator_id="ops-1")
    assert wallet.total_earned == Decimal("21.00")
    assert wallet_service.reconcile("C1").is_consistent
    assert wallet_service.audit.events("repair")[0].details["operator_id"] == "ops-1"


def test_get_wallet_for_unknown_courier_is_empty(wallet_service):
    wallet = wallet_service.get_wallet("nobody")
    assert wallet.total_balance == Decimal("0.00")
    assert wallet.cash_limit == Decimal("750.00")
