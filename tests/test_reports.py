import csv
import io
import json
from decimal import Decimal
from pathlib import Path

from openpyxl import load_workbook

from courier_ops.models.ledger import (
    AdjustmentDetails,
    CashMovement,
    PaymentDetails,
    TipDetails,
    TransactionKind,
    TransactionStatus,
    WalletTransaction,
)
from courier_ops.services.ledger import wallet as ledger
from courier_ops.services.reports import export_wallet_summaries, wallet_summary
from courier_ops.services.reports.earnings import SUMMARY_COLUMNS, make_run_directory, summaries_to_csv


def _wallet(courier_id: str = "C1"):
    wallet = ledger.new_wallet(courier_id, Decimal("750"))
    for transaction in (
        WalletTransaction(
            amount=Decimal("25.30"),
            kind=TransactionKind.PAYMENT,
            status=TransactionStatus.COMPLETED,
            details=PaymentDetails(order_id="O1", cash_order=True),
        ),
        WalletTransaction(
            amount=Decimal("10"),
            kind=TransactionKind.TIP,
            status=TransactionStatus.COMPLETED,
            details=TipDetails(order_id="O1"),
        ),
        WalletTransaction(
            amount=Decimal("50"),
            kind=TransactionKind.BONUS,
            status=TransactionStatus.COMPLETED,
            details=AdjustmentDetails(reason="weekly target"),
        ),
        WalletTransaction(
            amount=Decimal("21"),
            kind=TransactionKind.PAYMENT,
            status=TransactionStatus.PENDING,
            details=PaymentDetails(order_id="O2"),
        ),
    ):
        wallet = ledger.append_transaction(wallet, transaction)
    return ledger.record_cash_movement(wallet, CashMovement(amount=Decimal("248"), order_id="O1"))


def test_wallet_summary_figures():
    summary = wallet_summary(_wallet())

    assert summary["total_balance"] == Decimal("85.30")
    assert summary["pocket_balance"] == Decimal("-162.70")
    assert summary["cash_in_hand"] == Decimal("248.00")
    assert summary["remaining_cash_limit"] == Decimal("502.00")
    assert summary["tips_total"] == Decimal("10.00")
    assert summary["bonus_total"] == Decimal("50.00")
    assert summary["pending_amount"] == Decimal("21.00")
    assert summary["transaction_count"] == 4


def test_remaining_cash_limit_never_negative():
    wallet = ledger.record_cash_movement(
        ledger.new_wallet("C1", Decimal("100")), CashMovement(amount=Decimal("150"), override=True)
    )
    assert wallet_summary(wallet)["remaining_cash_limit"] == Decimal("0.00")


def test_summaries_to_csv_has_header_and_rows():
    content = summaries_to_csv([wallet_summary(_wallet("C1")), wallet_summary(_wallet("C2"))])
    rows = list(csv.DictReader(io.StringIO(content)))

    assert list(rows[0].keys()) == SUMMARY_COLUMNS
    assert [row["courier_id"] for row in rows] == ["C1", "C2"]
    assert rows[0]["total_balance"] == "85.30"


def test_export_writes_artifacts(tmp_path: Path):
    result = export_wallet_summaries([_wallet("C2"), _wallet("C1")], tmp_path / "outputs")

    run_dir = Path(result["directory"])
    assert result["wallet_count"] == 2
    assert result["files"] == ["wallets.csv", "wallets.xlsx", "summary.json"]
    assert run_dir.parent == tmp_path / "outputs"
    assert result["run_id"].startswith("wallets_")

    summary = json.loads((run_dir / "summary.json").read_text(encoding="utf-8"))
    assert [row["courier_id"] for row in summary["wallets"]] == ["C1", "C2"]
    assert summary["wallets"][0]["cash_in_hand"] == "248.00"

    sheet = load_workbook(run_dir / "wallets.xlsx").active
    assert sheet.title == "Wallets"
    assert [cell.value for cell in sheet[1]] == SUMMARY_COLUMNS
    assert sheet.cell(row=2, column=2).value == 85.3


def test_export_with_no_wallets(tmp_path: Path):
    result = export_wallet_summaries([], tmp_path / "outputs")
    assert result["wallet_count"] == 0


def test_run_directories_are_unique(tmp_path: Path):
    first = make_run_directory(tmp_path / "outputs", prefix="wallets_test")
    second = make_run_directory(tmp_path / "outputs", prefix="wallets_test")

    assert first.is_dir() and second.is_dir()
    assert first != second
    assert first.parent == tmp_path / "outputs"
