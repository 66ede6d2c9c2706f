"""Wallet earnings summaries exported as CSV and XLSX artifacts."""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Sequence

from openpyxl import Workbook

from ...config import settings
from ...models.ledger import TransactionKind, TransactionStatus, Wallet, to_money

SUMMARY_COLUMNS = [
    "courier_id",
    "total_balance",
    "pocket_balance",
    "cash_in_hand",
    "cash_limit",
    "remaining_cash_limit",
    "total_earned",
    "tips_total",
    "bonus_total",
    "total_withdrawn",
    "pending_amount",
    "transaction_count",
]


def _completed_sum(wallet: Wallet, kind: TransactionKind) -> Decimal:
    return sum(
        (t.amount for t in wallet.transactions if t.kind == kind and t.status == TransactionStatus.COMPLETED),
        Decimal("0"),
    )


def wallet_summary(wallet: Wallet) -> dict:
    """Flatten a wallet into the figures operators reconcile against."""

    pending = sum(
        (t.signed_amount for t in wallet.transactions if t.status == TransactionStatus.PENDING), Decimal("0")
    )
    return {
        "courier_id": wallet.courier_id,
        "total_balance": wallet.total_balance,
        # what the courier is owed once the cash they hold is netted off
        "pocket_balance": to_money(wallet.total_balance - wallet.cash_in_hand),
        "cash_in_hand": wallet.cash_in_hand,
        "cash_limit": wallet.cash_limit,
        "remaining_cash_limit": to_money(max(Decimal("0"), wallet.cash_limit - wallet.cash_in_hand)),
        "total_earned": wallet.total_earned,
        "tips_total": to_money(_completed_sum(wallet, TransactionKind.TIP)),
        "bonus_total": to_money(_completed_sum(wallet, TransactionKind.BONUS)),
        "total_withdrawn": wallet.total_withdrawn,
        "pending_amount": to_money(pending),
        "transaction_count": len(wallet.transactions),
    }


def summaries_to_csv(rows: Sequence[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=SUMMARY_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({key: str(row[key]) for key in SUMMARY_COLUMNS})
    return buffer.getvalue()


def summaries_to_xlsx(rows: Sequence[dict]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Wallets"
    sheet.append(SUMMARY_COLUMNS)
    for row in rows:
        sheet.append([float(row[key]) if isinstance(row[key], Decimal) else row[key] for key in SUMMARY_COLUMNS])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def report_output_root() -> Path:
    return settings.data_root.resolve() / "outputs"


def make_run_directory(output_root: Path, prefix: str = "wallets") -> Path:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    path = output_root / f"{prefix}_{timestamp}"
    path.mkdir(parents=True, exist_ok=False)
    return path


def export_wallet_summaries(wallets: Iterable[Wallet], output_root: Path | None = None) -> dict:
    """Write summary CSV/XLSX/JSON into a fresh run directory and describe the result."""

    rows = sorted((wallet_summary(wallet) for wallet in wallets), key=lambda row: row["courier_id"])
    run_dir = make_run_directory(output_root or report_output_root())

    csv_path = run_dir / "wallets.csv"
    xlsx_path = run_dir / "wallets.xlsx"
    json_path = run_dir / "summary.json"
    with csv_path.open("w", encoding="utf-8", newline="") as handle:
        handle.write(summaries_to_csv(rows))
    xlsx_path.write_bytes(summaries_to_xlsx(rows))
    with json_path.open("w", encoding="utf-8") as handle:
        json.dump({"wallet_count": len(rows), "wallets": rows}, handle, ensure_ascii=False, indent=2, default=str)

    return {
        "run_id": run_dir.name,
        "wallet_count": len(rows),
        "files": [csv_path.name, xlsx_path.name, json_path.name],
        "directory": str(run_dir),
    }
