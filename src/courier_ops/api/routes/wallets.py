"""API routes for courier wallets."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status

from ...models.ledger import DiscrepancyReport, Wallet
from ...schemas.wallets import (
    AdjustmentRequest,
    CashRemittanceRequest,
    RepairRequest,
    WalletResponse,
    WalletSummaryModel,
)
from ...services.ledger import wallet as ledger
from ...services.ledger.service import get_wallet_service
from ...services.reports.earnings import wallet_summary

router = APIRouter(prefix="/wallets", tags=["wallets"])


def _wallet_response(wallet: Wallet) -> WalletResponse:
    return WalletResponse(
        summary=WalletSummaryModel(**wallet_summary(wallet)),
        version=wallet.version,
        transactions=list(wallet.transactions),
    )


def _ledger_http_error(exc: ledger.LedgerError) -> HTTPException:
    if isinstance(exc, ledger.TransactionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ledger.InvalidTransactionError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("/{courier_id}", response_model=WalletResponse, status_code=status.HTTP_200_OK)
def get_wallet(courier_id: str) -> WalletResponse:
    return _wallet_response(get_wallet_service().get_wallet(courier_id))


@router.post("/{courier_id}/adjustments", response_model=WalletResponse, status_code=status.HTTP_200_OK)
def adjust_wallet(courier_id: str, payload: AdjustmentRequest) -> WalletResponse:
    """Operator bonus, deduction or withdrawal. Amounts must be positive."""
    try:
        wallet = get_wallet_service().adjust(
            courier_id,
            payload.kind,
            payload.amount,
            reason=payload.reason,
            operator_id=payload.operator_id,
            payout_reference=payload.payout_reference,
            idempotency_key=payload.idempotency_key,
        )
    except ledger.LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    except Exception as exc:
        logging.exception(f"Wallet adjustment failed for {courier_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Wallet adjustment failed: {exc}",
        ) from exc
    return _wallet_response(wallet)


@router.post(
    "/{courier_id}/transactions/{transaction_id}/complete",
    response_model=WalletResponse,
    status_code=status.HTTP_200_OK,
)
def complete_transaction(courier_id: str, transaction_id: str) -> WalletResponse:
    try:
        wallet = get_wallet_service().complete(courier_id, transaction_id)
    except ledger.LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    return _wallet_response(wallet)


@router.post(
    "/{courier_id}/transactions/{transaction_id}/fail",
    response_model=WalletResponse,
    status_code=status.HTTP_200_OK,
)
def fail_transaction(courier_id: str, transaction_id: str) -> WalletResponse:
    try:
        wallet = get_wallet_service().fail(courier_id, transaction_id)
    except ledger.LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    return _wallet_response(wallet)


@router.post("/{courier_id}/cash-remittance", response_model=WalletResponse, status_code=status.HTTP_200_OK)
def remit_cash(courier_id: str, payload: CashRemittanceRequest) -> WalletResponse:
    try:
        wallet = get_wallet_service().remit_cash(
            courier_id, payload.amount, reference=payload.reference, idempotency_key=payload.idempotency_key
        )
    except ledger.LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    return _wallet_response(wallet)


@router.get("/{courier_id}/reconcile", response_model=DiscrepancyReport, status_code=status.HTTP_200_OK)
def reconcile_wallet(courier_id: str) -> DiscrepancyReport:
    """Compare cached aggregates with the transaction log. Read-only."""
    return get_wallet_service().reconcile(courier_id)


@router.post("/{courier_id}/repair", response_model=WalletResponse, status_code=status.HTTP_200_OK)
def repair_wallet(courier_id: str, payload: Optional[RepairRequest] = None) -> WalletResponse:
    operator_id = payload.operator_id if payload else None
    wallet = get_wallet_service().repair(courier_id, operator_id=operator_id)
    return _wallet_response(wallet)
