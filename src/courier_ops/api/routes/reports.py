"""Wallet report export endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, status

from ...persistence.repositories import get_repositories
from ...schemas.reports import WalletExportRequest, WalletExportResponse
from ...services.reports import export_wallet_summaries, report_output_root

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("/wallets/export", response_model=WalletExportResponse, status_code=status.HTTP_200_OK)
def export_wallets(payload: Optional[WalletExportRequest] = None) -> WalletExportResponse:
    wallets = get_repositories().wallets.list()
    if payload is not None and payload.courier_ids:
        wanted = set(payload.courier_ids)
        wallets = [wallet for wallet in wallets if wallet.courier_id in wanted]
    result = export_wallet_summaries(wallets, report_output_root())
    return WalletExportResponse.model_validate(result)
