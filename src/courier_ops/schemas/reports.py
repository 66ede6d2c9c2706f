"""Report export schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class WalletExportRequest(BaseModel):
    courier_ids: Optional[List[str]] = Field(default=None, description="Limit the export to these couriers.")


class WalletExportResponse(BaseModel):
    run_id: str
    wallet_count: int
    files: List[str]
    directory: str
