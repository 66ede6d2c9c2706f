"""Structured audit records for events operators need to query later."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Protocol

from pydantic import BaseModel, Field

AuditEvent = Literal[
    "fallback_used",
    "cash_limit_exceeded",
    "negative_margin",
    "duplicate_append",
    "ledger_discrepancy",
    "repair",
    "settlement_reversed",
]


class AuditRecord(BaseModel):
    event: AuditEvent
    subject_id: str
    order_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuditStore(Protocol):
    def add(self, record: AuditRecord) -> None: ...

    def list(self, event: Optional[str] = None, subject_id: Optional[str] = None) -> list[AuditRecord]: ...


class AuditTrail:
    """Writes audit records to the configured store and mirrors them to the log."""

    def __init__(self, store: AuditStore) -> None:
        self.store = store

    def record(self, event: AuditEvent, subject_id: str, *, order_id: str | None = None, **details: Any) -> AuditRecord:
        record = AuditRecord(event=event, subject_id=subject_id, order_id=order_id, details=details)
        self.store.add(record)
        logging.info(f"Audit {event} for {subject_id} (order={order_id}): {details}")
        return record

    def events(self, event: str | None = None, subject_id: str | None = None) -> list[AuditRecord]:
        return self.store.list(event=event, subject_id=subject_id)
