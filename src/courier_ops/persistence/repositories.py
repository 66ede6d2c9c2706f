"""Repository bundle selection: Supabase when configured, in-memory otherwise."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from ..config import settings
from ..db.supabase import get_supabase_client
from . import database, memory


@dataclass(slots=True)
class Repositories:
    orders: Any
    zones: Any
    couriers: Any
    wallets: Any
    settlements: Any
    subsidies: Any
    audit: Any
    backend: str = "memory"


def build_memory_repositories() -> Repositories:
    return Repositories(
        orders=memory.MemoryOrderRepository(),
        zones=memory.MemoryZoneRepository(),
        couriers=memory.MemoryCourierRepository(),
        wallets=memory.MemoryWalletRepository(default_cash_limit=settings.default_cash_limit),
        settlements=memory.MemorySettlementRepository(),
        subsidies=memory.MemorySubsidyRepository(),
        audit=memory.MemoryAuditRepository(),
        backend="memory",
    )


def build_database_repositories(client: Any) -> Repositories:
    return Repositories(
        orders=database.DatabaseOrderRepository(client),
        zones=database.DatabaseZoneRepository(client),
        couriers=database.DatabaseCourierRepository(client),
        wallets=database.DatabaseWalletRepository(
            client,
            default_cash_limit=settings.default_cash_limit,
            max_retries=settings.ledger_max_retries,
        ),
        settlements=database.DatabaseSettlementRepository(client),
        subsidies=database.DatabaseSubsidyRepository(client),
        audit=database.DatabaseAuditRepository(client),
        backend="supabase",
    )


@lru_cache()
def get_repositories() -> Repositories:
    client = get_supabase_client()
    if client is None:
        logging.info("Using in-memory repositories")
        return build_memory_repositories()
    return build_database_repositories(client)
