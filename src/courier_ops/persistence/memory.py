"""Thread-safe in-memory repositories used when no database is configured."""

from __future__ import annotations

import copy
import threading
from typing import Callable, Optional

from ..models.domain import Courier, Order, Zone
from ..models.ledger import Wallet
from ..models.settlement import Settlement, SubsidyEntry
from ..services.audit import AuditRecord
from ..services.ledger.wallet import new_wallet
from ..services.locks import KeyedLock


class MemoryOrderRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._orders: dict[str, Order] = {}

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return copy.deepcopy(order) if order is not None else None

    def save(self, order: Order) -> Order:
        with self._lock:
            self._orders[order.order_id] = copy.deepcopy(order)
        return order

    def list_by_courier(self, courier_id: str) -> list[Order]:
        with self._lock:
            return [copy.deepcopy(order) for order in self._orders.values() if order.courier_id == courier_id]


class MemoryZoneRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._zones: dict[str, Zone] = {}

    def get(self, zone_id: str) -> Optional[Zone]:
        with self._lock:
            return self._zones.get(zone_id)

    def save(self, zone: Zone) -> Zone:
        with self._lock:
            self._zones[zone.zone_id] = zone
        return zone

    def list(self) -> list[Zone]:
        with self._lock:
            return list(self._zones.values())


class MemoryCourierRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._couriers: dict[str, Courier] = {}

    def get(self, courier_id: str) -> Optional[Courier]:
        with self._lock:
            courier = self._couriers.get(courier_id)
            return copy.deepcopy(courier) if courier is not None else None

    def save(self, courier: Courier) -> Courier:
        with self._lock:
            self._couriers[courier.courier_id] = copy.deepcopy(courier)
        return courier

    def list_available(self) -> list[Courier]:
        """Couriers flagged online, active and approved; position checks happen in the pool."""
        with self._lock:
            return [copy.deepcopy(courier) for courier in self._couriers.values() if courier.is_available]


class MemoryWalletRepository:
    def __init__(self, default_cash_limit: float = 750.0) -> None:
        self.default_cash_limit = default_cash_limit
        self._lock = threading.Lock()
        self._wallet_locks = KeyedLock()
        self._wallets: dict[str, Wallet] = {}

    def get(self, courier_id: str) -> Optional[Wallet]:
        with self._lock:
            return self._wallets.get(courier_id)

    def list(self) -> list[Wallet]:
        with self._lock:
            return list(self._wallets.values())

    def save(self, wallet: Wallet) -> Wallet:
        with self._lock:
            self._wallets[wallet.courier_id] = wallet
        return wallet

    def update(self, courier_id: str, mutate: Callable[[Wallet], Wallet]) -> Wallet:
        """Run ``mutate`` against the current wallet while holding that wallet's lock."""
        with self._wallet_locks.hold(courier_id):
            current = self.get(courier_id) or new_wallet(courier_id, self.default_cash_limit)
            updated = mutate(current)
            if updated is not current:
                self.save(updated)
            return updated


class MemorySettlementRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._settlements: dict[str, Settlement] = {}

    def get(self, order_id: str) -> Optional[Settlement]:
        with self._lock:
            return self._settlements.get(order_id)

    def upsert(self, settlement: Settlement) -> Settlement:
        with self._lock:
            self._settlements[settlement.order_id] = settlement
        return settlement

    def list(self) -> list[Settlement]:
        with self._lock:
            return list(self._settlements.values())


class MemorySubsidyRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, SubsidyEntry] = {}

    def get(self, order_id: str) -> Optional[SubsidyEntry]:
        with self._lock:
            return self._entries.get(order_id)

    def upsert(self, entry: SubsidyEntry) -> SubsidyEntry:
        with self._lock:
            self._entries[entry.order_id] = entry
        return entry

    def delete(self, order_id: str) -> None:
        with self._lock:
            self._entries.pop(order_id, None)

    def list(self) -> list[SubsidyEntry]:
        with self._lock:
            return list(self._entries.values())


class MemoryAuditRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[AuditRecord] = []

    def add(self, record: AuditRecord) -> None:
        with self._lock:
            self._records.append(record)

    def list(self, event: Optional[str] = None, subject_id: Optional[str] = None) -> list[AuditRecord]:
        with self._lock:
            return [
                record
                for record in self._records
                if (event is None or record.event == event) and (subject_id is None or record.subject_id == subject_id)
            ]
