"""Supabase-backed repositories for orders, couriers, wallets and settlements."""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

from postgrest.exceptions import APIError
from supabase import Client

from ..models.domain import Courier, Order, OrderPricing, Zone
from ..models.ledger import Wallet
from ..models.settlement import Settlement, SubsidyEntry
from ..services.audit import AuditRecord
from ..services.geospatial import normalize_coordinate
from ..services.ledger.wallet import ConcurrentUpdateError, new_wallet

ORDERS_TABLE = "orders"
ZONES_TABLE = "zones"
COURIERS_TABLE = "couriers"
WALLETS_TABLE = "courier_wallets"
SETTLEMENTS_TABLE = "settlements"
SUBSIDIES_TABLE = "delivery_subsidies"
AUDIT_TABLE = "audit_records"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def order_to_row(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.order_id,
        "status": order.status,
        "courier_id": order.courier_id,
        "data": _jsonable(dataclasses.asdict(order)),
    }


def order_from_row(row: dict[str, Any]) -> Order:
    data = dict(row.get("data") or {})
    pricing = data.pop("pricing", None) or {}
    platform_fee = pricing.pop("platform_fee", None)
    data["delivered_at"] = _parse_datetime(data.get("delivered_at"))
    return Order(
        pricing=OrderPricing(
            platform_fee=Decimal(str(platform_fee)) if platform_fee is not None else None,
            **{key: Decimal(str(value)) for key, value in pricing.items()},
        ),
        **data,
    )


def courier_from_row(row: dict[str, Any]) -> Courier:
    return Courier(
        courier_id=str(row["courier_id"]),
        name=row.get("name") or "",
        phone=row.get("phone"),
        is_online=bool(row.get("is_online")),
        status=row.get("status") or "pending",
        is_active=row.get("is_active", True) is not False,
        position=normalize_coordinate(row),
        position_updated_at=_parse_datetime(row.get("position_updated_at")),
        zone_id=row.get("zone_id"),
    )


def courier_to_row(courier: Courier) -> dict[str, Any]:
    return {
        "courier_id": courier.courier_id,
        "name": courier.name,
        "phone": courier.phone,
        "is_online": courier.is_online,
        "status": courier.status,
        "is_active": courier.is_active,
        "longitude": courier.position.longitude if courier.position else None,
        "latitude": courier.position.latitude if courier.position else None,
        "position_updated_at": _jsonable(courier.position_updated_at),
        "zone_id": courier.zone_id,
    }


def zone_from_row(row: dict[str, Any]) -> Zone:
    polygon = tuple(
        point for point in (normalize_coordinate(item) for item in row.get("coordinates") or []) if point is not None
    )
    return Zone(
        zone_id=str(row["zone_id"]),
        name=row.get("name") or str(row["zone_id"]),
        polygon=polygon,
        is_active=row.get("is_active", True) is not False,
    )


class DatabaseOrderRepository:
    def __init__(self, client: Client) -> None:
        self.client = client

    def get(self, order_id: str) -> Optional[Order]:
        response = self.client.table(ORDERS_TABLE).select("*").eq("order_id", order_id).limit(1).execute()
        rows = response.data or []
        return order_from_row(rows[0]) if rows else None

    def save(self, order: Order) -> Order:
        self.client.table(ORDERS_TABLE).upsert(order_to_row(order), on_conflict="order_id").execute()
        return order

    def list_by_courier(self, courier_id: str) -> list[Order]:
        response = self.client.table(ORDERS_TABLE).select("*").eq("courier_id", courier_id).execute()
        return [order_from_row(row) for row in response.data or []]


class DatabaseZoneRepository:
    def __init__(self, client: Client) -> None:
        self.client = client

    def get(self, zone_id: str) -> Optional[Zone]:
        response = self.client.table(ZONES_TABLE).select("*").eq("zone_id", zone_id).limit(1).execute()
        rows = response.data or []
        return zone_from_row(rows[0]) if rows else None

    def save(self, zone: Zone) -> Zone:
        row = {
            "zone_id": zone.zone_id,
            "name": zone.name,
            "coordinates": [list(point) for point in zone.polygon],
            "is_active": zone.is_active,
        }
        self.client.table(ZONES_TABLE).upsert(row, on_conflict="zone_id").execute()
        return zone

    def list(self) -> list[Zone]:
        response = self.client.table(ZONES_TABLE).select("*").execute()
        return [zone_from_row(row) for row in response.data or []]


class DatabaseCourierRepository:
    def __init__(self, client: Client) -> None:
        self.client = client

    def get(self, courier_id: str) -> Optional[Courier]:
        response = self.client.table(COURIERS_TABLE).select("*").eq("courier_id", courier_id).limit(1).execute()
        rows = response.data or []
        return courier_from_row(rows[0]) if rows else None

    def save(self, courier: Courier) -> Courier:
        self.client.table(COURIERS_TABLE).upsert(courier_to_row(courier), on_conflict="courier_id").execute()
        return courier

    def list_available(self) -> list[Courier]:
        response = self.client.table(COURIERS_TABLE).select("*").eq("is_online", True).execute()
        couriers = [courier_from_row(row) for row in response.data or []]
        return [courier for courier in couriers if courier.is_available]


class DatabaseWalletRepository:
    """Wallets stored as one JSON document per courier, guarded by a version column."""

    def __init__(self, client: Client, *, default_cash_limit: float = 750.0, max_retries: int = 5) -> None:
        self.client = client
        self.default_cash_limit = default_cash_limit
        self.max_retries = max_retries

    @staticmethod
    def _row(wallet: Wallet) -> dict[str, Any]:
        return {"courier_id": wallet.courier_id, "version": wallet.version, "data": wallet.model_dump(mode="json")}

    def get(self, courier_id: str) -> Optional[Wallet]:
        response = self.client.table(WALLETS_TABLE).select("*").eq("courier_id", courier_id).limit(1).execute()
        rows = response.data or []
        return Wallet.model_validate(rows[0]["data"]) if rows else None

    def list(self) -> list[Wallet]:
        response = self.client.table(WALLETS_TABLE).select("*").execute()
        return [Wallet.model_validate(row["data"]) for row in response.data or []]

    def save(self, wallet: Wallet) -> Wallet:
        self.client.table(WALLETS_TABLE).upsert(self._row(wallet), on_conflict="courier_id").execute()
        return wallet

    def update(self, courier_id: str, mutate: Callable[[Wallet], Wallet]) -> Wallet:
        """Optimistic read-modify-write: the write only lands if the version is unchanged."""

        for attempt in range(1, self.max_retries + 1):
            current = self.get(courier_id)
            if current is None:
                fresh = new_wallet(courier_id, self.default_cash_limit)
                updated = mutate(fresh)
                if updated is fresh:
                    return fresh
                try:
                    self.client.table(WALLETS_TABLE).insert(self._row(updated)).execute()
                    return updated
                except APIError as exc:
                    logging.warning(f"Wallet {courier_id} created concurrently, retrying ({attempt}): {exc}")
                    continue

            updated = mutate(current)
            if updated is current:
                return current
            response = (
                self.client.table(WALLETS_TABLE)
                .update(self._row(updated))
                .eq("courier_id", courier_id)
                .eq("version", current.version)
                .execute()
            )
            if response.data:
                return updated
            logging.warning(f"Wallet {courier_id} version {current.version} changed underneath update, retrying ({attempt})")

        raise ConcurrentUpdateError(f"wallet {courier_id} update failed after {self.max_retries} attempts")


class DatabaseSettlementRepository:
    def __init__(self, client: Client) -> None:
        self.client = client

    def get(self, order_id: str) -> Optional[Settlement]:
        response = self.client.table(SETTLEMENTS_TABLE).select("*").eq("order_id", order_id).limit(1).execute()
        rows = response.data or []
        return Settlement.model_validate(rows[0]["data"]) if rows else None

    def upsert(self, settlement: Settlement) -> Settlement:
        row = {"order_id": settlement.order_id, "data": settlement.model_dump(mode="json")}
        self.client.table(SETTLEMENTS_TABLE).upsert(row, on_conflict="order_id").execute()
        return settlement

    def list(self) -> list[Settlement]:
        response = self.client.table(SETTLEMENTS_TABLE).select("*").execute()
        return [Settlement.model_validate(row["data"]) for row in response.data or []]


class DatabaseSubsidyRepository:
    def __init__(self, client: Client) -> None:
        self.client = client

    def get(self, order_id: str) -> Optional[SubsidyEntry]:
        response = self.client.table(SUBSIDIES_TABLE).select("*").eq("order_id", order_id).limit(1).execute()
        rows = response.data or []
        return SubsidyEntry.model_validate(rows[0]) if rows else None

    def upsert(self, entry: SubsidyEntry) -> SubsidyEntry:
        self.client.table(SUBSIDIES_TABLE).upsert(entry.model_dump(mode="json"), on_conflict="order_id").execute()
        return entry

    def delete(self, order_id: str) -> None:
        self.client.table(SUBSIDIES_TABLE).delete().eq("order_id", order_id).execute()

    def list(self) -> list[SubsidyEntry]:
        response = self.client.table(SUBSIDIES_TABLE).select("*").execute()
        return [SubsidyEntry.model_validate(row) for row in response.data or []]


class DatabaseAuditRepository:
    def __init__(self, client: Client) -> None:
        self.client = client

    def add(self, record: AuditRecord) -> None:
        self.client.table(AUDIT_TABLE).insert(record.model_dump(mode="json")).execute()

    def list(self, event: Optional[str] = None, subject_id: Optional[str] = None) -> list[AuditRecord]:
        query = self.client.table(AUDIT_TABLE).select("*")
        if event is not None:
            query = query.eq("event", event)
        if subject_id is not None:
            query = query.eq("subject_id", subject_id)
        response = query.execute()
        return [AuditRecord.model_validate(row) for row in response.data or []]


def check_tables(client: Client) -> dict[str, bool]:
    """Probe each table with a one-row select; used by the database health endpoint."""

    status: dict[str, bool] = {}
    for table in (ORDERS_TABLE, COURIERS_TABLE, WALLETS_TABLE, SETTLEMENTS_TABLE):
        try:
            client.table(table).select("*").limit(1).execute()
            status[table] = True
        except Exception as e:
            logging.warning(f"Table check failed for {table}: {e}")
            status[table] = False
    return status
