from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from courier_ops.main import create_app
from courier_ops.models.domain import Coordinate, Courier
from courier_ops.persistence.repositories import get_repositories
from courier_ops.services.assignment.service import get_assignment_service
from courier_ops.services.ledger.service import get_wallet_service
from courier_ops.services.settlement.service import get_settlement_service

ORDER_PAYLOAD = {
    "order_id": "O1",
    "restaurant_location": {"lat": 22.7196, "lng": 75.8577},
    "destination": [75.8800, 22.7300],
    "payment_method": "cod",
    "pricing": {
        "subtotal": "200",
        "delivery_fee": "23",
        "tax": "15",
        "tip": "10",
        "total": "248",
        "restaurant_commission": "30",
    },
}


def _clear_caches() -> None:
    for factory in (get_settlement_service, get_wallet_service, get_assignment_service, get_repositories):
        factory.cache_clear()


@pytest.fixture(autouse=True)
def fresh_services():
    _clear_caches()
    yield
    _clear_caches()


@pytest.fixture
def couriers():
    repository = get_repositories().couriers
    repository.save(Courier(courier_id="C1", name="Asha", is_online=True, position=Coordinate(75.8690, 22.7177)))
    repository.save(Courier(courier_id="C2", name="Ravi", is_online=True, position=Coordinate(75.8900, 22.7300)))
    return repository


@pytest.fixture
def api_client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    app = create_app()
    client = TestClient(app)

    # ensure report exports land in the tmpdir
    from courier_ops.api.routes import reports

    monkeypatch.setattr(reports, "report_output_root", lambda: tmp_path / "outputs")

    return client


def test_health_endpoints(api_client: TestClient) -> None:
    assert api_client.get("/api/health").json() == {"status": "ok"}
    assert api_client.get("/").json()["status"] == "running"


def test_order_lifecycle(api_client: TestClient, couriers, tmp_path: Path) -> None:
    response = api_client.post("/api/assignments/request", json=ORDER_PAYLOAD)
    assert response.status_code == 200
    offer = response.json()
    assert offer["status"] == "offered"
    assert offer["courier_id"] == "C1"
    assert offer["fallback_used"] is False

    response = api_client.post("/api/assignments/O1/accept", json={"courier_id": "C1"})
    assert response.status_code == 200
    assert response.json()["status"] == "assigned"

    response = api_client.post("/api/settlements/O1", json={"route_distance_km": 4.66})
    assert response.status_code == 200
    settlement = response.json()
    assert Decimal(settlement["courier"]["total"]) == Decimal("35.30")
    assert Decimal(settlement["platform"]["delivery_margin"]) == Decimal("-2.30")
    assert settlement["cash_order"] is True

    wallet = api_client.get("/api/wallets/C1").json()
    assert Decimal(wallet["summary"]["total_balance"]) == Decimal("35.30")
    assert Decimal(wallet["summary"]["cash_in_hand"]) == Decimal("248.00")
    assert len(wallet["transactions"]) == 2

    response = api_client.post("/api/wallets/C1/cash-remittance", json={"amount": "248", "reference": "drop-1"})
    assert response.status_code == 200
    assert Decimal(response.json()["summary"]["cash_in_hand"]) == Decimal("0.00")

    response = api_client.get("/api/wallets/C1/reconcile")
    assert response.status_code == 200
    assert response.json()["differences"] == {}

    response = api_client.post("/api/reports/wallets/export", json={"courier_ids": ["C1"]})
    assert response.status_code == 200
    export = response.json()
    assert export["wallet_count"] == 1
    assert (Path(export["directory"]) / "wallets.csv").exists()
    assert Path(export["directory"]).parent == tmp_path / "outputs"


def test_repeat_settlement_is_stable(api_client: TestClient, couriers) -> None:
    api_client.post("/api/assignments/request", json={**ORDER_PAYLOAD, "payment_method": "online"})
    api_client.post("/api/assignments/O1/accept", json={"courier_id": "C1"})

    first = api_client.post("/api/settlements/O1", json={"route_distance_km": 4.66}).json()
    second = api_client.post("/api/settlements/O1").json()

    assert first == second
    assert api_client.get("/api/settlements/O1").json() == first
    # online payment not yet confirmed
    assert Decimal(api_client.get("/api/wallets/C1").json()["summary"]["pending_amount"]) == Decimal("35.30")

    confirmed = api_client.post("/api/settlements/O1/confirm-payment").json()
    assert confirmed["payment_confirmed"] is True
    assert Decimal(api_client.get("/api/wallets/C1").json()["summary"]["total_balance"]) == Decimal("35.30")

    reversed_ = api_client.post("/api/settlements/O1/reverse", json={"reason": "refund"}).json()
    assert reversed_["status"] == "cancelled"
    assert reversed_["total_balance"] == "0.00"
    assert api_client.post("/api/settlements/O1", params={"recompute": True}).status_code == 409


def test_candidates_and_revoke(api_client: TestClient, couriers) -> None:
    response = api_client.post("/api/assignments/candidates", json=ORDER_PAYLOAD, params={"limit": 5})
    assert response.status_code == 200
    assert [c["courier_id"] for c in response.json()["candidates"]] == ["C1", "C2"]

    api_client.post("/api/assignments/request", json=ORDER_PAYLOAD)
    assert api_client.post("/api/assignments/O1/revoke").json() == {"order_id": "O1", "revoked": True}
    assert api_client.post("/api/assignments/O1/accept", json={"courier_id": "C1"}).status_code == 409


def test_no_courier_is_not_an_error(api_client: TestClient) -> None:
    response = api_client.post("/api/assignments/request", json=ORDER_PAYLOAD)
    assert response.status_code == 200
    assert response.json()["status"] == "unassigned"


def test_unknown_zone_is_404(api_client: TestClient, couriers) -> None:
    response = api_client.post("/api/assignments/request", json={**ORDER_PAYLOAD, "zone_id": "nowhere"})
    assert response.status_code == 404


def test_missing_order_settlement_is_404(api_client: TestClient) -> None:
    assert api_client.post("/api/settlements/missing").status_code == 404


def test_wallet_adjustment_errors(api_client: TestClient) -> None:
    response = api_client.post("/api/wallets/C9/adjustments", json={"kind": "withdrawal", "amount": "100"})
    assert response.status_code == 409

    response = api_client.post("/api/wallets/C9/adjustments", json={"kind": "bonus", "amount": "0"})
    assert response.status_code == 400

    response = api_client.post("/api/wallets/C9/adjustments", json={"kind": "bonus", "amount": "25"})
    assert response.status_code == 200
    assert Decimal(response.json()["summary"]["bonus_total"]) == Decimal("25.00")

    response = api_client.post("/api/wallets/C9/transactions/unknown/complete")
    assert response.status_code == 404
