import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from courier_ops.models.domain import Order, OrderPricing
from courier_ops.models.ledger import CashMovement, PaymentDetails, TransactionKind, TransactionStatus, WalletTransaction
from courier_ops.persistence.repositories import build_memory_repositories
from courier_ops.services.ledger import wallet as ledger
from courier_ops.services.ledger.service import WalletService
from courier_ops.services.settlement.service import SettlementService


def _payment(order_id: str, key: str | None = None) -> WalletTransaction:
    return WalletTransaction(
        amount=Decimal("1.50"),
        kind=TransactionKind.PAYMENT,
        status=TransactionStatus.COMPLETED,
        details=PaymentDetails(order_id=order_id),
        idempotency_key=key,
    )


def test_parallel_appends_are_all_applied():
    service = WalletService(build_memory_repositories())

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(lambda i: service.post("C1", _payment(f"O{i}")), range(200)))

    wallet = service.get_wallet("C1")
    assert len(wallet.transactions) == 200
    assert wallet.version == 200
    assert wallet.total_balance == Decimal("300.00")
    assert service.reconcile("C1").is_consistent


def test_parallel_duplicates_apply_once():
    service = WalletService(build_memory_repositories())
    barrier = threading.Barrier(8)

    def submit(_):
        barrier.wait()
        return service.post("C1", _payment("O1", key="settlement:O1:payment"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(submit, range(8)))

    wallet = service.get_wallet("C1")
    assert len(wallet.transactions) == 1
    assert wallet.total_balance == Decimal("1.50")
    assert len(service.audit.events("duplicate_append")) == 7


def test_parallel_cash_collections_never_pass_the_limit():
    service = WalletService(build_memory_repositories())
    service.apply("C1", lambda w: w.model_copy(update={"cash_limit": Decimal("500.00")}))
    errors = []

    def collect(i):
        try:
            service.apply("C1", lambda w: ledger.record_cash_movement(w, CashMovement(amount=Decimal("30"), order_id=f"O{i}")))
        except ledger.CashLimitExceededError as exc:
            errors.append(exc)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(collect, range(20)))

    wallet = service.get_wallet("C1")
    assert wallet.cash_in_hand == Decimal("480.00")
    assert len(errors) == 4


def test_concurrent_settlement_requests_post_once():
    repositories = build_memory_repositories()
    repositories.orders.save(
        Order(
            order_id="O1",
            restaurant_location={"lat": 22.7196, "lng": 75.8577},
            destination={"lat": 22.73, "lng": 75.88},
            pricing=OrderPricing(delivery_fee=Decimal("23"), tip=Decimal("10"), total=Decimal("33")),
            status="delivered",
            courier_id="C1",
            route_distance_km=4.66,
            payment_confirmed=True,
        )
    )
    service = SettlementService(repositories, WalletService(repositories))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: service.request_settlement("O1"), range(8)))

    assert all(result == results[0] for result in results)
    wallet = repositories.wallets.get("C1")
    assert len(wallet.transactions) == 2
    assert wallet.total_balance == Decimal("35.30")
