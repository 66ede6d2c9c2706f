"""Settlement service: compute, store and post an order's settlement to the courier ledger."""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from ...config import settings
from ...models.domain import Order
from ...models.ledger import (
    CREDIT_KINDS,
    CashMovement,
    CorrectionDetails,
    PaymentDetails,
    TipDetails,
    TransactionKind,
    TransactionStatus,
    Wallet,
    WalletTransaction,
    to_money,
)
from ...models.settlement import Settlement, SubsidyEntry
from ...persistence.repositories import Repositories, get_repositories
from ..audit import AuditTrail
from ..errors import OrderNotFoundError
from ..ledger import wallet as ledger
from ..ledger.service import WalletService, get_wallet_service
from ..locks import KeyedLock
from .calculator import compute_settlement, rule_from_settings

logger = logging.getLogger(__name__)


class OrderCancelledError(ValueError):
    pass


def settlement_key(order_id: str, part: str) -> str:
    return f"settlement:{order_id}:{part}"


def _settlement_postings(wallet: Wallet, order_id: str) -> list[WalletTransaction]:
    prefix = settlement_key(order_id, "")
    return [t for t in wallet.transactions if t.idempotency_key and t.idempotency_key.startswith(prefix)]


def _net_posted(wallet: Wallet, postings: list[WalletTransaction]) -> Decimal:
    """Signed sum of live postings, net of any reversals already applied to them."""

    ids = {t.transaction_id for t in postings}
    net = sum((t.signed_amount for t in postings if t.status != TransactionStatus.FAILED), Decimal("0"))
    for transaction in wallet.transactions:
        reversed_id = getattr(transaction.details, "reverses_transaction_id", None)
        if reversed_id in ids and transaction.status != TransactionStatus.FAILED:
            net += transaction.signed_amount
    return net


def post_settlement(wallet: Wallet, settlement: Settlement, order: Order) -> Wallet:
    """Bring the wallet's postings for the order in line with the settlement.

    First posting writes the payment and tip. Later recomputations append a
    credit or debit for the difference; history is never edited.
    """

    status = (
        TransactionStatus.COMPLETED if order.payment_confirmed or order.is_cash else TransactionStatus.PENDING
    )
    earning = settlement.courier
    existing = _settlement_postings(wallet, order.order_id)

    if not existing:
        if earning.delivery_earning > 0:
            wallet = ledger.append_transaction(
                wallet,
                WalletTransaction(
                    amount=earning.delivery_earning,
                    kind=TransactionKind.PAYMENT,
                    status=status,
                    details=PaymentDetails(
                        order_id=order.order_id,
                        base_payout=earning.base_payout,
                        distance_commission=earning.distance_commission,
                        surge_amount=earning.surge_amount,
                        cash_order=settlement.cash_order,
                    ),
                    idempotency_key=settlement_key(order.order_id, "payment"),
                    description=f"Delivery earning for order {order.order_id}",
                ),
            )
        if earning.tip > 0:
            wallet = ledger.append_transaction(
                wallet,
                WalletTransaction(
                    amount=earning.tip,
                    kind=TransactionKind.TIP,
                    status=status,
                    details=TipDetails(order_id=order.order_id),
                    idempotency_key=settlement_key(order.order_id, "tip"),
                    description=f"Tip for order {order.order_id}",
                ),
            )
    else:
        delta = to_money(earning.total - _net_posted(wallet, existing))
        if delta != 0:
            sequence = sum(1 for t in existing if ":adjust:" in t.idempotency_key) + 1
            wallet = ledger.append_transaction(
                wallet,
                WalletTransaction(
                    amount=abs(delta),
                    kind=TransactionKind.CREDIT if delta > 0 else TransactionKind.DEBIT,
                    status=status,
                    details=CorrectionDetails(order_id=order.order_id, reason="settlement recomputed"),
                    idempotency_key=settlement_key(order.order_id, f"adjust:{sequence}"),
                    description=f"Settlement adjustment for order {order.order_id}",
                ),
            )

    if settlement.cash_order and settlement.customer.total > 0:
        # the cash is already in the courier's hand; over the limit it is recorded, not refused
        collected = to_money(settlement.customer.total)
        wallet = ledger.record_cash_movement(
            wallet,
            CashMovement(
                amount=collected,
                order_id=order.order_id,
                reason="cash on delivery",
                idempotency_key=settlement_key(order.order_id, "cash"),
                override=order.cash_limit_override or wallet.cash_in_hand + collected > wallet.cash_limit,
            ),
        )
    return wallet


def collected_over_limit(before: Wallet, after: Wallet, order_id: str) -> bool:
    """True when this posting recorded the order's cash and left the wallet above its limit."""

    key = settlement_key(order_id, "cash")
    return not before.has_key(key) and after.has_key(key) and after.cash_in_hand > after.cash_limit


def reverse_postings(wallet: Wallet, order_id: str, reason: str) -> Wallet:
    """Compensate every completed posting for the order and fail the pending ones."""

    for transaction in _settlement_postings(wallet, order_id):
        if transaction.status == TransactionStatus.PENDING:
            wallet = ledger.transition_to_failed(wallet, transaction.transaction_id)
            continue
        if transaction.status != TransactionStatus.COMPLETED:
            continue
        wallet = ledger.append_transaction(
            wallet,
            WalletTransaction(
                amount=transaction.amount,
                kind=TransactionKind.DEBIT if transaction.kind in CREDIT_KINDS else TransactionKind.CREDIT,
                status=TransactionStatus.COMPLETED,
                details=CorrectionDetails(
                    order_id=order_id,
                    reason=reason,
                    reverses_transaction_id=transaction.transaction_id,
                ),
                idempotency_key=f"reversal:{transaction.transaction_id}",
                description=f"Reversal of {transaction.kind.value} for order {order_id}",
            ),
        )
    return wallet


def confirm_postings(wallet: Wallet, order_id: str) -> Wallet:
    for transaction in _settlement_postings(wallet, order_id):
        if transaction.status == TransactionStatus.PENDING:
            wallet = ledger.transition_to_completed(wallet, transaction.transaction_id)
    return wallet


class SettlementService:
    def __init__(self, repositories: Repositories, wallet_service: WalletService | None = None) -> None:
        self.repositories = repositories
        self.wallets = wallet_service or WalletService(repositories)
        self.audit = AuditTrail(repositories.audit)
        self._order_locks = KeyedLock()

    def _require_order(self, order_id: str) -> Order:
        order = self.repositories.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"order {order_id} not found")
        return order

    def _compute(self, order: Order) -> Settlement:
        return compute_settlement(
            order,
            rule_from_settings(settings),
            platform_fee_default=Decimal(str(settings.platform_fee)),
            missing_distance_policy=settings.missing_distance_policy,
            fallback_distance_km=settings.fallback_distance_km,
            subsidy_account=settings.subsidy_account,
            surge_for_hour=settings.surge_multiplier_for_hour,
        )

    def _record_subsidy(self, settlement: Settlement) -> None:
        platform = settlement.platform
        if platform.negative_margin and platform.subsidy_account:
            self.repositories.subsidies.upsert(
                SubsidyEntry(
                    account=platform.subsidy_account,
                    order_id=settlement.order_id,
                    amount=platform.subsidy_amount,
                )
            )
            self.audit.record(
                "negative_margin",
                platform.subsidy_account,
                order_id=settlement.order_id,
                delivery_margin=str(platform.delivery_margin),
            )
        else:
            self.repositories.subsidies.delete(settlement.order_id)

    def request_settlement(self, order_id: str, recompute: bool = False) -> Settlement:
        """Return the order's settlement, computing and posting it when needed."""

        with self._order_locks.hold(order_id):
            previous = self.repositories.settlements.get(order_id)
            if previous is not None and not recompute:
                return previous

            order = self._require_order(order_id)
            if order.status == "cancelled":
                raise OrderCancelledError(f"order {order_id} is cancelled and cannot be settled")
            settlement = self._compute(order)
            if settlement == previous:
                return previous

            previous_courier = previous.courier.courier_id if previous is not None else None
            if previous_courier and previous_courier != settlement.courier.courier_id:
                self.wallets.apply(
                    previous_courier, lambda w: reverse_postings(w, order_id, "courier reassigned")
                )
            courier_id = settlement.courier.courier_id
            if courier_id:
                over_limit = False

                def post(wallet: Wallet) -> Wallet:
                    nonlocal over_limit
                    updated = post_settlement(wallet, settlement, order)
                    over_limit = collected_over_limit(wallet, updated, order_id)
                    return updated

                wallet = self.wallets.apply(courier_id, post)
                if over_limit:
                    logger.warning(
                        f"Cash collected on order {order_id} leaves courier {courier_id} holding "
                        f"{wallet.cash_in_hand}, above the limit of {wallet.cash_limit}"
                    )
                    self.audit.record(
                        "cash_limit_exceeded",
                        courier_id,
                        order_id=order_id,
                        cash_in_hand=str(wallet.cash_in_hand),
                        cash_limit=str(wallet.cash_limit),
                        assignment_override=order.cash_limit_override,
                    )

            self.repositories.settlements.upsert(settlement)
            self._record_subsidy(settlement)
            logger.info(
                f"Settled order {order_id}: courier {settlement.courier.total}, "
                f"platform {settlement.platform.total} (distance {settlement.courier.distance_km} km "
                f"from {settlement.distance_source})"
            )
            return settlement

    def get_settlement(self, order_id: str) -> Settlement:
        return self.repositories.settlements.get(order_id) or self.request_settlement(order_id)

    def confirm_payment(self, order_id: str) -> Optional[Wallet]:
        """Mark the order paid and complete its pending ledger postings."""

        with self._order_locks.hold(order_id):
            order = self._require_order(order_id)
            if not order.payment_confirmed:
                order.payment_confirmed = True
                self.repositories.orders.save(order)
            settlement = self.repositories.settlements.get(order_id)
            if settlement is None or not settlement.courier.courier_id:
                return None
            return self.wallets.apply(settlement.courier.courier_id, lambda w: confirm_postings(w, order_id))

    def reverse_settlement(self, order_id: str, reason: str = "order cancelled") -> Optional[Wallet]:
        """Cancellation after settlement: compensate instead of deleting history."""

        with self._order_locks.hold(order_id):
            order = self._require_order(order_id)
            settlement = self.repositories.settlements.get(order_id)
            order.status = "cancelled"
            self.repositories.orders.save(order)
            if settlement is None:
                return None
            self.repositories.subsidies.delete(order_id)
            courier_id = settlement.courier.courier_id
            if not courier_id:
                return None
            wallet = self.wallets.apply(courier_id, lambda w: reverse_postings(w, order_id, reason))
            self.audit.record("settlement_reversed", courier_id, order_id=order_id, reason=reason)
            return wallet


@lru_cache()
def get_settlement_service() -> SettlementService:
    return SettlementService(get_repositories(), get_wallet_service())
