"""API routes for order settlements."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from ...models.settlement import Settlement
from ...schemas.settlement import ReverseSettlementRequest, SettlementRequest
from ...services.errors import OrderNotFoundError
from ...services.ledger.wallet import ConcurrentUpdateError, LedgerError
from ...services.settlement.calculator import DistanceUnavailableError
from ...services.settlement.service import OrderCancelledError, get_settlement_service

router = APIRouter(prefix="/settlements", tags=["settlements"])


def _settle(order_id: str, recompute: bool) -> Settlement:
    service = get_settlement_service()
    try:
        return service.request_settlement(order_id, recompute=recompute)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (OrderCancelledError, ConcurrentUpdateError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (DistanceUnavailableError, LedgerError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Settlement failed for order {order_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Settlement failed: {exc}",
        ) from exc


@router.post("/{order_id}", response_model=Settlement, status_code=status.HTTP_200_OK)
def settle_order(
    order_id: str,
    payload: Optional[SettlementRequest] = None,
    recompute: bool = Query(default=False, description="Replace an existing settlement with a fresh computation"),
) -> Settlement:
    """Mark the order delivered and compute its settlement.

    Delivery facts in the body (route distance, surge, delivery time) are
    recorded on the order first, so an operator can correct them and recompute.
    """
    service = get_settlement_service()
    order = service.repositories.orders.get(order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"order {order_id} not found")
    if order.status != "cancelled":
        if payload is not None:
            for name, value in payload.model_dump(exclude_none=True).items():
                setattr(order, name, value)
        order.status = "delivered"
        service.repositories.orders.save(order)
    return _settle(order_id, recompute)


@router.get("/{order_id}", response_model=Settlement, status_code=status.HTTP_200_OK)
def get_settlement(order_id: str) -> Settlement:
    service = get_settlement_service()
    existing = service.repositories.settlements.get(order_id)
    return existing or _settle(order_id, recompute=False)


@router.post("/{order_id}/confirm-payment", status_code=status.HTTP_200_OK)
def confirm_payment(order_id: str) -> dict:
    try:
        wallet = get_settlement_service().confirm_payment(order_id)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LedgerError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {
        "order_id": order_id,
        "payment_confirmed": True,
        "courier_id": wallet.courier_id if wallet else None,
        "wallet_version": wallet.version if wallet else None,
    }


@router.post("/{order_id}/reverse", status_code=status.HTTP_200_OK)
def reverse_settlement(order_id: str, payload: Optional[ReverseSettlementRequest] = None) -> dict:
    reason = payload.reason if payload else "order cancelled"
    try:
        wallet = get_settlement_service().reverse_settlement(order_id, reason)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LedgerError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {
        "order_id": order_id,
        "status": "cancelled",
        "courier_id": wallet.courier_id if wallet else None,
        "total_balance": str(wallet.total_balance) if wallet else None,
    }
