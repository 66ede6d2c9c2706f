"""API routes for courier assignment."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from ...schemas.assignment import (
    AcceptOfferRequest,
    AssignmentRequest,
    AssignmentResponse,
    CandidateModel,
    CandidatesResponse,
    OrderAssignmentModel,
    RevokeResponse,
)
from ...services.assignment.offers import OfferNotFoundError
from ...services.assignment.service import AssignmentService, CashConstraint, get_assignment_service
from ...services.errors import OrderNotFoundError, ZoneNotFoundError

router = APIRouter(prefix="/assignments", tags=["assignments"])


def _register_order(service: AssignmentService, payload: AssignmentRequest) -> Optional[CashConstraint]:
    """Store the order snapshot on first sight and derive its cash constraint."""
    order = service.repositories.orders.get(payload.order_id)
    if order is None:
        order = service.repositories.orders.save(payload.to_order())
    if payload.cash_limit is not None and order.is_cash:
        return CashConstraint(order_cash=order.pricing.total, cash_limit=payload.cash_limit)
    return None


@router.post("/request", response_model=AssignmentResponse, status_code=status.HTTP_200_OK)
def request_assignment(payload: AssignmentRequest) -> AssignmentResponse:
    """Offer the order to the nearest eligible courier.

    An empty pool is not an error: the response carries status ``unassigned``
    and the order can be retried later.
    """
    service = get_assignment_service()
    try:
        constraint = _register_order(service, payload)
        result = service.request_assignment(payload.order_id, constraint)
    except (OrderNotFoundError, ZoneNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Assignment failed for order {payload.order_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Assignment failed: {exc}",
        ) from exc
    return AssignmentResponse.model_validate(result, from_attributes=True)


@router.post("/candidates", response_model=CandidatesResponse, status_code=status.HTTP_200_OK)
def priority_candidates(
    payload: AssignmentRequest,
    limit: int | None = Query(default=None, gt=0, description="Maximum number of couriers to return"),
) -> CandidatesResponse:
    """Nearest couriers inside the priority radius, used to decide who to notify first."""
    service = get_assignment_service()
    try:
        constraint = _register_order(service, payload)
        result = service.find_priority_couriers(payload.order_id, constraint, limit)
    except (OrderNotFoundError, ZoneNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return CandidatesResponse(
        order_id=result.order_id,
        fallback_used=result.fallback_used,
        candidates=[
            CandidateModel(
                courier_id=candidate.courier_id,
                name=candidate.courier.name,
                distance_km=round(candidate.distance_km, 3),
                in_zone=candidate.in_zone,
            )
            for candidate in result.candidates
        ],
    )


@router.post("/{order_id}/accept", response_model=OrderAssignmentModel, status_code=status.HTTP_200_OK)
def accept_offer(order_id: str, payload: AcceptOfferRequest) -> OrderAssignmentModel:
    service = get_assignment_service()
    try:
        order = service.accept_offer(order_id, payload.courier_id)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except OfferNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return OrderAssignmentModel.model_validate(order, from_attributes=True)


@router.post("/{order_id}/revoke", response_model=RevokeResponse, status_code=status.HTTP_200_OK)
def revoke_offer(order_id: str) -> RevokeResponse:
    revoked = get_assignment_service().revoke_offer(order_id)
    return RevokeResponse(order_id=order_id, revoked=revoked)
