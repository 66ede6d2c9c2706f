"""Ordering rules for candidate couriers."""

from __future__ import annotations

from typing import Optional, Sequence

from ...models.domain import CandidateCourier


def within_bound(candidates: Sequence[CandidateCourier], max_distance_km: float) -> list[CandidateCourier]:
    return [candidate for candidate in candidates if candidate.distance_km <= max_distance_km]


def rank_for_order(
    candidates: Sequence[CandidateCourier],
    max_distance_km: float,
    limit: Optional[int] = None,
) -> list[CandidateCourier]:
    """Candidates within the bound, nearest first, truncated to ``limit``."""

    ranked = sorted(within_bound(candidates, max_distance_km), key=lambda candidate: candidate.distance_km)
    return ranked[:limit] if limit is not None else ranked


def preference_order(candidates: Sequence[CandidateCourier], max_distance_km: float) -> list[CandidateCourier]:
    # in-zone couriers first, then by distance
    return sorted(
        within_bound(candidates, max_distance_km),
        key=lambda candidate: (not candidate.in_zone, candidate.distance_km),
    )


def pick_nearest(candidates: Sequence[CandidateCourier], max_distance_km: float) -> Optional[CandidateCourier]:
    ordered = preference_order(candidates, max_distance_km)
    return ordered[0] if ordered else None
