"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...config import settings

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/osrm", status_code=status.HTTP_200_OK)
def health_osrm() -> dict:
    """Check OSRM service health; route distances are optional, so this never fails the app."""
    from ...services.routing.osrm_client import check_health

    if not settings.osrm_base_url:
        return {"service": "osrm", "configured": False, "healthy": False}
    return {"service": "osrm", "configured": True, "healthy": check_health()}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Check database connection and table availability."""
    from ...db.supabase import get_supabase_client
    from ...persistence.database import check_tables

    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "backend": "memory",
            "message": "Supabase not configured. Set COURIER_SUPABASE_URL and COURIER_SUPABASE_KEY environment variables.",
        }

    try:
        tables = check_tables(supabase)
    except Exception as exc:
        return {
            "configured": True,
            "connected": False,
            "error": str(exc),
            "message": f"Database connection error: {exc}",
        }
    return {
        "configured": True,
        "connected": any(tables.values()),
        "backend": "supabase",
        "tables": tables,
        "message": "Database connected." if all(tables.values()) else "Database connected but some tables are missing.",
    }
