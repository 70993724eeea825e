import time
from datetime import datetime, timezone

from fastapi import APIRouter

from ..db import get_conn, fetchone_dict
from ..logging_config import get_logger
from ..services import geocoding

router = APIRouter(tags=["health"])
logger = get_logger(__name__)
_STARTED_MONOTONIC = time.monotonic()


def _probe_database() -> dict:
    """Round-trip a trivial query; raises when the database is unreachable."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            started = time.monotonic()
            cur.execute("SELECT version() AS version")
            row = fetchone_dict(cur) or {}
    return {
        "status": "healthy",
        "connection": True,
        "latency_ms": int((time.monotonic() - started) * 1000),
        "version": row.get("version"),
    }


def _geocoding_tiers() -> dict:
    return {
        "local": True,
        "google": bool(geocoding.GOOGLE_MAPS_API_KEY),
        "nominatim": True,
        "mapbox": bool(geocoding.MAPBOX_TOKEN),
    }


@router.get("/health")
def health():
    try:
        database = _probe_database()
        status = "healthy"
    except Exception as e:
        logger.warning(f"Database probe failed: {e}", extra={"action": "health_db_error"})
        database = {"status": "error", "connection": False, "latency_ms": None, "version": None}
        status = "degraded"

    return {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(time.monotonic() - _STARTED_MONOTONIC, 3),
        "database": database,
        "geocoding_tiers": _geocoding_tiers(),
    }


@router.get("/health/db")
def health_db():
    try:
        return _probe_database()
    except Exception as e:
        return {"status": "error", "connection": False, "message": str(e)}
