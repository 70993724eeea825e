"""
Geocoding endpoints backed by the multi-tier fallback chain.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..logging_config import get_logger
from ..models import GeocodeRequest, BatchGeocodeRequest
from ..services import rate_limit
from ..services.geocoding import GeocodingService, get_geocoding_service

router = APIRouter(prefix="/api", tags=["geocode"])
logger = get_logger(__name__)

GEOCODE_LIMIT = 100
GEOCODE_WINDOW_MINUTES = 60


def _enforce_limit(request: Request, cost: int = 1) -> None:
    identifier = rate_limit.client_ip(request)
    try:
        allowed = rate_limit.check_rate_limit(identifier, "geocode", GEOCODE_LIMIT,
                                              GEOCODE_WINDOW_MINUTES, cost=cost)
    except Exception as e:
        # Paid provider calls stay blocked while the limiter is down
        logger.error(f"Rate limit check failed: {e}", extra={"action": "rate_limit_error"})
        raise HTTPException(status_code=503, detail="Rate limiter unavailable")
    if not allowed:
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Please try again later.")


@router.post("/geocode")
def geocode(body: GeocodeRequest, request: Request,
            service: GeocodingService = Depends(get_geocoding_service)):
    _enforce_limit(request)
    result = service.geocode(body)
    if not result:
        return JSONResponse(
            status_code=404,
            content={"success": False, "error": "Could not geocode location"},
        )
    return {"success": True, "result": result.to_dict()}


@router.post("/geocode/batch")
def geocode_batch(body: BatchGeocodeRequest, request: Request,
                  service: GeocodingService = Depends(get_geocoding_service)):
    # each location is a provider lookup
    _enforce_limit(request, cost=len(body.locations))
    results = service.batch_geocode(body.locations)
    return {
        "success": True,
        "results": [r.to_dict() if r else None for r in results],
        "failed": sum(1 for r in results if r is None),
    }
