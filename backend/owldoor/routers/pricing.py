from fastapi import APIRouter, HTTPException, Request

from ..logging_config import get_logger
from ..models import RecruitPriceRequest
from ..services import pricing, rate_limit
from ..services.email_service import send_rate_limit_alert
from ..services.pricing import PricingError

router = APIRouter(prefix="/api/pricing", tags=["pricing"])
logger = get_logger(__name__)

PRICING_LIMIT = 10000
PRICING_WINDOW_MINUTES = 60


@router.post("/recruit-price")
def recruit_price(body: RecruitPriceRequest, request: Request):
    identifier = body.client_id or rate_limit.client_ip(request)
    try:
        allowed = rate_limit.check_rate_limit(identifier, "calculate-recruit-price",
                                              PRICING_LIMIT, PRICING_WINDOW_MINUTES)
    except Exception as e:
        logger.error(f"Rate limit check failed: {e}", extra={"action": "rate_limit_error"})
        raise HTTPException(status_code=503, detail="Rate limiter unavailable")
    if not allowed:
        send_rate_limit_alert("calculate-recruit-price", identifier)
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Please try again later.")

    try:
        result = pricing.price_recruit(body.recruit_id, body.client_id, body.discount_code)
    except PricingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"success": True, **result}
