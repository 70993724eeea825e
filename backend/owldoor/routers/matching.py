"""
Auto-matching and credit charging.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from ..auth import require_internal_secret
from ..logging_config import get_logger
from ..services import matching, rate_limit
from ..services.field_matcher import (
    FieldDefinition,
    IntelligentMatcher,
    filter_by_threshold,
    sort_by_score,
    DEFAULT_MIN_SCORE,
)
from ..services.matching import InsufficientCredits, MatchNotFound

router = APIRouter(
    prefix="/api/matching",
    tags=["matching"],
    dependencies=[Depends(require_internal_secret)],
)
logger = get_logger(__name__)

AUTO_MATCH_LIMIT = 10
AUTO_MATCH_WINDOW_MINUTES = 60


class FieldDefinitionIn(BaseModel):
    field_name: str
    field_type: str
    matching_weight: float = 0
    use_ai_matching: bool = False
    allowed_values: Optional[List[str]] = None


class MatchPreviewRequest(BaseModel):
    pro: dict
    clients: List[dict]
    field_definitions: List[FieldDefinitionIn]
    min_score: float = DEFAULT_MIN_SCORE


@router.post("/auto-match")
def auto_match(request: Request):
    identifier = rate_limit.client_ip(request)
    try:
        allowed = rate_limit.check_rate_limit(identifier, "auto-match-leads",
                                              AUTO_MATCH_LIMIT, AUTO_MATCH_WINDOW_MINUTES)
    except Exception as e:
        # Limiter outages must not stall matching
        logger.error(f"Rate limit check failed, allowing request: {e}",
                     extra={"action": "rate_limit_error"})
        allowed = True
    if not allowed:
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Please try again later.")

    return matching.run_auto_match()


@router.post("/charge/{match_id}")
def charge_match(match_id: str):
    try:
        return matching.auto_charge_match(match_id)
    except InsufficientCredits as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "insufficient_credits", "required": e.required, "available": e.available},
        )
    except MatchNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/preview")
def preview_matches(body: MatchPreviewRequest):
    """Score one Pro against candidate Clients using configured field definitions."""
    definitions = [FieldDefinition(**d.model_dump()) for d in body.field_definitions]
    matcher = IntelligentMatcher()
    scored = [
        {
            "client_id": client.get("id"),
            "breakdown": matcher.calculate_match(body.pro, client, definitions).to_dict(),
        }
        for client in body.clients
    ]
    ranked = sort_by_score(filter_by_threshold(scored, body.min_score))
    return {"success": True, "matches": ranked}
