"""
Inbound lead webhooks (Model Match exports, Zapier, internal forms).
"""
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from ..auth import require_webhook_secret
from ..logging_config import get_logger
from ..services import lead_ingestion
from ..services.lead_ingestion import LeadValidationError

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


@router.post("/agent-lead", dependencies=[Depends(require_webhook_secret)])
def agent_lead(payload: Dict[str, Any] = Body(...)):
    try:
        result = lead_ingestion.ingest_agent_lead(payload)
    except LeadValidationError as e:
        logger.info(str(e), extra={"action": "lead_rejected", "extra_data": {"missing": e.missing}})
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "action": result["action"],
        "lead": result["lead"],
        "match_created": result["match_created"],
        "profile": result["profile"],
    }
