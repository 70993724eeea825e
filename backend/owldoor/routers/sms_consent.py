from fastapi import APIRouter, HTTPException

from ..models import ConsentLogRequest, ConsentCheckRequest, OptOutRequest
from ..services import sms_consent
from ..services.sms_consent import ConsentValidationError

router = APIRouter(prefix="/api/sms-consent", tags=["sms-consent"])


@router.post("")
def log_consent(body: ConsentLogRequest):
    try:
        record = sms_consent.log_consent(**body.model_dump())
    except ConsentValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"success": True, "message": "Consent logged successfully", "id": record.get("id") if record else None}


@router.post("/check")
def check_consent(body: ConsentCheckRequest):
    try:
        return sms_consent.check_consent(body.phone_number)
    except ConsentValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/opt-out")
def opt_out(body: OptOutRequest):
    try:
        outcome = sms_consent.log_opt_out(body.phone_number, body.opt_out_method)
    except ConsentValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"success": True, "message": "SMS opt-out recorded successfully", "outcome": outcome}
