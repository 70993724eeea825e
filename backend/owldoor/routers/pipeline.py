from fastapi import APIRouter, Depends, HTTPException

from ..auth import require_api_key
from ..models import StageUpdateRequest
from ..services import pipeline
from ..services.pipeline import StageUpdateError

router = APIRouter(prefix="/api/pros", tags=["pipeline"])


@router.post("/stage")
def update_pro_stage(body: StageUpdateRequest, client_id: str = Depends(require_api_key)):
    try:
        return pipeline.update_stage(
            body.stage,
            pro_id=body.pro_id,
            email=body.email,
            phone=body.phone,
            trigger_matching=body.trigger_matching,
        )
    except StageUpdateError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
