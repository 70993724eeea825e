"""
Pipeline stage changes pushed by integrations (Zapier and similar).
"""

from typing import Any, Dict, Optional

from ..db import get_conn, fetchone_dict
from ..logging_config import get_logger, log_action
from .matching import run_auto_match
from .normalization import normalize_phone
from .qualification import PIPELINE_STAGES, is_valid_stage

logger = get_logger(__name__)


class StageUpdateError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def find_pro(pro_id: Optional[str], email: Optional[str], phone: Optional[str]) -> Optional[dict]:
    if pro_id:
        sql, params = "SELECT id, pipeline_stage FROM pros WHERE id = %s LIMIT 1", (pro_id,)
    elif email and phone:
        sql = "SELECT id, pipeline_stage FROM pros WHERE email = %s OR phone = %s LIMIT 1"
        params = (email, normalize_phone(phone))
    elif email:
        sql, params = "SELECT id, pipeline_stage FROM pros WHERE email = %s LIMIT 1", (email,)
    else:
        sql = "SELECT id, pipeline_stage FROM pros WHERE phone = %s LIMIT 1"
        params = (normalize_phone(phone),)

    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return fetchone_dict(cur)


def set_stage(pro_id: str, stage: str) -> None:
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "UPDATE pros SET pipeline_stage = %s, updated_at = NOW() WHERE id = %s",
                (stage, pro_id),
            )


def update_stage(
    stage: Optional[str],
    pro_id: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    trigger_matching: bool = True,
) -> Dict[str, Any]:
    """
    Move a Pro to a new pipeline stage; entering match_ready can kick off auto-matching.

    Raises:
        StageUpdateError: invalid stage (400), no identifier (400), unknown Pro (404)
    """
    if not is_valid_stage(stage):
        raise StageUpdateError(f"Invalid stage. Must be one of: {', '.join(PIPELINE_STAGES)}")
    if not (pro_id or email or phone):
        raise StageUpdateError("Must provide pro_id, email, or phone")

    pro = find_pro(pro_id, email, phone)
    if not pro:
        logger.warning("Pro not found for stage update", extra={"action": "stage_update_not_found"})
        raise StageUpdateError("Pro not found", status_code=404)

    set_stage(pro["id"], stage)
    log_action(logger, "info", "pro_stage_updated", f"Stage updated to {stage}",
               pro_id=pro["id"], old_stage=pro.get("pipeline_stage"), new_stage=stage)

    matching_triggered = False
    matching_error = None
    if trigger_matching and stage == "match_ready":
        try:
            run_auto_match()
            matching_triggered = True
        except Exception as e:
            matching_error = str(e)
            logger.error(f"Auto-match after stage update failed: {e}", exc_info=True)

    return {
        "success": True,
        "pro_id": pro["id"],
        "old_stage": pro.get("pipeline_stage"),
        "new_stage": stage,
        "matching_triggered": matching_triggered,
        "matching_error": matching_error,
        "message": "Stage updated successfully",
    }
