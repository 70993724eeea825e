"""
TCPA SMS consent log

Every consent, and every opt-out, is a row in sms_consent_log keyed by E.164
phone number. The most recent row decides whether we may text a number.
"""

import re
from typing import Any, Dict, Optional

from ..db import get_conn, fetchone_dict
from ..logging_config import get_logger
from .normalization import normalize_phone, mask_phone

logger = get_logger(__name__)


class ConsentValidationError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def _e164(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 10:
        raise ConsentValidationError("phone_number must contain at least 10 digits")
    return normalize_phone(digits)


def evaluate_consent(record: Optional[dict]) -> Dict[str, Any]:
    """Turn the latest consent row for a number into a send decision."""
    if not record:
        return {
            "can_send": False,
            "reason": "no_consent_record",
            "message": "No consent record found for this phone number",
        }
    if record.get("opt_out_timestamp"):
        return {
            "can_send": False,
            "reason": "opted_out",
            "message": "User has opted out of SMS communications",
            "opt_out_date": record["opt_out_timestamp"],
        }
    if not record.get("consent_given"):
        return {
            "can_send": False,
            "reason": "consent_not_given",
            "message": "User has not given consent for SMS communications",
        }
    return {
        "can_send": True,
        "consent_date": record.get("consent_timestamp"),
        "consent_method": record.get("consent_method"),
        "double_opt_in_confirmed": bool(record.get("double_opt_in_confirmed")),
    }


def _latest_record(cur, phone: str) -> Optional[dict]:
    cur.execute(
        """
        SELECT * FROM sms_consent_log
        WHERE phone_number = %s
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (phone,),
    )
    return fetchone_dict(cur)


def log_consent(
    phone_number: str,
    consent_given: bool,
    consent_method: str,
    consent_text: str,
    ip_address: str = None,
    user_agent: str = None,
    double_opt_in_confirmed: bool = False,
) -> dict:
    phone = _e164(phone_number)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO sms_consent_log
                    (phone_number, consent_given, consent_timestamp, consent_method,
                     consent_text, ip_address, user_agent, double_opt_in_confirmed)
                VALUES (%s, %s, NOW(), %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (phone, consent_given, consent_method, consent_text,
                 ip_address, user_agent, double_opt_in_confirmed),
            )
            row = fetchone_dict(cur)

    logger.info(
        "SMS consent logged",
        extra={
            "action": "sms_consent_logged",
            "extra_data": {"phone": mask_phone(phone), "consent_given": consent_given,
                           "method": consent_method},
        },
    )
    return row


def check_consent(phone_number: str) -> Dict[str, Any]:
    phone = _e164(phone_number)
    with get_conn() as conn:
        with conn.cursor() as cur:
            record = _latest_record(cur, phone)

    decision = evaluate_consent(record)
    logger.info(
        "SMS consent checked",
        extra={
            "action": "sms_consent_checked",
            "extra_data": {"phone": mask_phone(phone), "can_send": decision["can_send"],
                           "reason": decision.get("reason")},
        },
    )
    return decision


def log_opt_out(phone_number: str, opt_out_method: str = "sms") -> str:
    """
    Record an opt-out.

    Returns:
        "updated" when the latest consent row was marked opted out,
        "created" when no consent existed and an opt-out row was inserted,
        "already_opted_out" when nothing needed to change
    """
    phone = _e164(phone_number)
    with get_conn() as conn:
        with conn.cursor() as cur:
            record = _latest_record(cur, phone)
            if record and record.get("opt_out_timestamp"):
                outcome = "already_opted_out"
            elif record:
                cur.execute(
                    """
                    UPDATE sms_consent_log
                    SET opt_out_timestamp = NOW(), consent_given = FALSE
                    WHERE id = %s
                    """,
                    (record["id"],),
                )
                outcome = "updated"
            else:
                cur.execute(
                    """
                    INSERT INTO sms_consent_log
                        (phone_number, consent_given, consent_timestamp, consent_method,
                         consent_text, opt_out_timestamp)
                    VALUES (%s, FALSE, NOW(), %s, %s, NOW())
                    """,
                    (phone, opt_out_method, f"User opted out via {opt_out_method}"),
                )
                outcome = "created"

    logger.info(
        "SMS opt-out processed",
        extra={
            "action": "sms_opt_out",
            "extra_data": {"phone": mask_phone(phone), "method": opt_out_method, "outcome": outcome},
        },
    )
    return outcome
