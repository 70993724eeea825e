"""
Agent lead intake

Turns a webhook payload (Model Match export, Zapier, internal tools) into a Pro
row, upserting on the normalized phone number, and optionally assigns the Pro
to a Client by creating a pending match.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..db import get_conn, fetchone_dict
from ..logging_config import get_logger, log_action
from .normalization import (
    normalize_phone,
    mask_phone,
    parse_numeric,
    parse_percentage,
    parse_int,
    first_present,
    as_list,
    placeholder_email,
)
from .qualification import calculate_qualification_score, stage_for_score, profile_summary

logger = get_logger(__name__)

REQUIRED_FIELDS = ("first_name", "last_name", "phone")

VOLUME_FIELDS = [
    "total_volume", "buyer_volume", "buyer_financed", "seller_volume",
    "seller_financed", "dual_volume", "top_lender_volume", "top_originator_volume",
]

UNIT_FIELDS = ["total_units", "buyer_units", "seller_units", "dual_units", "transactions_per_year"]

# pros column -> accepted payload keys
PERCENTAGE_FIELDS = {
    "buyer_percentage": ("buyer_percentage", "Buyer_Percentage"),
    "seller_percentage": ("seller_percentage", "Seller_Percentage"),
    "percent_financed": ("percent_financed",),
    "seller_side_percentage": ("seller_side_percentage",),
    "purchase_percentage": ("purchase_percentage",),
    "conventional_percentage": ("conventional_percentage",),
    "top_lender_share": ("top_lender_share",),
    "top_originator_share": ("top_originator_share",),
}

TEXT_FIELDS = [
    "address", "license", "notes", "top_lender", "top_originator",
    "linkedin_url", "facebook_url", "instagram_url", "twitter_url",
    "youtube_url", "website_url", "profile_url",
]


class LeadValidationError(Exception):
    """Raised when a payload is missing required fields."""
    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing required fields: {', '.join(missing)}")


def _parse_date(value: Any) -> Optional[str]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat()


def build_pro_record(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a raw webhook payload to a `pros` row.

    Raises:
        LeadValidationError: if first name, last name or phone is missing
    """
    first_name = first_present(payload, "first_name", "firstName")
    last_name = first_present(payload, "last_name", "lastName")
    raw_phone = first_present(payload, "phone", "Phone")
    phone = normalize_phone(str(raw_phone)) if raw_phone else None

    # a phone with no digits counts as missing
    missing = [
        name for name, value in zip(REQUIRED_FIELDS, (first_name, last_name, phone))
        if not value
    ]
    if missing:
        raise LeadValidationError(missing)

    email = first_present(payload, "email", "Email")

    transactions = (
        parse_int(payload.get("transactions"))
        or parse_int(payload.get("total_units"))
        or parse_int(payload.get("transactions_per_year"))
        or 0
    )
    experience = parse_numeric(first_present(payload, "experience", "years_experience"))

    record: Dict[str, Any] = {
        "first_name": first_name,
        "last_name": last_name,
        "full_name": f"{first_name} {last_name}".strip(),
        "phone": phone,
        "email": email or placeholder_email(phone),
        "company": first_present(payload, "company", "brokerage"),
        "brokerage": first_present(payload, "brokerage", "company"),
        "lead_type": first_present(payload, "lead_type", "pro_type") or "real_estate_agent",
        "source": first_present(payload, "source") or "webhook",
        "experience": experience,
        "transactions": transactions,
        "cities": as_list(payload.get("cities")) or as_list(payload.get("city")),
        "states": as_list(payload.get("states")) or as_list(payload.get("state")),
        "counties": as_list(payload.get("counties")),
        "zip_codes": as_list(payload.get("zip_codes"))
        or as_list(first_present(payload, "zip_code", "zipCode")),
        "date": _parse_date(payload.get("date")),
    }

    for field in VOLUME_FIELDS:
        record[field] = parse_numeric(payload.get(field))
    for field in UNIT_FIELDS:
        record[field] = parse_int(payload.get(field))
    for column, keys in PERCENTAGE_FIELDS.items():
        record[column] = parse_percentage(first_present(payload, *keys))
    for field in TEXT_FIELDS:
        record[field] = first_present(payload, field)

    score = calculate_qualification_score(transactions, record["total_volume"], experience)
    record["qualification_score"] = score
    record["pipeline_stage"] = stage_for_score(score)
    record["pipeline_type"] = "staff"
    record["status"] = "new"
    return record


def _find_pro_id_by_phone(cur, phone: str) -> Optional[str]:
    cur.execute("SELECT id FROM pros WHERE phone = %s LIMIT 1", (phone,))
    row = fetchone_dict(cur)
    return row["id"] if row else None


def _insert_pro(cur, record: Dict[str, Any]) -> dict:
    columns = list(record.keys())
    placeholders = ", ".join(["%s"] * len(columns))
    cur.execute(
        f"INSERT INTO pros ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
        [record[c] for c in columns],
    )
    return fetchone_dict(cur)


def _update_pro(cur, pro_id: str, record: Dict[str, Any]) -> dict:
    columns = list(record.keys())
    assignments = ", ".join(f"{c} = %s" for c in columns)
    cur.execute(
        f"UPDATE pros SET {assignments}, updated_at = NOW() WHERE id = %s RETURNING *",
        [record[c] for c in columns] + [pro_id],
    )
    return fetchone_dict(cur)


def _find_client(cur, client_email: Optional[str], client_phone: Optional[str]) -> Optional[dict]:
    if client_email:
        cur.execute("SELECT id, active FROM clients WHERE email = %s LIMIT 1", (client_email,))
    else:
        cur.execute(
            "SELECT id, active FROM clients WHERE phone = %s LIMIT 1",
            (normalize_phone(client_phone),),
        )
    return fetchone_dict(cur)


def _match_exists(cur, pro_id: str, client_id: str) -> bool:
    cur.execute(
        "SELECT id FROM matches WHERE pro_id = %s AND client_id = %s LIMIT 1",
        (pro_id, client_id),
    )
    return cur.fetchone() is not None


def _create_assignment_match(cur, pro_id: str, client_id: str, score: int, lead_price) -> None:
    cur.execute(
        """
        INSERT INTO matches (pro_id, client_id, status, match_score, lead_price, created_at)
        VALUES (%s, %s, 'pending', %s, %s, NOW())
        """,
        (pro_id, client_id, score, lead_price),
    )


def assign_to_client(cur, pro: dict, payload: Dict[str, Any]) -> bool:
    """
    Create a pending match between the Pro and the Client named in the payload.
    Returns True when a new match was created. Never raises.
    """
    client_email = first_present(payload, "client_email")
    client_phone = first_present(payload, "client_phone")
    if not client_email and not client_phone:
        return False

    try:
        client = _find_client(cur, client_email, client_phone)
        if not client or client.get("active") is False:
            logger.info(
                "Client for assignment not found or inactive",
                extra={"action": "lead_assignment_skipped", "extra_data": {"pro_id": pro["id"]}},
            )
            return False
        if _match_exists(cur, pro["id"], client["id"]):
            return False
        _create_assignment_match(
            cur,
            pro["id"],
            client["id"],
            pro.get("qualification_score") or 0,
            parse_numeric(payload.get("lead_price")),
        )
        log_action(logger, "info", "lead_assigned", "Match created from webhook assignment",
                   pro_id=pro["id"], client_id=client["id"])
        return True
    except Exception as e:
        logger.error(f"Error assigning lead to client: {e}", exc_info=True)
        return False


def ingest_agent_lead(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Upsert a Pro from a webhook payload.

    Returns:
        {"action": "created"|"updated", "lead": row, "match_created": bool, "profile": {...}}
    """
    record = build_pro_record(payload)
    logger.info(
        "Agent lead received",
        extra={
            "action": "lead_received",
            "extra_data": {
                "phone": mask_phone(record["phone"]),
                "source": record["source"],
                "qualification_score": record["qualification_score"],
            },
        },
    )

    with get_conn() as conn:
        with conn.cursor() as cur:
            existing_id = _find_pro_id_by_phone(cur, record["phone"])
            if existing_id:
                lead = _update_pro(cur, existing_id, record)
                action = "updated"
            else:
                lead = _insert_pro(cur, record)
                action = "created"

            match_created = assign_to_client(cur, lead, payload)

    log_action(logger, "info", f"pro_{action}", f"Lead {action} successfully",
               pro_id=lead.get("id"), pipeline_stage=lead.get("pipeline_stage"))

    return {
        "action": action,
        "lead": lead,
        "match_created": match_created,
        "profile": profile_summary(lead),
    }
