"""
Input normalization shared by lead intake, consent logging and matching.

Webhook senders (Model Match exports, Zapier zaps, hand-built forms) disagree on
key casing and number formats, so everything passes through here first.
"""

import re
from typing import Any, Optional, List

PLACEHOLDER_EMAIL_DOMAIN = "temp.owldoor.com"


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Convert a US phone number to E.164 (+1XXXXXXXXXX)."""
    if not phone:
        return None
    digits = re.sub(r"\D", "", str(phone))
    if not digits:
        return None
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return f"+{digits}"


def mask_phone(phone: Optional[str]) -> str:
    if not phone:
        return ""
    digits = re.sub(r"\D", "", str(phone))
    return f"***{digits[-4:]}"


def parse_numeric(value: Any) -> Optional[float]:
    """Parse numbers like 1234, "1234" or "$1,234.56". Empty or junk -> None."""
    if value is None or value == "" or value is False:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # 0 is treated as "not provided" by the upstream exports
        return value if value else None
    cleaned = re.sub(r"[$,\s]", "", str(value))
    try:
        parsed = float(cleaned)
    except ValueError:
        return None
    return parsed


def parse_percentage(value: Any) -> Optional[float]:
    """Parse "81%" or 81 to 81.0."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if value else None
    cleaned = str(value).replace("%", "").strip()
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_int(value: Any) -> Optional[int]:
    parsed = parse_numeric(value)
    if parsed is None:
        return None
    return int(parsed)


def first_present(payload: dict, *keys: str) -> Any:
    """Return the first non-empty value among alias keys (first_name, firstName, ...)."""
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value.strip() if isinstance(value, str) else value
    return None


def as_list(value: Any) -> Optional[List[str]]:
    """Coerce a scalar or list field to a list of trimmed strings."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        items = [str(v).strip() for v in value if v is not None and str(v).strip()]
        return items or None
    text = str(value).strip()
    return [text] if text else None


def placeholder_email(phone: str) -> str:
    """Synthetic address for leads that arrive without an email."""
    digits = re.sub(r"\D", "", phone or "")
    return f"{digits}@{PLACEHOLDER_EMAIL_DOMAIN}"
