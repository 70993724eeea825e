"""
Recruit pricing

Price for a Client to purchase a recruit (Pro):

    base
  + motivation add-on   (highest matching tier, never compounded)
  + transaction add-on  (first matching tier)
  - time discount       (highest tier the recruit's age qualifies for, % of total)
  - discount code       (percentage of total, or fixed amount)

An active admin override for the Client replaces all of the above with a flat price.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..db import get_conn, fetchone_dict, fetchall_dicts
from ..logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_PRICE = 100
MOTIVATION_MAX_DEFAULT = 999
TRANSACTIONS_MAX_DEFAULT = 999999


class PricingError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class RecruitNotFound(PricingError):
    def __init__(self, recruit_id: str):
        super().__init__(f"Recruit not found: {recruit_id}", status_code=404)


def _in_range(value: float, row: dict, default_max: float) -> bool:
    low = float(row.get("min_value") or 0)
    high = float(row.get("max_value") or default_max)
    return low <= value <= high


def _rows(config: List[dict], config_type: str) -> List[dict]:
    return [r for r in config if r.get("config_type") == config_type]


def _modifier(row: dict) -> float:
    return float(row.get("price_modifier") or 0)


def _hours_since(created_at, now: datetime) -> float:
    if created_at is None:
        return 0
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (now - created_at).total_seconds() / 3600


def discount_code_is_usable(code: dict, now: datetime) -> bool:
    if not code or code.get("active") is False:
        return False
    expires_at = code.get("expires_at")
    if expires_at:
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < now:
            return False
    max_uses = code.get("max_uses")
    if max_uses and (code.get("current_uses") or 0) >= max_uses:
        return False
    return True


def calculate_recruit_price(
    recruit: dict,
    config: List[dict],
    now: Optional[datetime] = None,
    discount: Optional[dict] = None,
    override: Optional[dict] = None,
) -> Dict[str, Any]:
    """
    Price a recruit from active pricing_config rows.

    Args:
        recruit: row with motivation_score, transactions, created_at
        config: active pricing_config rows (config_type, tier_name, min_value,
                max_value, price_modifier)
        now: reference time for the age-based discount
        discount: discount_codes row for the code the Client entered, if any
        override: active admin_pricing_overrides row for the Client, if any
    """
    if override and override.get("flat_price") is not None:
        flat = float(override["flat_price"])
        return {
            "base_price": flat,
            "final_price": flat,
            "breakdown": {"type": "admin_override", "flat_price": flat},
        }

    now = now or datetime.now(timezone.utc)

    base_rows = _rows(config, "base")
    base_price = (_modifier(base_rows[0]) if base_rows else 0) or float(DEFAULT_BASE_PRICE)
    total = base_price
    breakdown: Dict[str, Any] = {"base": base_price}

    motivation = float(recruit.get("motivation_score") or 0)
    motivation_tiers = sorted(
        (r for r in _rows(config, "motivation") if _in_range(motivation, r, MOTIVATION_MAX_DEFAULT)),
        key=_modifier,
        reverse=True,
    )
    if motivation_tiers:
        tier = motivation_tiers[0]
        total += _modifier(tier)
        breakdown["motivation"] = {
            "score": motivation,
            "addon": _modifier(tier),
            "tier": tier.get("tier_name"),
        }

    transactions = int(recruit.get("transactions") or 0)
    transaction_tier = next(
        (r for r in _rows(config, "transactions") if _in_range(transactions, r, TRANSACTIONS_MAX_DEFAULT)),
        None,
    )
    if transaction_tier:
        total += _modifier(transaction_tier)
        breakdown["transactions"] = {
            "count": transactions,
            "addon": _modifier(transaction_tier),
            "tier": transaction_tier.get("tier_name"),
        }

    hours_old = _hours_since(recruit.get("created_at"), now)
    time_tiers = sorted(
        (r for r in _rows(config, "time_discount") if hours_old >= float(r.get("min_value") or 0)),
        key=_modifier,
        reverse=True,
    )
    time_discount = 0.0
    if time_tiers:
        tier = time_tiers[0]
        time_discount = total * _modifier(tier)
        breakdown["time_discount"] = {
            "hours": int(hours_old),
            "percent": _modifier(tier) * 100,
            "amount": time_discount,
            "tier": tier.get("tier_name"),
        }

    code_discount = 0.0
    if discount and discount_code_is_usable(discount, now):
        value = float(discount.get("discount_value") or 0)
        if discount.get("discount_type") == "percentage":
            code_discount = total * (value / 100)
        else:
            code_discount = value
        breakdown["discount_code"] = {
            "code": discount.get("code"),
            "type": discount.get("discount_type"),
            "value": value,
            "amount": code_discount,
        }

    return {
        "base_price": base_price,
        "total_before_discounts": total,
        "final_price": max(0.0, total - time_discount - code_discount),
        "breakdown": breakdown,
    }


def price_recruit(recruit_id: str, client_id: str, discount_code: Optional[str] = None) -> Dict[str, Any]:
    """Load pricing inputs from the database and price the recruit."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, motivation_score, transactions, created_at FROM pros WHERE id = %s",
                (recruit_id,),
            )
            recruit = fetchone_dict(cur)
            if not recruit:
                raise RecruitNotFound(recruit_id)

            cur.execute(
                """
                SELECT flat_price FROM admin_pricing_overrides
                WHERE client_id = %s AND active = TRUE
                LIMIT 1
                """,
                (client_id,),
            )
            override = fetchone_dict(cur)

            config: List[dict] = []
            discount = None
            if not override:
                cur.execute("SELECT * FROM pricing_config WHERE active = TRUE")
                config = fetchall_dicts(cur)
                if discount_code:
                    cur.execute(
                        "SELECT * FROM discount_codes WHERE code = %s AND active = TRUE LIMIT 1",
                        (discount_code,),
                    )
                    discount = fetchone_dict(cur)

    result = calculate_recruit_price(recruit, config, discount=discount, override=override)
    logger.info(
        "Recruit priced",
        extra={
            "action": "recruit_priced",
            "extra_data": {
                "recruit_id": recruit_id,
                "client_id": client_id,
                "final_price": result["final_price"],
            },
        },
    )
    return result
