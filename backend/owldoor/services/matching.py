"""
Auto-matching of match-ready Pros to Clients with credits

Every eligible (Pro, Client) pair becomes a pending lead_purchase match, which
is then auto-charged against the Client's prepaid credits.
"""

from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..db import get_conn, fetchone_dict, fetchall_dicts, as_json
from ..logging_config import get_logger, log_action
from .geocoding import haversine_miles

logger = get_logger(__name__)

MATCH_RADIUS_MILES = 50
ESTIMATED_MATCH_COST = 300
TIER_COSTS = {"premium": 500, "qualified": 300}
DEFAULT_MATCH_COST = 50

MATCHABLE_STATUSES = ("active", "verified", "qualified")

COMPATIBLE_TYPES = {
    "real_estate_agent": "real_estate",
    "mortgage_officer": "mortgage",
}


class InsufficientCredits(Exception):
    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        self.status_code = 400
        super().__init__(f"Insufficient credits (${available} < ${required})")


class MatchNotFound(Exception):
    def __init__(self, match_id: str):
        self.status_code = 404
        super().__init__(f"Match not found: {match_id}")


def _pro_type(pro: dict) -> Optional[str]:
    return pro.get("pro_type") or pro.get("lead_type")


def _num(row: dict, key: str) -> float:
    return float(row.get(key) or 0)


def _overlap(a: Optional[Iterable[str]], b: Optional[Iterable[str]]) -> int:
    if not a or not b:
        return 0
    other = set(b)
    return sum(1 for item in a if item in other)


def _coordinates(row: dict) -> Optional[Tuple[float, float]]:
    lat, lng = row.get("latitude"), row.get("longitude")
    if lat is None or lng is None:
        return None
    return float(lat), float(lng)


def _distance(pro: dict, client: dict) -> Optional[float]:
    pro_coords, client_coords = _coordinates(pro), _coordinates(client)
    if not pro_coords or not client_coords:
        return None
    return haversine_miles(*pro_coords, *client_coords)


def is_matchable_pro(pro: dict) -> bool:
    """Paid leads need motivation above 5, or both wants and needs filled in."""
    motivation = pro.get("motivation")
    if motivation is not None and float(motivation) > 5:
        return True
    wants = pro.get("wants")
    needs = pro.get("needs")
    return bool(isinstance(wants, list) and wants and needs and needs.strip())


def types_compatible(pro_type: Optional[str], client_type: Optional[str]) -> bool:
    return pro_type is not None and COMPATIBLE_TYPES.get(pro_type) == client_type


def exceeds_spend_limit(client: dict) -> bool:
    limit = _num(client, "monthly_spend_limit")
    spend = _num(client, "current_month_spend")
    if not limit or not spend:
        return False
    return spend + ESTIMATED_MATCH_COST > limit


def has_geographic_match(pro: dict, client: dict) -> bool:
    distance = _distance(pro, client)
    if distance is not None and distance <= MATCH_RADIUS_MILES:
        return True
    return bool(
        _overlap(client.get("zip_codes"), pro.get("zip_codes"))
        or _overlap(client.get("cities"), pro.get("cities"))
        or _overlap(client.get("states"), pro.get("states"))
    )


def _geographic_score(pro: dict, client: dict) -> float:
    distance = _distance(pro, client)
    if distance is not None:
        if distance <= 5:
            return 50
        if distance <= 10:
            return 45
        if distance <= 25:
            return 35
        if distance <= 50:
            return 25
        return 10
    return (
        min(_overlap(client.get("zip_codes"), pro.get("zip_codes")) * 5, 30)
        + min(_overlap(client.get("cities"), pro.get("cities")) * 5, 15)
        + min(_overlap(client.get("states"), pro.get("states")) * 5, 5)
    )


def _performance_score(pro: dict) -> float:
    pro_type = _pro_type(pro)
    if pro_type == "real_estate_agent":
        return (
            min(_num(pro, "transactions") * 2, 20)
            + min(_num(pro, "total_volume_12mo") / 500_000, 20)
            + min(_num(pro, "qualification_score") / 10, 10)
        )
    if pro_type == "mortgage_officer":
        return (
            min(_num(pro, "annual_loan_volume") / 1_000_000, 30)
            + min(_num(pro, "on_time_close_rate") / 5, 20)
        )
    return 0


def calculate_direct_match_score(pro: dict, client: dict) -> Dict[str, Any]:
    geographic = _geographic_score(pro, client)
    performance = _performance_score(pro)
    return {
        "pro_id": pro["id"],
        "client_id": client["id"],
        "score": min(geographic + performance, 100),
        "breakdown": {
            "geographic": geographic,
            "performance": performance,
            "specialization": 0,
            "type_specific": 0,
            "bonus": 0,
        },
    }


def plan_matches(
    pros: List[dict],
    clients: List[dict],
    existing_pairs: Set[Tuple[str, str]],
) -> Tuple[List[dict], Dict[str, int]]:
    """
    Decide which (Pro, Client) pairs become matches.

    Returns:
        (matches, stats) where each match is the output of calculate_direct_match_score
    """
    matches: List[dict] = []
    stats = {
        "pros_processed": len(pros),
        "clients_checked": len(clients),
        "type_mismatches": 0,
        "no_overlap": 0,
        "criteria_failed": 0,
        "spend_limit_reached": 0,
        "matches_created": 0,
    }

    for pro in pros:
        if not is_matchable_pro(pro):
            stats["criteria_failed"] += 1
            continue

        for client in clients:
            if not types_compatible(_pro_type(pro), client.get("client_type")):
                stats["type_mismatches"] += 1
                continue
            if exceeds_spend_limit(client):
                stats["spend_limit_reached"] += 1
                continue
            if not has_geographic_match(pro, client):
                stats["no_overlap"] += 1
                continue
            if (pro["id"], client["id"]) in existing_pairs:
                continue
            matches.append(calculate_direct_match_score(pro, client))

    stats["matches_created"] = len(matches)
    return matches, stats


def charge_cost(match: dict) -> float:
    return float(match.get("cost") or TIER_COSTS.get(match.get("pricing_tier"), DEFAULT_MATCH_COST))


def auto_charge_match(match_id: str) -> Dict[str, Any]:
    """
    Deduct a match's cost from the Client's credits and mark it purchased.

    Raises:
        MatchNotFound: unknown match id
        InsufficientCredits: the Client's balance does not cover the cost
    """
    with get_conn() as conn:
        with conn.transaction(), conn.cursor() as cur:
            cur.execute(
                """
                SELECT m.id, m.client_id, m.cost, m.pricing_tier, m.purchased,
                       c.credits_balance, c.credits_used, c.current_month_spend,
                       p.full_name AS pro_name
                FROM matches m
                JOIN clients c ON c.id = m.client_id
                JOIN pros p ON p.id = m.pro_id
                WHERE m.id = %s
                FOR UPDATE OF m, c
                """,
                (match_id,),
            )
            match = fetchone_dict(cur)
            if not match:
                raise MatchNotFound(match_id)

            if match.get("purchased"):
                logger.info(f"Match {match_id} already purchased")
                return {"success": True, "already_purchased": True}

            cost = charge_cost(match)
            balance = _num(match, "credits_balance")
            if balance < cost:
                logger.info(
                    "Insufficient credits for auto-charge",
                    extra={
                        "action": "auto_charge_insufficient",
                        "extra_data": {"match_id": match_id, "required": cost, "available": balance},
                    },
                )
                raise InsufficientCredits(cost, balance)

            cur.execute(
                """
                UPDATE clients
                SET credits_balance = %s, credits_used = %s, current_month_spend = %s
                WHERE id = %s
                """,
                (
                    balance - cost,
                    _num(match, "credits_used") + cost,
                    _num(match, "current_month_spend") + cost,
                    match["client_id"],
                ),
            )
            cur.execute(
                "UPDATE matches SET purchased = TRUE, auto_charged_at = NOW(), cost = %s WHERE id = %s",
                (cost, match_id),
            )
            cur.execute(
                """
                INSERT INTO payment_activity_log
                    (user_id, activity_type, amount, currency, status, metadata)
                VALUES (%s, 'match_auto_charge_credits', %s, 'usd', 'succeeded', %s)
                """,
                (
                    match["client_id"],
                    cost,
                    as_json({
                        "match_id": match_id,
                        "pro_name": match.get("pro_name"),
                        "pricing_tier": match.get("pricing_tier"),
                        "payment_method": "credits",
                    }),
                ),
            )

    log_action(logger, "info", "auto_charge_success", f"Deducted ${cost} in credits",
               match_id=match_id, client_id=match["client_id"])
    return {
        "success": True,
        "amount_charged": cost,
        "match_id": match_id,
        "payment_method": "credits",
        "new_balance": balance - cost,
    }


def _load_candidates(cur) -> Tuple[List[dict], List[dict], Set[Tuple[str, str]]]:
    cur.execute(
        "SELECT * FROM pros WHERE pipeline_stage = 'match_ready' AND status = ANY(%s)",
        (list(MATCHABLE_STATUSES),),
    )
    pros = fetchall_dicts(cur)
    cur.execute(
        """
        SELECT id, credits_balance, monthly_spend_limit, current_month_spend, client_type,
               company_name, provides, zip_codes, cities, states, latitude, longitude
        FROM clients
        WHERE active = TRUE AND credits_balance > 0
        """
    )
    clients = fetchall_dicts(cur)

    existing: Set[Tuple[str, str]] = set()
    if pros and clients:
        cur.execute(
            "SELECT pro_id, client_id FROM matches WHERE pro_id = ANY(%s)",
            ([p["id"] for p in pros],),
        )
        existing = {(row[0], row[1]) for row in cur.fetchall()}
    return pros, clients, existing


def _insert_matches(cur, matches: List[dict]) -> List[dict]:
    inserted = []
    for m in matches:
        cur.execute(
            """
            INSERT INTO matches (pro_id, client_id, match_score, match_type, status,
                                 score_breakdown, created_at)
            VALUES (%s, %s, %s, 'lead_purchase', 'pending', %s, NOW())
            RETURNING id, pro_id, client_id
            """,
            (m["pro_id"], m["client_id"], m["score"], as_json(m["breakdown"])),
        )
        inserted.append(fetchone_dict(cur))
    return inserted


def run_auto_match() -> Dict[str, Any]:
    """Match every match-ready Pro against every eligible Client and auto-charge the results."""
    logger.info("Starting auto-match run", extra={"action": "auto_match_start"})

    with get_conn() as conn:
        with conn.cursor() as cur:
            pros, clients, existing = _load_candidates(cur)

            if not pros:
                return {"success": True, "message": "No match-ready pros found", "matches_created": 0}
            if not clients:
                return {"success": True, "message": "No eligible clients found", "matches_created": 0}

            matches, stats = plan_matches(pros, clients, existing)
            inserted = _insert_matches(cur, matches) if matches else []

    for match in inserted:
        try:
            auto_charge_match(match["id"])
        except Exception as e:
            logger.error(
                f"Auto-charge failed for match {match['id']}: {e}",
                extra={"action": "auto_charge_failed", "extra_data": {"client_id": match["client_id"]}},
            )

    if matches:
        matched_pro_ids = list({m["pro_id"] for m in matches})
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE pros SET pipeline_stage = 'matched' WHERE id = ANY(%s)",
                    (matched_pro_ids,),
                )

    logger.info("Auto-match run complete", extra={"action": "auto_match_complete", "extra_data": stats})
    return {
        "success": True,
        "message": "Auto-matching complete",
        "stats": stats,
        "matches": [
            {"pro_id": m["pro_id"], "client_id": m["client_id"], "score": m["score"]}
            for m in matches
        ],
    }
