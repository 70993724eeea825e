"""
Qualification scoring and pipeline stages for Pros.

The score is a capped sum of three threshold tables. Thresholds are checked
top-down and the first one that matches wins.
"""

from typing import Optional, List, Tuple

# (minimum, points), highest first
VOLUME_TIERS: List[Tuple[float, int]] = [
    (50_000_000, 40),
    (25_000_000, 30),
    (10_000_000, 20),
    (5_000_000, 10),
]

TRANSACTION_TIERS: List[Tuple[float, int]] = [
    (50, 30),
    (25, 20),
    (10, 10),
    (5, 5),
]

EXPERIENCE_TIERS: List[Tuple[float, int]] = [
    (10, 30),
    (5, 20),
    (3, 10),
    (1, 5),
]

MAX_SCORE = 100
QUALIFIED_THRESHOLD = 70
QUALIFYING_THRESHOLD = 40

PIPELINE_STAGES = ["new", "qualifying", "qualified", "match_ready", "matched", "purchased"]


def _tier_points(value: Optional[float], tiers: List[Tuple[float, int]]) -> int:
    value = value or 0
    for minimum, points in tiers:
        if value >= minimum:
            return points
    return 0


def calculate_qualification_score(
    transactions: Optional[float] = 0,
    total_volume: Optional[float] = 0,
    experience: Optional[float] = 0,
) -> int:
    """Score a Pro 0-100 from transactions, sales volume and years of experience."""
    score = (
        _tier_points(total_volume, VOLUME_TIERS)
        + _tier_points(transactions, TRANSACTION_TIERS)
        + _tier_points(experience, EXPERIENCE_TIERS)
    )
    return min(score, MAX_SCORE)


def stage_for_score(score: int) -> str:
    if score >= QUALIFIED_THRESHOLD:
        return "qualified"
    if score >= QUALIFYING_THRESHOLD:
        return "qualifying"
    return "new"


def is_valid_stage(stage: Optional[str]) -> bool:
    return stage in PIPELINE_STAGES


# Profile metrics shown on recruit cards

def average_deal_size(total_volume: Optional[float], transactions: Optional[float]) -> float:
    if not transactions:
        return 0
    return (total_volume or 0) / transactions


def volume_tier(total_volume: Optional[float]) -> str:
    volume = total_volume or 0
    if volume >= 100_000_000:
        return "Elite"
    if volume >= 50_000_000:
        return "High Volume"
    if volume >= 25_000_000:
        return "Mid Volume"
    if volume >= 10_000_000:
        return "Emerging"
    return "Entry Level"


def agent_focus(buyer_percentage: Optional[float], seller_percentage: Optional[float]) -> str:
    if (buyer_percentage or 0) > 60:
        return "Buyer Focused"
    if (seller_percentage or 0) > 60:
        return "Listing Focused"
    return "Balanced"


def _compact(amount: float, divisor: float, suffix: str) -> str:
    text = f"{amount / divisor:.1f}"
    if text.endswith(".0"):
        text = text[:-2]
    return f"${text}{suffix}"


def format_currency(amount: Optional[float]) -> str:
    """49612137 -> "$49.6M", 12500 -> "$12.5k", 9500 -> "$9,500"."""
    amount = amount or 0
    if amount >= 1_000_000_000:
        return _compact(amount, 1_000_000_000, "B")
    if amount >= 1_000_000:
        return _compact(amount, 1_000_000, "M")
    if amount >= 10_000:
        return _compact(amount, 1_000, "k")
    if float(amount).is_integer():
        return f"${int(amount):,}"
    return f"${amount:,.2f}"


def profile_summary(pro: dict) -> dict:
    """Derived metrics for a Pro row."""
    total_volume = pro.get("total_volume") or 0
    transactions = pro.get("transactions") or 0
    return {
        "volume_tier": volume_tier(total_volume),
        "agent_focus": agent_focus(pro.get("buyer_percentage"), pro.get("seller_percentage")),
        "average_deal_size": average_deal_size(total_volume, transactions),
        "total_volume_display": format_currency(total_volume),
    }
