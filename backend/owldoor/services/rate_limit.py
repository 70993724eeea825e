"""
Sliding-window request limiter backed by the rate_limits table.
"""

from ..db import get_conn
from ..logging_config import get_logger

logger = get_logger(__name__)


def check_rate_limit(identifier: str, endpoint: str, max_requests: int, window_minutes: int,
                     cost: int = 1) -> bool:
    """
    Record a request and report whether the caller is still under its limit.

    A request counts as `cost` units (one per location in a batch geocode).
    Returns False when those units would take `identifier` past `max_requests`
    for `endpoint` inside the window; nothing is recorded then. Database errors
    propagate; callers decide whether to fail open or closed.
    """
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT COUNT(*) FROM rate_limits
                WHERE identifier = %s AND endpoint = %s
                  AND created_at > NOW() - make_interval(mins => %s)
                """,
                (identifier, endpoint, window_minutes),
            )
            count = cur.fetchone()[0]
            if count + cost > max_requests:
                logger.warning(
                    "Rate limit exceeded",
                    extra={
                        "action": "rate_limit_exceeded",
                        "extra_data": {"endpoint": endpoint, "identifier": identifier,
                                       "count": count, "cost": cost},
                    },
                )
                return False
            cur.execute(
                """
                INSERT INTO rate_limits (identifier, endpoint, created_at)
                SELECT %s, %s, NOW() FROM generate_series(1, %s)
                """,
                (identifier, endpoint, cost),
            )
    return True


def client_ip(request) -> str:
    """First address in x-forwarded-for, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"
