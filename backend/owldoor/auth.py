"""
Request authentication for machine callers.

Interactive user auth lives with the BaaS; this backend only verifies the shared
webhook secret used by lead senders, the internal secret held by trusted
services (matching and charging), and hashed API keys issued to Clients for
Zapier-style integrations.
"""
import hashlib
import hmac
import os
from fastapi import Request, HTTPException
from .db import get_conn, fetchone_dict
from .logging_config import get_logger, client_id_var

logger = get_logger(__name__)

AGENT_WEBHOOK_SECRET = os.getenv("AGENT_WEBHOOK_SECRET", "")
INTERNAL_API_SECRET = os.getenv("INTERNAL_API_SECRET", "")


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def _configured_secret(env_var: str, default: str) -> str:
    # Re-read so a secret loaded from .env after import is still seen
    return os.getenv(env_var, default)


def _check_shared_secret(request: Request, header: str, env_var: str, default: str,
                         label: str) -> None:
    expected = _configured_secret(env_var, default)
    if not expected:
        logger.error(f"{env_var} not configured", extra={"action": "secret_not_configured"})
        raise HTTPException(status_code=500, detail=f"{label} not configured")

    provided = request.headers.get(header) or ""
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(f"Invalid {header}", extra={"action": "secret_unauthorized"})
        raise HTTPException(status_code=401, detail="Unauthorized")


async def require_webhook_secret(request: Request) -> None:
    """
    FastAPI dependency guarding inbound lead webhooks.

    Usage in routes:
        @router.post("/api/webhooks/agent-lead", dependencies=[Depends(require_webhook_secret)])
    """
    _check_shared_secret(request, "x-webhook-secret", "AGENT_WEBHOOK_SECRET", AGENT_WEBHOOK_SECRET,
                         "Webhook")


async def require_internal_secret(request: Request) -> None:
    """Guards operations only trusted services may trigger: matching runs and credit charges."""
    _check_shared_secret(request, "x-internal-secret", "INTERNAL_API_SECRET", INTERNAL_API_SECRET,
                         "Internal access")


def _extract_api_key(request: Request) -> str | None:
    api_key = request.headers.get("x-api-key")
    if api_key:
        return api_key
    authorization = request.headers.get("authorization") or ""
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return None


def lookup_api_key(key_hash: str) -> dict | None:
    """Find the active api_keys row for a hash and stamp last_used_at."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, client_id FROM api_keys WHERE key_hash = %s AND active = TRUE",
                (key_hash,),
            )
            row = fetchone_dict(cur)
            if row:
                cur.execute("UPDATE api_keys SET last_used_at = NOW() WHERE id = %s", (row["id"],))
    return row


async def require_api_key(request: Request) -> str:
    """
    FastAPI dependency that returns the Client id owning the presented API key.
    """
    api_key = _extract_api_key(request)
    if not api_key:
        raise HTTPException(status_code=401, detail="API key required")

    row = lookup_api_key(hash_api_key(api_key))
    if not row:
        logger.warning("Invalid API key", extra={"action": "api_key_rejected"})
        raise HTTPException(status_code=401, detail="Invalid API key")

    client_id = str(row["client_id"]) if row.get("client_id") is not None else None
    request.state.client_id = client_id
    if client_id:
        client_id_var.set(client_id)
    return client_id
