"""API key authentication for the sidring gateway.

Empty key = development mode, every request passes.
Otherwise X-API-Key must match one of the configured keys. Several keys
may be configured, comma separated, so a key can be rotated without
downtime.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

logger = logging.getLogger("sidring.audit")

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def parse_api_keys(configured: str) -> tuple[str, ...]:
    return tuple(key.strip() for key in configured.split(",") if key.strip())


def make_api_key_checker(configured: str):
    """Return a FastAPI dependency enforcing the configured key(s)."""
    accepted = parse_api_keys(configured)

    async def check_api_key(
        request: Request,
        api_key: str | None = Security(_api_key_header),
    ) -> str | None:
        if not accepted:
            return None
        if api_key is not None and any(
            hmac.compare_digest(api_key.encode(), key.encode()) for key in accepted
        ):
            return api_key
        logger.warning("Rejected API key for %s %s", request.method, request.url.path)
        raise HTTPException(status_code=401, detail="Invalid or missing API key")

    return check_api_key
