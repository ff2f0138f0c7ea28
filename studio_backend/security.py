"""
Security utilities for the studio API.

API key authentication and per-key rate limiting, bypassed in dev mode
when no keys are configured.
"""

import time
from collections import defaultdict
from typing import Optional

from fastapi import Depends, Header, HTTPException

from studio_backend.config import config


# Request timestamps per API key, for a sliding one-minute window
_rate_limit_store: dict[str, list[float]] = defaultdict(list)


def get_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    authorization: Optional[str] = Header(None)
) -> Optional[str]:
    """
    Extract API key from headers.
    Supports both X-API-Key header and Bearer token.
    """
    if x_api_key:
        return x_api_key

    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]

    return None


def check_rate_limit(api_key: str, now: Optional[float] = None):
    """
    Raises:
        HTTPException: 429 once the key used up its requests for the minute
    """
    limit = config.RATE_LIMIT_PER_MINUTE
    if limit <= 0:
        return

    now = now or time.time()
    recent = [t for t in _rate_limit_store[api_key] if t > now - 60]
    if len(recent) >= limit:
        _rate_limit_store[api_key] = recent
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Max {limit} requests per minute.",
            headers={"Retry-After": "60"},
        )

    recent.append(now)
    _rate_limit_store[api_key] = recent


def reset_rate_limits():
    _rate_limit_store.clear()


async def verify_api_key(api_key: Optional[str] = Depends(get_api_key)) -> str:
    """
    Verify API key authentication.

    Returns the API key, or "dev" when auth is bypassed.
    """
    if not config.auth_required:
        return "dev"

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="API key required. Provide X-API-Key header or Bearer token.",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if api_key not in config.api_keys_list:
        raise HTTPException(status_code=403, detail="Invalid API key")

    check_rate_limit(api_key)
    return api_key


# Convenience dependency for routers that require auth
require_auth = Depends(verify_api_key)
