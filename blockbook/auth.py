"""
Token-based authentication for mutating endpoints.

Security model:
- If API_TOKEN is not set, authentication is disabled (local development only)
- If API_TOKEN is set, endpoints that include `Depends(verify_api_token)` require
  a valid token via X-API-Key
- No query param token support (prevents log/referrer leakage)
- No local bypass when a token is configured

Reads (GET) stay public so the frontend can poll request status.
"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from .config import Settings, get_settings


# API key via header only
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_token(
    api_key: Optional[str] = Depends(api_key_header),
    settings: Settings = Depends(get_settings),
) -> bool:
    """
    Verify API token if configured.

    Returns:
        True if authentication passes

    Raises:
        HTTPException: 401 if authentication fails
    """
    # WARNING: Never run in production without API_TOKEN set
    if not settings.api_token:
        return True

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API token required. Provide via X-API-Key header.",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    # compare_digest only takes ASCII str, so compare bytes
    if not secrets.compare_digest(api_key.encode(), settings.api_token.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API token",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    return True
