"""
API key authentication dependency.

Optional, controlled by API_AUTH_ENABLED. When enabled every job and
sync endpoint requires an X-API-Key header matching API_KEY.
Both variables are read per request so tests and operators can toggle
them without reloading the app.
"""

import os
import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

api_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,
    description="API key (required when API_AUTH_ENABLED=true)",
)


def auth_enabled() -> bool:
    return os.getenv("API_AUTH_ENABLED", "false").lower() == "true"


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> Optional[str]:
    """
    Verify the X-API-Key header.

    Raises:
        HTTPException: 401 if auth is enabled and the key is missing or wrong
        HTTPException: 500 if auth is enabled but no API_KEY is configured
    """
    if not auth_enabled():
        return None

    expected = os.getenv("API_KEY", "")
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API_AUTH_ENABLED is set but API_KEY is empty",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not secrets.compare_digest(api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key
