from typing import Optional

from fastapi import Header, HTTPException, status

from academy.core.config import settings


def verify_api_key(api_key: str) -> bool:
    """
    Verify API key against configured valid keys
    """
    valid_keys = settings.VALID_API_KEYS
    if isinstance(valid_keys, str):
        valid_keys = [valid_keys]

    return api_key in valid_keys


def verify_api_key_dependency(
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> bool:
    """
    Dependency to verify API key for admin endpoints
    """
    if not settings.REQUIRE_API_KEY:
        return True

    api_key = None
    if x_api_key:
        api_key = x_api_key
    elif authorization and authorization.startswith("Bearer "):
        api_key = authorization.split(" ")[1]

    if not api_key or not verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )

    return True
