# delayqueue/auth.py
"""
API key check for the admin endpoints that change task state.

Keys travel only in the X-API-Key header and are compared in constant time.
Without DELAYQUEUE_API_KEY the check is disabled, for local development.
"""

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from .config import get_settings

logger = logging.getLogger("delayqueue.auth")

DEV_BYPASS = "dev-bypass"


def configured_api_key() -> Optional[str]:
    return get_settings().API_KEY


def is_auth_enabled() -> bool:
    return bool(configured_api_key())


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key")
) -> str:
    """
    FastAPI dependency guarding submit, cancel and reconcile.

    Returns:
        str: The accepted key, or DEV_BYPASS when authentication is disabled

    Raises:
        HTTPException: 401 when the header is missing, 403 when the key is wrong
    """
    expected = configured_api_key()
    if not expected:
        return DEV_BYPASS

    if not x_api_key:
        logger.warning("Admin request without X-API-Key rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-API-Key header",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not secrets.compare_digest(x_api_key.encode("utf-8"), expected.encode("utf-8")):
        # Never log more than a short prefix of a presented key
        logger.warning(f"Admin request with invalid API key {x_api_key[:4]}... rejected")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")

    return x_api_key


def generate_api_key(length: int = 32) -> str:
    """New random key for DELAYQUEUE_API_KEY"""
    return secrets.token_urlsafe(length)
