"""API key authentication and rate limiting for the reconciliation API."""

import os
import secrets
import logging

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

limiter = Limiter(key_func=get_remote_address)

# Statement uploads run the whole matching pipeline, so they get their own budget
UPLOAD_RATE_LIMIT = os.getenv("UPLOAD_RATE_LIMIT", "10/minute")


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    """Check the bearer token against the API_KEY environment variable.

    Args:
        credentials: HTTP Bearer credentials from the request, if any.

    Returns:
        The verified API key.

    Raises:
        HTTPException: 500 when API_KEY is not configured, 401 when the token
            is missing or wrong.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")

    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not secrets.compare_digest(credentials.credentials, expected_key):
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(
            status_code=401,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials
