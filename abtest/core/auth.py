import logging
import secrets
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from .settings import config_settings

logger = logging.getLogger(__name__)

# The engine sends its api_key as a Bearer token. No token endpoint is served;
# tokenUrl only appears in the OpenAPI schema.
bearer_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def is_known_token(token: str) -> bool:
    """Checks ``token`` against every configured API token in constant time."""
    return any(secrets.compare_digest(token, known) for known in config_settings.TOKENS)


def require_auth_token(token: Annotated[Optional[str], Depends(bearer_scheme)]) -> str:
    """
    Route dependency guarding the public and internal routers.

    Both a missing and an unknown token answer 401; only the unknown case is
    logged, since the engine always sends its configured key.
    """
    if not token:
        raise _unauthorized("Missing API token")

    if not is_known_token(token):
        logger.warning("Rejected request with an unknown API token")
        raise _unauthorized("Could not validate credentials")

    return token
