# backend/consultbook/auth.py
"""
Bearer token handling.

Tokens are issued by the identity collaborator; this module only verifies
them. ``sub`` carries the user id. ``create_access_token`` exists for
operational tooling and tests.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional, cast

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
import jwt
from jwt import PyJWTError
from pydantic import SecretStr

from .core.config import settings

logger = logging.getLogger(__name__)

oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def _secret_value(secret_obj: Any) -> str:
    if isinstance(secret_obj, SecretStr):
        return secret_obj.get_secret_value()
    return str(secret_obj)


def decode_access_token(token: str) -> Dict[str, Any]:
    payload_raw = jwt.decode(
        token,
        _secret_value(settings.secret_key),
        algorithms=[settings.algorithm],
        options={"verify_aud": False},
    )
    return cast(Dict[str, Any], payload_raw)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_LIFETIME)
    return cast(
        str,
        jwt.encode(
            {"sub": user_id, "exp": expire},
            _secret_value(settings.secret_key),
            algorithm=settings.algorithm,
        ),
    )


async def get_current_user_id(token: Optional[str] = Depends(oauth2_scheme_optional)) -> str:
    """
    Dependency returning the user id from the bearer token.

    Raises:
        HTTPException: 401 when the token is missing, invalid or expired
    """
    invalid_credentials = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_access_token(token)
    except PyJWTError as e:
        logger.warning(f"JWT validation error: {str(e)}")
        raise invalid_credentials

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        logger.warning("Token payload missing 'sub' field")
        raise invalid_credentials
    return user_id
