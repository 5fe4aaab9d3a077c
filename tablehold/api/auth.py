"""Bearer token identity.

Accounts live in the external auth service; this module only reads the
user id out of its access tokens. Anonymous callers are allowed on most
routes: ``get_requesting_user_id`` yields ``None`` when no token is sent,
while ``get_current_user_id`` requires one.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from tablehold.config import settings

# OAuth2 scheme; auto_error off so anonymous requests pass through
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def create_access_token(user_id: int, expires_minutes: Optional[int] = None) -> str:
    """Create JWT access token in the auth service's format"""
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": str(user_id),
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_user_id(token: str) -> int:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
        )
        user_id = payload.get("sub")
        token_type = payload.get("type")

        if user_id is None or token_type != "access":
            raise credentials_exception
        return int(user_id)
    except (JWTError, ValueError):
        raise credentials_exception


async def get_requesting_user_id(
    token: Optional[str] = Depends(oauth2_scheme),
) -> Optional[int]:
    """User id of the caller, or None for anonymous requests.

    A token that is present but invalid is still rejected.
    """
    if not token:
        return None
    return decode_user_id(token)


async def get_current_user_id(
    token: Optional[str] = Depends(oauth2_scheme),
) -> int:
    """User id of the caller; the token is required"""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decode_user_id(token)
