"""
Bearer-token authentication.

Token issuance belongs to the identity service; this module only decodes the
JWT into an Actor and offers a helper to mint tokens for local tooling.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from config import JWT_ALGORITHM, JWT_EXPIRE_MINUTES, JWT_SECRET
from schemas import Role

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class Actor(BaseModel):
    """The authenticated caller."""

    user_id: str
    role: Role


def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXPIRE_MINUTES)
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "role": role, "iat": now, "exp": now + expires_delta}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Actor:
    """Decode a JWT into an Actor.

    Raises:
        HTTPException: 401 if the token is invalid, expired or lacks a known role
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return Actor(user_id=payload["sub"], role=payload["role"])
    except (JWTError, KeyError, ValidationError) as e:
        logger.warning("token_rejected", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Actor:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decode_token(credentials.credentials)
