"""Operator authentication helpers for the admin API."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from config import settings


class AdminTokenPayload(BaseModel):
    """Token payload stored in JWT."""

    sub: str  # operator username
    role: str
    exp: int


http_bearer = HTTPBearer(auto_error=False)


def verify_operator(username: str, password: str) -> bool:
    """Check credentials against the configured operator account."""
    username_ok = secrets.compare_digest(username.encode("utf-8"), settings.admin_username.encode("utf-8"))
    password_ok = secrets.compare_digest(password.encode("utf-8"), settings.admin_password.encode("utf-8"))
    return username_ok and password_ok


def create_access_token(username: str, role: str = "admin") -> str:
    """Generate a JWT token for an operator."""
    expires = datetime.now(timezone.utc) + timedelta(minutes=settings.admin_jwt_exp_minutes)
    payload = {
        "sub": username,
        "role": role,
        "exp": expires,
    }
    return jwt.encode(payload, settings.admin_jwt_secret, algorithm=settings.admin_jwt_algorithm)


def decode_token(token: str) -> AdminTokenPayload:
    """Decode and validate JWT token."""
    try:
        decoded = jwt.decode(
            token,
            settings.admin_jwt_secret,
            algorithms=[settings.admin_jwt_algorithm],
        )
        return AdminTokenPayload(**decoded)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired token",
        ) from exc


def get_current_operator(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> AdminTokenPayload:
    """FastAPI dependency returning the authenticated operator."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
        )
    return decode_token(credentials.credentials)
