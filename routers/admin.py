"""Operator login and credential lookup endpoints."""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from admin_auth import create_access_token, verify_operator
from api_rate_limiter import RATE_LIMITS, limiter
from store import BinStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


class LoginRequest(BaseModel):
    username: str
    password: str


@router.post("/auth/login")
@limiter.limit(RATE_LIMITS["login"])
def login(request: Request, credentials: LoginRequest) -> Dict[str, Any]:
    """Exchange operator credentials for a JWT."""
    if not verify_operator(credentials.username, credentials.password):
        logger.warning(f"Failed login attempt for {credentials.username}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    return {
        "success": True,
        "token": create_access_token(credentials.username),
        "user": {"username": credentials.username, "role": "admin"},
    }


@router.get("/users/{rfid_uid}")
def get_user_by_rfid(rfid_uid: str, store: BinStore = Depends(get_store)) -> Dict[str, Any]:
    """Check whether an RFID code belongs to an active credential."""
    credential = store.get_credential(rfid_uid)
    if credential is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return {
        "success": True,
        "data": {
            "rfid_uid": credential.rfid_uid,
            "name": credential.name,
            "email": credential.email,
            "role": credential.role,
            "is_active": credential.is_active,
        },
    }
