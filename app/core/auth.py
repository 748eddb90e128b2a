import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.core.config import settings

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24
INTERNAL_PRINCIPAL = "internal_service"

security = HTTPBearer()


def create_access_token(user_id: str, role: str = "user", expires_hours: int = ACCESS_TOKEN_EXPIRE_HOURS) -> str:
    """Tokens are normally issued by the identity provider; used here for tooling and tests."""
    expire = datetime.now(timezone.utc) + timedelta(hours=expires_hours)
    payload = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=ALGORITHM)


def is_internal_key(token: str) -> bool:
    return hmac.compare_digest(token, settings.INTERNAL_API_KEY)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    if payload.get("sub") is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )
    return payload


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """User id from a bearer JWT, or INTERNAL_PRINCIPAL for server-to-server calls."""
    token = credentials.credentials

    if is_internal_key(token):
        return INTERNAL_PRINCIPAL

    return decode_token(token)["sub"]


def get_current_user(principal: str = Depends(get_current_principal)) -> str:
    if principal == INTERNAL_PRINCIPAL:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This endpoint requires a user token",
        )
    return principal


def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    token = credentials.credentials

    # Internal API key (server-to-server)
    if is_internal_key(token):
        return INTERNAL_PRINCIPAL

    payload = decode_token(token)
    if payload.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return payload["sub"]


def owner_filter(principal: str) -> Optional[str]:
    """user_id to scope queries by; None means unrestricted (internal caller)."""
    return None if principal == INTERNAL_PRINCIPAL else principal
