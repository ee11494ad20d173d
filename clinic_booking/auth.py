import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import settings

logger = logging.getLogger(__name__)

oauth2_scheme = HTTPBearer(auto_error=False)


@dataclass
class Principal:
    user_id: str
    organization_id: str


def decode_jwt_token(token: str) -> Optional[dict]:
    """Decode and verify JWT token"""
    if not settings.SECRET_KEY or settings.SECRET_KEY == "change-me-in-prod":
        return None
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def get_current_principal(credentials: HTTPAuthorizationCredentials = Depends(oauth2_scheme)) -> Principal:
    if not credentials or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    payload = decode_jwt_token(credentials.credentials)
    if not payload:
        logger.warning("JWT token decode failed - invalid or expired token")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: missing user ID")
    organization_id = payload.get("org")
    if not organization_id:
        raise HTTPException(status_code=403, detail="No active organization for this user")
    return Principal(user_id=str(user_id), organization_id=str(organization_id))
