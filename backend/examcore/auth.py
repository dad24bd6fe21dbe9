"""
Bearer-token identity for the HTTP layer.

Tokens are issued elsewhere; this module only decodes them. A token yields
the caller's user ID (``userId`` or ``sub`` claim) and role. Tokens listed
in the session cache under ``bl_<token>`` have been revoked and are
rejected.
"""

import os

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from examcore.roles import STUDENT, ROLES, is_elevated
from examcore.logging_config import get_logger, log_with_context

logger = get_logger("auth")

JWT_SECRET = os.getenv("JWT_SECRET", "your_jwt_secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

security = HTTPBearer(auto_error=False)


class Identity(BaseModel):
    """Authenticated caller extracted from a validated JWT."""
    user_id: str
    role: str = STUDENT

    @property
    def is_elevated(self) -> bool:
        return is_elevated(self.role)


def decode_token(token: str) -> Identity:
    """Decode and validate a JWT. Raises HTTP 401 on any failure."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        log_with_context(logger, "WARNING", "Rejected token: {}".format(e))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Authentication failed")

    user_id = payload.get("userId") or payload.get("sub")
    role = payload.get("role", STUDENT)
    if not user_id or role not in ROLES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Authentication failed")
    return Identity(user_id=str(user_id), role=role)


def get_current_user(request: Request,
                     creds: HTTPAuthorizationCredentials = Depends(security)) -> Identity:
    """FastAPI dependency resolving the Authorization header to an Identity."""
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Authentication required")

    cache = getattr(request.app.state, "cache", None)
    if cache is not None and cache.get(f"bl_{creds.credentials}"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Token has been invalidated")

    return decode_token(creds.credentials)


def require_elevated(identity: Identity = Depends(get_current_user)) -> Identity:
    """Coarse role gate for instructor/admin endpoints."""
    if not identity.is_elevated:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permission denied")
    return identity
