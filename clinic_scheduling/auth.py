# clinic_scheduling/auth.py
import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .core.config import settings

logger = logging.getLogger(__name__)

oauth2_scheme = HTTPBearer()

ADMIN_ROLES = {"admin", "owner"}


@dataclass(frozen=True)
class AuthContext:
    """Who is calling and on behalf of which clinic.

    Tokens are issued by the identity service; this module only verifies
    them and never mints new ones.
    """

    user_id: int
    clinic_id: int
    role: str = "therapist"
    has_pro_access: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def decode_jwt_token(token: str) -> Optional[dict]:
    """Decode and verify JWT token"""
    if not settings.SECRET_KEY or settings.SECRET_KEY == "change-me-in-prod":
        logger.warning("JWT secret is not configured; rejecting token")
        return None
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def auth_context_from_claims(payload: dict) -> AuthContext:
    try:
        user_id = int(payload["sub"])
        clinic_id = int(payload["clinic_id"])
    except (KeyError, ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid token: missing user or clinic")
    return AuthContext(
        user_id=user_id,
        clinic_id=clinic_id,
        role=str(payload.get("role") or "therapist"),
        has_pro_access=bool(payload.get("has_pro_access", False)),
    )


def get_auth_context(credentials: HTTPAuthorizationCredentials = Depends(oauth2_scheme)) -> AuthContext:
    payload = decode_jwt_token(credentials.credentials)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return auth_context_from_claims(payload)


def require_admin(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not auth.is_admin:
        raise HTTPException(status_code=403, detail="Administrator role required")
    return auth


def ensure_discipline_allowed(auth: AuthContext, discipline_id: Optional[int]) -> None:
    """Discipline-scoped bookings need the pro plan; general sessions are always allowed."""
    if discipline_id is not None and not auth.has_pro_access:
        raise HTTPException(status_code=403, detail="Discipline-specific scheduling requires the Pro plan")


def ensure_can_justify(auth: AuthContext, therapist_id: int) -> None:
    """Absences are justified by the assigned therapist, or by an admin on their behalf."""
    if not auth.is_admin and auth.user_id != therapist_id:
        raise HTTPException(status_code=403, detail="Only the assigned therapist or an administrator can justify this absence")
