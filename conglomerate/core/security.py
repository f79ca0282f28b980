# conglomerate/core/security.py
"""
Identity verification.

Sessions and tokens are issued by the external identity provider; this
module only checks the HS256 signature and turns the claims into an
``Identity``. The local ``profiles`` row, when present, is authoritative for
the role.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from conglomerate.core.config import settings
from conglomerate.core.database import get_db
from conglomerate.core.errors import ErrorCode, ServiceError
from conglomerate.models.profile import Profile, ProfileStatus, Role

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


@dataclass
class Identity:
    user_id: str
    role: str = Role.USER
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def verify_token(token: str) -> Optional[Identity]:
    """Decode a provider token; None when it is missing, invalid or expired."""
    if not token:
        return None
    options = {"verify_aud": settings.TOKEN_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.TOKEN_AUDIENCE,
            options=options,
        )
    except JWTError as exc:
        logger.debug("Token rejected: %s", exc)
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None
    role = (payload.get("app_metadata") or {}).get("role") or payload.get("role") or Role.USER
    if role not in (Role.USER, Role.ADMIN, Role.SUPPORT):
        role = Role.USER
    return Identity(user_id=str(user_id), role=role, email=payload.get("email"))


def ensure_profile(db: Session, identity: Identity) -> Profile:
    profile = db.get(Profile, identity.user_id)
    if profile is None:
        profile = Profile(id=identity.user_id, email=identity.email, role=identity.role)
        db.add(profile)
        db.commit()
        logger.info("Created profile for %s", identity.user_id)
    return profile


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> Identity:
    identity = verify_token(credentials.credentials if credentials else "")
    if identity is None:
        raise ServiceError(ErrorCode.UNAUTHORIZED, "Not authenticated")

    profile = ensure_profile(db, identity)
    if profile.status == ProfileStatus.BLOCKED:
        raise ServiceError(ErrorCode.FORBIDDEN, "Account is blocked")
    identity.role = profile.role
    return identity


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise ServiceError(ErrorCode.FORBIDDEN, "Admin access required")
    return identity
