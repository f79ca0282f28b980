# conglomerate/models/profile.py
from sqlalchemy import Column, String
from conglomerate.core.database import Base
from conglomerate.core.money import Money, UTCDateTime, utcnow


class Role:
    USER = "user"
    ADMIN = "admin"
    SUPPORT = "support"


class ProfileStatus:
    ACTIVE = "active"
    BLOCKED = "blocked"
    PENDING = "pending"


class Profile(Base):
    """Local mirror of an identity-provider user."""

    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True, index=True)
    email = Column(String, unique=True)
    full_name = Column(String)
    role = Column(String, nullable=False, default=Role.USER)  # user, admin, support
    status = Column(String, nullable=False, default=ProfileStatus.ACTIVE)  # active, blocked, pending
    monthly_percentage = Column(Money())  # null falls back to DEFAULT_MONTHLY_PERCENTAGE
    created_at = Column(UTCDateTime(), default=utcnow)
    updated_at = Column(UTCDateTime(), default=utcnow, onupdate=utcnow)
