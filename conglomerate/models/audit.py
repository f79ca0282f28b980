# conglomerate/models/audit.py
from sqlalchemy import Column, Integer, String, JSON
from conglomerate.core.database import Base
from conglomerate.core.money import UTCDateTime, utcnow


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_user_id = Column(String(64), index=True)
    action = Column(String, nullable=False, index=True)  # e.g. admin.deposit.approve
    entity_type = Column(String)
    entity_id = Column(String)
    meta = Column(JSON, default=dict)
    created_at = Column(UTCDateTime(), default=utcnow)
