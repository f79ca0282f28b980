# conglomerate/models/deposit.py
import uuid
from sqlalchemy import Column, Integer, String, ForeignKey, Text, JSON, CheckConstraint
from sqlalchemy.orm import relationship
from conglomerate.core.database import Base
from conglomerate.core.money import Money, UTCDateTime, utcnow


class DepositStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class Deposit(Base):
    __tablename__ = "deposits"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_deposits_amount_positive"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    amount = Column(Money(), nullable=False)
    currency = Column(String(10), nullable=False, default="USD")
    payment_details = Column(JSON, default=dict)
    status = Column(String, nullable=False, default=DepositStatus.PENDING, index=True)  # pending, confirmed, rejected, withdrawn
    admin_id = Column(String(64), ForeignKey("profiles.id"))
    admin_note = Column(Text)
    confirmed_at = Column(UTCDateTime())
    created_at = Column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime(), default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {
        "version_id_col": version
    }

    user = relationship("Profile", foreign_keys=[user_id])
    investment = relationship("Investment", back_populates="deposit", uselist=False)
