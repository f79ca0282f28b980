# conglomerate/models/withdrawal.py
import uuid
from sqlalchemy import Column, Integer, String, ForeignKey, Text, JSON, CheckConstraint
from sqlalchemy.orm import relationship
from conglomerate.core.database import Base
from conglomerate.core.money import Money, UTCDateTime, utcnow, ZERO


class WithdrawalStatus:
    REQUESTED = "requested"
    APPROVED = "approved"
    SENT = "sent"
    REJECTED = "rejected"


class WithdrawalKind:
    PARTIAL = "partial"
    CLOSE = "close"


class Withdrawal(Base):
    __tablename__ = "withdrawals"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawals_amount_positive"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    investment_id = Column(String(36), ForeignKey("investments.id"), nullable=False, index=True)
    user_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    amount = Column(Money(), nullable=False)
    kind = Column(String, nullable=False, default=WithdrawalKind.PARTIAL)  # partial, close
    destination = Column(JSON, default=dict)
    status = Column(String, nullable=False, default=WithdrawalStatus.REQUESTED, index=True)  # requested, approved, sent, rejected
    admin_id = Column(String(64), ForeignKey("profiles.id"))
    admin_note = Column(Text)
    network_fee = Column(Money(), nullable=False, default=ZERO)
    tx_hash = Column(String(128))
    processed_at = Column(UTCDateTime())
    created_at = Column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime(), default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {
        "version_id_col": version
    }

    investment = relationship("Investment", back_populates="withdrawals")
