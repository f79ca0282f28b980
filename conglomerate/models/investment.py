# conglomerate/models/investment.py
import uuid
from decimal import Decimal
from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from conglomerate.core.database import Base
from conglomerate.core.money import Money, Carry, UTCDateTime, utcnow, ZERO


class InvestmentStatus:
    ACTIVE = "active"
    FROZEN = "frozen"
    CLOSED = "closed"

    ALL = (ACTIVE, FROZEN, CLOSED)


class Investment(Base):
    __tablename__ = "investments"
    __table_args__ = (
        CheckConstraint("status IN ('active', 'frozen', 'closed')", name="ck_investments_status"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    deposit_id = Column(String(36), ForeignKey("deposits.id"), nullable=False, unique=True)
    principal = Column(Money(), nullable=False)
    rate_monthly = Column(Money(), nullable=False)
    accrued_interest = Column(Money(), nullable=False, default=ZERO)
    accrual_remainder = Column(Carry(), nullable=False, default=ZERO)
    locked_amount = Column(Money(), nullable=False, default=ZERO)
    status = Column(String, nullable=False, default=InvestmentStatus.ACTIVE, index=True)  # active, frozen, closed
    opened_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    last_accrued_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    closed_at = Column(UTCDateTime())
    updated_at = Column(UTCDateTime(), default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {
        "version_id_col": version
    }

    user = relationship("Profile")
    deposit = relationship("Deposit", back_populates="investment")
    withdrawals = relationship("Withdrawal", back_populates="investment", order_by="Withdrawal.created_at")

    @property
    def total_value(self) -> Decimal:
        return self.principal + self.accrued_interest

    @property
    def available(self) -> Decimal:
        return self.total_value - self.locked_amount

    @property
    def is_closed(self) -> bool:
        return self.status == InvestmentStatus.CLOSED

    def __repr__(self):
        return (
            f"<Investment id={self.id} principal={self.principal} "
            f"accrued={self.accrued_interest} locked={self.locked_amount} status={self.status}>"
        )
