# conglomerate/models/ledger.py
import uuid
from sqlalchemy import Column, String, ForeignKey, Text
from conglomerate.core.database import Base
from conglomerate.core.money import Money, UTCDateTime, utcnow


class EntryType:
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    FEE = "fee"
    ADJUSTMENT = "adjustment"


class Direction:
    CREDIT = "credit"
    DEBIT = "debit"


class LedgerEntry(Base):
    """Append-only journal of money movements into and out of investments."""

    __tablename__ = "ledger_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    investment_id = Column(String(36), ForeignKey("investments.id"), index=True)
    type = Column(String, nullable=False)  # deposit, withdrawal, fee, adjustment
    direction = Column(String, nullable=False)  # credit, debit
    amount = Column(Money(), nullable=False)
    ref_table = Column(String)
    ref_id = Column(String)
    idempotency_key = Column(String, unique=True)
    description = Column(Text)
    created_at = Column(UTCDateTime(), default=utcnow)
