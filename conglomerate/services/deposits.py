# conglomerate/services/deposits.py
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from conglomerate.core.config import settings
from conglomerate.core.errors import already_processed, not_found, validation_error
from conglomerate.core.money import ZERO, Number, to_money, utcnow
from conglomerate.models.deposit import Deposit, DepositStatus
from conglomerate.models.ledger import Direction, EntryType, LedgerEntry
from conglomerate.models.profile import Profile
from conglomerate.services import ledger
from conglomerate.services.audit import record_audit

logger = logging.getLogger(__name__)


def _load_deposit(db: Session, deposit_id: str) -> Deposit:
    deposit = db.execute(
        select(Deposit)
        .where(Deposit.id == deposit_id)
        .execution_options(populate_existing=True)
        .with_for_update()
    ).scalar_one_or_none()
    if deposit is None:
        raise not_found("Deposit")
    return deposit


def monthly_rate_for(db: Session, user_id: str):
    profile = db.get(Profile, user_id)
    if profile is None or profile.monthly_percentage is None:
        return to_money(settings.DEFAULT_MONTHLY_PERCENTAGE)
    return profile.monthly_percentage


def create_deposit(
    db: Session,
    user_id: str,
    amount: Number,
    payment_details: Optional[dict] = None,
    currency: Optional[str] = None,
) -> Deposit:
    value = ledger.parse_amount(amount)
    if value <= ZERO:
        raise validation_error("Invalid amount")

    deposit = Deposit(
        user_id=user_id,
        amount=value,
        currency=currency or settings.DEFAULT_CURRENCY,
        payment_details=payment_details or {},
        status=DepositStatus.PENDING,
    )
    db.add(deposit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Deposit %s created for user %s: amount=%s", deposit.id, user_id, value)
    record_audit(db.get_bind(), user_id, "deposit.create", "deposits", deposit.id, {"amount": value})
    return deposit


def approve_deposit(
    db: Session,
    deposit_id: str,
    admin_id: str,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Confirm a pending deposit and open its investment; returns the investment id."""
    now = now or utcnow()

    def operation(session: Session) -> str:
        deposit = _load_deposit(session, deposit_id)
        if deposit.status != DepositStatus.PENDING:
            raise already_processed("Deposit")

        rate = monthly_rate_for(session, deposit.user_id)
        investment = ledger.open_investment(
            session,
            deposit_id=deposit.id,
            user_id=deposit.user_id,
            principal=deposit.amount,
            rate_monthly=rate,
            now=now,
        )

        deposit.status = DepositStatus.CONFIRMED
        deposit.confirmed_at = now
        deposit.admin_id = admin_id
        deposit.admin_note = note

        session.add(LedgerEntry(
            user_id=deposit.user_id,
            investment_id=investment.id,
            type=EntryType.DEPOSIT,
            direction=Direction.CREDIT,
            amount=deposit.amount,
            ref_table="deposits",
            ref_id=deposit.id,
            idempotency_key=f"deposit:{deposit.id}",
            description=f"Deposit {deposit.id} confirmed",
        ))
        return investment.id

    investment_id = ledger.run_with_retry(db, operation)
    logger.info("Deposit %s approved by %s, investment %s opened", deposit_id, admin_id, investment_id)
    record_audit(db.get_bind(), admin_id, "admin.deposit.approve", "deposits", deposit_id, {
        "admin_note": note,
        "investment_id": investment_id,
    })
    return investment_id


def reject_deposit(db: Session, deposit_id: str, admin_id: str, note: Optional[str]) -> Deposit:
    if not note or not note.strip():
        raise validation_error("Admin note is required for rejection")

    def operation(session: Session) -> Deposit:
        deposit = _load_deposit(session, deposit_id)
        if deposit.status != DepositStatus.PENDING:
            raise already_processed("Deposit")
        deposit.status = DepositStatus.REJECTED
        deposit.admin_id = admin_id
        deposit.admin_note = note
        return deposit

    deposit = ledger.run_with_retry(db, operation)
    logger.info("Deposit %s rejected by %s", deposit_id, admin_id)
    record_audit(db.get_bind(), admin_id, "admin.deposit.reject", "deposits", deposit_id, {"admin_note": note})
    return deposit


def list_deposits(db: Session, user_id: Optional[str] = None, status: Optional[str] = None) -> List[Deposit]:
    query = select(Deposit)
    if user_id is not None:
        query = query.where(Deposit.user_id == user_id)
    if status and status != "all":
        query = query.where(Deposit.status == status)
    deposits = db.execute(query).scalars().all()
    # pending first, then newest
    return sorted(
        deposits,
        key=lambda d: (d.status != DepositStatus.PENDING, -d.created_at.timestamp()),
    )
