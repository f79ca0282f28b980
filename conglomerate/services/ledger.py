# conglomerate/services/ledger.py
"""
Investment ledger.

Owns every state transition of an ``Investment`` row. Mutations are
version-checked UPDATEs (``version_id_col`` on the model), so a writer that
read an older row gets ``StaleDataError`` and is retried by
``run_with_retry`` against fresh state.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from conglomerate.core.config import settings
from conglomerate.core.errors import ErrorCode, ServiceError, conflict, not_found, validation_error
from conglomerate.core.money import ZERO, Number, to_money, utcnow
from conglomerate.models.investment import Investment, InvestmentStatus
from conglomerate.models.withdrawal import Withdrawal, WithdrawalStatus
from conglomerate.services.audit import record_audit

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RATE = Decimal(100)


def run_with_retry(db: Session, operation: Callable[[Session], T], retries: Optional[int] = None) -> T:
    """Run ``operation(db)`` and commit, retrying when a row version moved underneath it."""
    attempts = retries or settings.MAX_CONFLICT_RETRIES
    for attempt in range(1, attempts + 1):
        try:
            result = operation(db)
            db.commit()
            return result
        except StaleDataError:
            db.rollback()
            logger.warning("Stale row version, retrying (attempt %d/%d)", attempt, attempts)
        except Exception:
            db.rollback()
            raise
    raise conflict("Concurrent update detected, refresh and retry")


def load_investment(db: Session, investment_id: str, lock: bool = True) -> Optional[Investment]:
    stmt = (
        select(Investment)
        .where(Investment.id == investment_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def get_investment(db: Session, investment_id: str, lock: bool = False) -> Investment:
    investment = load_investment(db, investment_id, lock=lock)
    if investment is None:
        raise not_found("Investment")
    return investment


def parse_amount(value: Number, field: str = "amount") -> Decimal:
    try:
        return to_money(value)
    except ValueError:
        raise validation_error(f"Invalid {field}")


def parse_rate(value: Number) -> Decimal:
    rate = parse_amount(value, "rate")
    if rate < ZERO or rate > MAX_RATE:
        raise validation_error("Rate must be between 0 and 100")
    return rate


def check_locked_amount(investment: Investment, amount: Decimal) -> None:
    if amount < ZERO or amount > investment.total_value:
        raise validation_error(f"Locked amount must be between 0 and {investment.total_value}")


def open_investment(
    db: Session,
    deposit_id: str,
    user_id: str,
    principal: Number,
    rate_monthly: Number,
    now: Optional[datetime] = None,
) -> Investment:
    """Create the investment for ``deposit_id``; a deposit opens at most one."""
    now = now or utcnow()
    principal = parse_amount(principal, "principal")
    if principal <= ZERO:
        raise validation_error("Principal must be greater than 0")
    rate = parse_rate(rate_monthly)

    existing = db.execute(
        select(Investment.id).where(Investment.deposit_id == deposit_id)
    ).first()
    if existing is not None:
        raise ServiceError(ErrorCode.ALREADY_EXISTS, "Investment already exists for this deposit")

    investment = Investment(
        user_id=user_id,
        deposit_id=deposit_id,
        principal=principal,
        rate_monthly=rate,
        accrued_interest=ZERO,
        accrual_remainder=ZERO,
        locked_amount=ZERO,
        status=InvestmentStatus.ACTIVE,
        opened_at=now,
        last_accrued_at=now,
    )
    db.add(investment)
    try:
        db.flush()
    except IntegrityError:
        raise ServiceError(ErrorCode.ALREADY_EXISTS, "Investment already exists for this deposit")
    logger.info("Opened investment %s for deposit %s: principal=%s rate=%s", investment.id, deposit_id, principal, rate)
    return investment


def close(investment: Investment, now: Optional[datetime] = None) -> bool:
    """Mark closed; returns False when it already was."""
    if investment.is_closed:
        return False
    investment.status = InvestmentStatus.CLOSED
    investment.closed_at = now or utcnow()
    return True


def set_status(investment: Investment, status: str, now: Optional[datetime] = None) -> None:
    if status not in InvestmentStatus.ALL:
        raise validation_error(f"Unknown investment status: {status}")
    if status == InvestmentStatus.CLOSED:
        close(investment, now)
        return
    if investment.is_closed:
        raise validation_error("Closed investments cannot be reopened")
    investment.status = status


def adjust_rate(db: Session, investment_id: str, new_rate: Number, actor_id: Optional[str] = None) -> Investment:
    return adjust_investment(db, investment_id, rate=new_rate, actor_id=actor_id)


def set_locked_amount(db: Session, investment_id: str, amount: Number, actor_id: Optional[str] = None) -> Investment:
    return adjust_investment(db, investment_id, locked_amount=amount, actor_id=actor_id)


def close_investment(db: Session, investment_id: str, actor_id: Optional[str] = None,
                     now: Optional[datetime] = None) -> Investment:
    """Close an investment; closing a closed investment is a no-op."""
    def operation(session: Session) -> Investment:
        investment = get_investment(session, investment_id, lock=True)
        close(investment, now)
        return investment

    investment = run_with_retry(db, operation)
    record_audit(db.get_bind(), actor_id, "admin.investment.close", "investments", investment_id, {})
    return investment


def adjust_investment(
    db: Session,
    investment_id: str,
    rate: Optional[Number] = None,
    status: Optional[str] = None,
    locked_amount: Optional[Number] = None,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Investment:
    """Admin edit of rate, status and locked amount, validated before any change."""
    if rate is None and status is None and locked_amount is None:
        raise validation_error("At least one field must be provided")
    new_rate = parse_rate(rate) if rate is not None else None
    new_locked = parse_amount(locked_amount, "locked amount") if locked_amount is not None else None
    if status is not None and status not in InvestmentStatus.ALL:
        raise validation_error(f"Unknown investment status: {status}")

    def operation(session: Session) -> Investment:
        investment = get_investment(session, investment_id, lock=True)
        if new_locked is not None:
            check_locked_amount(investment, new_locked)
        if status is not None and status != InvestmentStatus.CLOSED and investment.is_closed:
            raise validation_error("Closed investments cannot be reopened")
        if status == InvestmentStatus.CLOSED and not investment.is_closed:
            pending_lock = investment.locked_amount if new_locked is None else new_locked
            if pending_lock > ZERO:
                raise validation_error("Investment has pending withdrawals")

        if new_rate is not None:
            investment.rate_monthly = new_rate
        if new_locked is not None:
            investment.locked_amount = new_locked
        if status is not None:
            set_status(investment, status, now)
        return investment

    investment = run_with_retry(db, operation)
    logger.info("Investment %s adjusted by %s", investment_id, actor_id)
    record_audit(db.get_bind(), actor_id, "admin.investment.update", "investments", investment_id, {
        "rate_monthly": new_rate,
        "status": status,
        "locked_amount": new_locked,
    })
    return investment


def investment_view(investment: Investment, total_withdrawn: Decimal = ZERO) -> dict:
    available = investment.available
    return {
        "investment": investment,
        "total_value": investment.total_value,
        "available": available,
        "is_frozen": investment.status == InvestmentStatus.FROZEN or available <= ZERO,
        "total_withdrawn": total_withdrawn,
    }


def list_investments(db: Session, user_id: Optional[str] = None) -> List[dict]:
    query = select(Investment).order_by(Investment.opened_at.desc())
    if user_id is not None:
        query = query.where(Investment.user_id == user_id)
    investments = db.execute(query).scalars().all()

    withdrawn = {}
    if investments:
        rows = db.execute(
            select(Withdrawal.investment_id, Withdrawal.amount).where(
                Withdrawal.investment_id.in_([inv.id for inv in investments]),
                Withdrawal.status.in_([WithdrawalStatus.APPROVED, WithdrawalStatus.SENT]),
            )
        ).all()
        for investment_id, amount in rows:
            withdrawn[investment_id] = withdrawn.get(investment_id, ZERO) + amount

    return [investment_view(inv, withdrawn.get(inv.id, ZERO)) for inv in investments]
