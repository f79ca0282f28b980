# conglomerate/services/users.py
"""
Admin user management and per-user balance summaries.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from conglomerate.core.errors import not_found, validation_error
from conglomerate.core.money import ZERO, Number
from conglomerate.models.audit import AuditLog
from conglomerate.models.deposit import Deposit, DepositStatus
from conglomerate.models.investment import Investment, InvestmentStatus
from conglomerate.models.profile import Profile, ProfileStatus
from conglomerate.models.withdrawal import Withdrawal, WithdrawalStatus
from conglomerate.services import ledger
from conglomerate.services.audit import record_audit

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (ProfileStatus.ACTIVE, ProfileStatus.BLOCKED)


def _sum_by_user(rows) -> Dict[str, Decimal]:
    totals = {}
    for user_id, amount in rows:
        totals[user_id] = totals.get(user_id, ZERO) + amount
    return totals


def balance_summary(investments: List[Investment], withdrawn: Decimal = ZERO) -> dict:
    """Totals over a user's investments; closed ones only count towards ``closed_count``."""
    open_investments = [inv for inv in investments if not inv.is_closed]
    return {
        "current_investments": sum((inv.principal for inv in open_investments), ZERO),
        "unrealized_profit": sum((inv.accrued_interest for inv in open_investments), ZERO),
        "frozen_funds": sum((inv.locked_amount for inv in open_investments), ZERO),
        "available": sum((inv.available for inv in open_investments if inv.status == InvestmentStatus.ACTIVE), ZERO),
        "total_withdrawals": withdrawn,
        "active_count": sum(1 for inv in open_investments if inv.status == InvestmentStatus.ACTIVE),
        "closed_count": len(investments) - len(open_investments),
    }


def list_users(db: Session) -> List[dict]:
    profiles = db.execute(select(Profile).order_by(Profile.created_at.desc())).scalars().all()

    deposited = _sum_by_user(db.execute(
        select(Deposit.user_id, Deposit.amount).where(Deposit.status.in_([DepositStatus.CONFIRMED, DepositStatus.WITHDRAWN]))
    ).all())
    withdrawn = _sum_by_user(db.execute(
        select(Withdrawal.user_id, Withdrawal.amount).where(
            Withdrawal.status.in_([WithdrawalStatus.APPROVED, WithdrawalStatus.SENT])
        )
    ).all())
    investments = {}
    for investment in db.execute(select(Investment)).scalars():
        investments.setdefault(investment.user_id, []).append(investment)

    users = []
    for profile in profiles:
        summary = balance_summary(investments.get(profile.id, []), withdrawn.get(profile.id, ZERO))
        summary.update(profile=profile, total_deposits=deposited.get(profile.id, ZERO))
        users.append(summary)
    return users


def wallet_summary(db: Session, user_id: str) -> dict:
    investments = db.execute(
        select(Investment).where(Investment.user_id == user_id)
    ).scalars().all()
    withdrawn = sum(db.execute(
        select(Withdrawal.amount).where(
            Withdrawal.user_id == user_id,
            Withdrawal.status.in_([WithdrawalStatus.APPROVED, WithdrawalStatus.SENT]),
        )
    ).scalars(), ZERO)
    return balance_summary(investments, withdrawn)


def update_user(
    db: Session,
    user_id: str,
    status: Optional[str] = None,
    monthly_percentage: Optional[Number] = None,
    actor_id: Optional[str] = None,
) -> Profile:
    """Block/unblock a user or change the rate their next investments open with."""
    if status is None and monthly_percentage is None:
        raise validation_error("At least one field must be provided")
    if status is not None and status not in EDITABLE_STATUSES:
        raise validation_error("Status must be active or blocked")
    rate = ledger.parse_rate(monthly_percentage) if monthly_percentage is not None else None

    def operation(session: Session) -> Profile:
        profile = session.get(Profile, user_id, populate_existing=True)
        if profile is None:
            raise not_found("User")
        if status is not None:
            profile.status = status
        if rate is not None:
            profile.monthly_percentage = rate
        return profile

    profile = ledger.run_with_retry(db, operation)
    logger.info("User %s updated by %s: status=%s monthly_percentage=%s", user_id, actor_id, status, rate)
    record_audit(db.get_bind(), actor_id, "admin.user.update", "profiles", user_id, {
        "status": status,
        "monthly_percentage": rate,
    })
    return profile


def list_audit_logs(db: Session, limit: int = 100, action: Optional[str] = None) -> List[AuditLog]:
    if limit < 1 or limit > 1000:
        raise validation_error("Limit must be between 1 and 1000")
    query = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    if action:
        query = query.where(AuditLog.action == action)
    return db.execute(query).scalars().all()
