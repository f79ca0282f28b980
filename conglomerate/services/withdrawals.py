# conglomerate/services/withdrawals.py
"""
Withdrawal requests and their settlement.

A request reserves its amount in ``Investment.locked_amount`` in the same
version-checked transaction that validates it against the available value,
so two requests can never both spend the same balance. Approval debits
accrued interest first and principal second; rejection only releases the
reservation.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from conglomerate.core.errors import ErrorCode, ServiceError, already_processed, conflict, not_found, validation_error
from conglomerate.core.money import ZERO, Number, utcnow
from conglomerate.models.deposit import Deposit, DepositStatus
from conglomerate.models.investment import Investment, InvestmentStatus
from conglomerate.models.ledger import Direction, EntryType, LedgerEntry
from conglomerate.models.withdrawal import Withdrawal, WithdrawalKind, WithdrawalStatus
from conglomerate.services import ledger
from conglomerate.services.accrual import catch_up
from conglomerate.services.audit import record_audit

logger = logging.getLogger(__name__)


def split_debit(investment: Investment, amount: Decimal) -> Tuple[Decimal, Decimal]:
    """Return ``(from_interest, from_principal)`` for an interest-first drawdown."""
    from_interest = min(amount, investment.accrued_interest)
    from_principal = amount - from_interest
    return from_interest, from_principal


def _load_withdrawal(db: Session, withdrawal_id: str) -> Withdrawal:
    withdrawal = db.execute(
        select(Withdrawal)
        .where(Withdrawal.id == withdrawal_id)
        .execution_options(populate_existing=True)
        .with_for_update()
    ).scalar_one_or_none()
    if withdrawal is None:
        raise not_found("Withdrawal")
    return withdrawal


def _settlement_investment(db: Session, withdrawal: Withdrawal) -> Investment:
    investment = ledger.load_investment(db, withdrawal.investment_id, lock=True)
    if investment is None:
        raise not_found("Investment")
    if investment.is_closed:
        raise conflict("Investment was closed, refresh and retry")
    return investment


def request_withdrawal(
    db: Session,
    investment_id: str,
    user_id: str,
    amount: Optional[Number] = None,
    destination: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Withdrawal:
    """Reserve ``amount`` (or everything available when None) for payout."""
    now = now or utcnow()
    requested = None
    if amount is not None:
        requested = ledger.parse_amount(amount)
        if requested <= ZERO:
            raise validation_error("Amount must be greater than 0")

    def operation(session: Session) -> Withdrawal:
        investment = ledger.load_investment(session, investment_id, lock=True)
        if investment is None or investment.user_id != user_id:
            raise not_found("Investment")
        if investment.status != InvestmentStatus.ACTIVE:
            raise ServiceError(ErrorCode.INVESTMENT_NOT_ACTIVE, "Investment is not active")

        catch_up(investment, now)
        available = investment.available
        withdraw_amount = available if requested is None else requested
        if withdraw_amount <= ZERO or withdraw_amount > available:
            raise ServiceError(
                ErrorCode.INSUFFICIENT_AVAILABLE,
                f"Insufficient available balance. Available: {available}, requested: {withdraw_amount}",
            )

        investment.locked_amount = investment.locked_amount + withdraw_amount
        withdrawal = Withdrawal(
            investment_id=investment.id,
            user_id=user_id,
            amount=withdraw_amount,
            kind=WithdrawalKind.CLOSE if requested is None else WithdrawalKind.PARTIAL,
            destination=destination or {},
            status=WithdrawalStatus.REQUESTED,
            created_at=now,
        )
        session.add(withdrawal)
        session.flush()
        return withdrawal

    withdrawal = ledger.run_with_retry(db, operation)
    logger.info(
        "Withdrawal %s requested on investment %s: amount=%s kind=%s",
        withdrawal.id, investment_id, withdrawal.amount, withdrawal.kind,
    )
    record_audit(db.get_bind(), user_id, "withdrawal.create", "withdrawals", withdrawal.id, {
        "amount": withdrawal.amount,
        "kind": withdrawal.kind,
        "investment_id": investment_id,
    })
    return withdrawal


def approve_withdrawal(
    db: Session,
    withdrawal_id: str,
    admin_id: str,
    network_fee: Optional[Number] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Withdrawal:
    now = now or utcnow()
    fee = ZERO
    if network_fee is not None:
        fee = ledger.parse_amount(network_fee, "network fee")
        if fee < ZERO:
            raise validation_error("Network fee cannot be negative")
    summary = {}

    def operation(session: Session) -> Withdrawal:
        withdrawal = _load_withdrawal(session, withdrawal_id)
        if withdrawal.status != WithdrawalStatus.REQUESTED:
            raise already_processed("Withdrawal")
        investment = _settlement_investment(session, withdrawal)
        if investment.status == InvestmentStatus.FROZEN:
            raise conflict("Investment is frozen")

        amount = withdrawal.amount
        if investment.locked_amount < amount:
            raise conflict(f"Locked amount ({investment.locked_amount}) is less than withdrawal amount ({amount})")

        if withdrawal.kind == WithdrawalKind.CLOSE:
            # pays out everything not reserved by other withdrawals, including
            # interest earned since the request
            catch_up(investment, now)
            reserved_elsewhere = investment.locked_amount - amount
            payout = investment.total_value - reserved_elsewhere
            if payout > amount:
                investment.locked_amount = investment.locked_amount + (payout - amount)
                withdrawal.amount = payout
                amount = payout

        if amount > investment.total_value:
            raise conflict(f"Insufficient funds in investment. Total: {investment.total_value}, requested: {amount}")

        from_interest, from_principal = split_debit(investment, amount)
        investment.accrued_interest = investment.accrued_interest - from_interest
        investment.principal = investment.principal - from_principal
        investment.locked_amount = investment.locked_amount - amount

        closing = investment.total_value <= ZERO
        if closing:
            ledger.close(investment, now)
            deposit = session.get(Deposit, investment.deposit_id)
            if deposit is not None and deposit.status == DepositStatus.CONFIRMED:
                deposit.status = DepositStatus.WITHDRAWN

        withdrawal.status = WithdrawalStatus.APPROVED
        withdrawal.admin_id = admin_id
        withdrawal.admin_note = note
        withdrawal.network_fee = fee
        withdrawal.processed_at = now

        session.add(LedgerEntry(
            user_id=withdrawal.user_id,
            investment_id=investment.id,
            type=EntryType.WITHDRAWAL,
            direction=Direction.DEBIT,
            amount=amount,
            ref_table="withdrawals",
            ref_id=withdrawal.id,
            idempotency_key=f"withdrawal:{withdrawal.id}",
            description=f"Withdrawal {withdrawal.id}",
        ))
        if fee > ZERO:
            session.add(LedgerEntry(
                user_id=withdrawal.user_id,
                investment_id=investment.id,
                type=EntryType.FEE,
                direction=Direction.DEBIT,
                amount=fee,
                ref_table="withdrawals",
                ref_id=withdrawal.id,
                idempotency_key=f"withdrawal-fee:{withdrawal.id}",
                description="Network fee",
            ))

        summary.update(
            amount=amount,
            withdrawn_profit=from_interest,
            withdrawn_principal=from_principal,
            investment_closed=closing,
        )
        return withdrawal

    withdrawal = ledger.run_with_retry(db, operation)
    logger.info(
        "Withdrawal %s approved by %s: profit=%s principal=%s closed=%s",
        withdrawal_id, admin_id, summary["withdrawn_profit"],
        summary["withdrawn_principal"], summary["investment_closed"],
    )
    record_audit(db.get_bind(), admin_id, "admin.withdrawal.approve", "withdrawals", withdrawal_id, {
        "network_fee": fee,
        "admin_note": note,
        **summary,
    })
    return withdrawal


def reject_withdrawal(
    db: Session,
    withdrawal_id: str,
    admin_id: str,
    note: Optional[str],
    now: Optional[datetime] = None,
) -> Withdrawal:
    if not note or not note.strip():
        raise validation_error("Admin note is required for rejection")
    now = now or utcnow()

    def operation(session: Session) -> Withdrawal:
        withdrawal = _load_withdrawal(session, withdrawal_id)
        if withdrawal.status != WithdrawalStatus.REQUESTED:
            raise already_processed("Withdrawal")
        investment = _settlement_investment(session, withdrawal)
        if investment.locked_amount < withdrawal.amount:
            raise conflict(f"Locked amount ({investment.locked_amount}) is less than withdrawal amount ({withdrawal.amount})")

        investment.locked_amount = investment.locked_amount - withdrawal.amount
        withdrawal.status = WithdrawalStatus.REJECTED
        withdrawal.admin_id = admin_id
        withdrawal.admin_note = note
        withdrawal.processed_at = now
        return withdrawal

    withdrawal = ledger.run_with_retry(db, operation)
    logger.info("Withdrawal %s rejected by %s", withdrawal_id, admin_id)
    record_audit(db.get_bind(), admin_id, "admin.withdrawal.reject", "withdrawals", withdrawal_id, {
        "admin_note": note,
    })
    return withdrawal


def mark_withdrawal_sent(
    db: Session,
    withdrawal_id: str,
    admin_id: str,
    tx_hash: Optional[str] = None,
    note: Optional[str] = None,
) -> Withdrawal:
    def operation(session: Session) -> Withdrawal:
        withdrawal = _load_withdrawal(session, withdrawal_id)
        if withdrawal.status != WithdrawalStatus.APPROVED:
            raise already_processed("Withdrawal")
        withdrawal.status = WithdrawalStatus.SENT
        withdrawal.tx_hash = tx_hash
        if note:
            withdrawal.admin_note = note
        return withdrawal

    withdrawal = ledger.run_with_retry(db, operation)
    record_audit(db.get_bind(), admin_id, "admin.withdrawal.mark_sent", "withdrawals", withdrawal_id, {
        "tx_hash": tx_hash,
        "admin_note": note,
    })
    return withdrawal


def list_withdrawals(db: Session, user_id: Optional[str] = None, status: Optional[str] = None) -> List[Withdrawal]:
    query = select(Withdrawal)
    if user_id is not None:
        query = query.where(Withdrawal.user_id == user_id)
    if status and status != "all":
        query = query.where(Withdrawal.status == status)
    withdrawals = db.execute(query).scalars().all()
    # requested first, then newest
    return sorted(
        withdrawals,
        key=lambda w: (w.status != WithdrawalStatus.REQUESTED, -w.created_at.timestamp()),
    )
