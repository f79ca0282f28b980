"""
Tests for the withdrawal lifecycle.

Covers:
- Request validation and reservation of the locked amount
- Double-spend protection (sequential and stale concurrent writer)
- Interest-first approval, full withdrawal closing the investment
- Rejection releasing the reservation
- State machine (already processed, mark sent)
- Conflicts with concurrently closed or frozen investments
"""

import logging
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from conftest import NOW, reload
from conglomerate.core.errors import ErrorCode, ServiceError
from conglomerate.models.audit import AuditLog
from conglomerate.models.deposit import Deposit, DepositStatus
from conglomerate.models.investment import Investment, InvestmentStatus
from conglomerate.models.ledger import EntryType, LedgerEntry
from conglomerate.models.withdrawal import Withdrawal, WithdrawalKind, WithdrawalStatus
from conglomerate.services import audit as audit_service
from conglomerate.services import ledger
from conglomerate.services.accrual import AccrualEngine
from conglomerate.services import withdrawals as service

DESTINATION = {"network": "TRC20", "address": "TXYZ"}


def request(db, investment, amount, now=NOW, user_id=None):
    return service.request_withdrawal(
        db, investment.id, user_id or investment.user_id, amount=amount, destination=DESTINATION, now=now,
    )


def assert_lock_invariant(investment):
    assert Decimal("0") <= investment.locked_amount <= investment.principal + investment.accrued_interest


# ============================================================
# REQUEST
# ============================================================

class TestRequestWithdrawal:
    def test_reserves_amount(self, db, make_investment):
        investment = make_investment(principal="500")
        withdrawal = request(db, investment, "100")

        assert withdrawal.status == WithdrawalStatus.REQUESTED
        assert withdrawal.kind == WithdrawalKind.PARTIAL
        assert withdrawal.amount == Decimal("100")
        fresh = reload(db, Investment, investment.id)
        assert fresh.locked_amount == Decimal("100")
        assert fresh.available == Decimal("400")
        assert fresh.principal == Decimal("500")
        assert_lock_invariant(fresh)

    @pytest.mark.parametrize("amount", ["0", "-5", "abc"])
    def test_invalid_amount(self, db, make_investment, amount):
        investment = make_investment()
        with pytest.raises(ServiceError) as exc:
            request(db, investment, amount)
        assert exc.value.code == ErrorCode.VALIDATION_ERROR

    def test_more_than_available(self, db, make_investment):
        investment = make_investment(principal="500")
        with pytest.raises(ServiceError) as exc:
            request(db, investment, "500.00000001")
        assert exc.value.code == ErrorCode.INSUFFICIENT_AVAILABLE
        assert reload(db, Investment, investment.id).locked_amount == Decimal("0")

    def test_second_request_cannot_double_spend(self, db, make_investment):
        investment = make_investment(principal="500")
        request(db, investment, "300")
        with pytest.raises(ServiceError) as exc:
            request(db, investment, "300")
        assert exc.value.code == ErrorCode.INSUFFICIENT_AVAILABLE

        fresh = reload(db, Investment, investment.id)
        assert fresh.locked_amount == Decimal("300")
        assert_lock_invariant(fresh)
        assert len(db.execute(select(Withdrawal)).scalars().all()) == 1

    def test_stale_reservation_is_rejected_by_version_check(self, db, session_factory, make_investment):
        investment = make_investment(principal="500")
        racer = session_factory()
        racer_copy = racer.get(Investment, investment.id)
        # racer saw 500 available and wants 300 of it
        assert racer_copy.available == Decimal("500")

        request(db, investment, "300")

        racer_copy.locked_amount = racer_copy.locked_amount + Decimal("300")
        with pytest.raises(StaleDataError):
            racer.commit()
        racer.rollback()
        racer.close()

        fresh = reload(db, Investment, investment.id)
        assert fresh.locked_amount == Decimal("300")

    def test_other_users_investment_is_not_found(self, db, make_investment, other_user):
        investment = make_investment()
        with pytest.raises(ServiceError) as exc:
            request(db, investment, "10", user_id=other_user.id)
        assert exc.value.code == ErrorCode.NOT_FOUND

    @pytest.mark.parametrize("status", ["frozen", "closed"])
    def test_investment_must_be_active(self, db, make_investment, status):
        investment = make_investment()
        ledger.adjust_investment(db, investment.id, status=status)
        with pytest.raises(ServiceError) as exc:
            request(db, investment, "10")
        assert exc.value.code == ErrorCode.INVESTMENT_NOT_ACTIVE

    def test_brings_accrual_current_first(self, db, make_investment):
        investment = make_investment(principal="1000")
        # a full 30-day month at 5% is 50
        withdrawal = request(db, investment, None, now=NOW + timedelta(days=30))
        assert withdrawal.kind == WithdrawalKind.CLOSE
        assert withdrawal.amount == Decimal("1050")
        fresh = reload(db, Investment, investment.id)
        assert fresh.accrued_interest == Decimal("50")
        assert fresh.locked_amount == Decimal("1050")

    def test_audited(self, db, make_investment):
        investment = make_investment()
        withdrawal = request(db, investment, "10")
        entry = db.execute(select(AuditLog).where(AuditLog.action == "withdrawal.create")).scalar_one()
        assert entry.entity_id == withdrawal.id
        assert entry.meta["amount"] == "10.00000000"


# ============================================================
# APPROVE
# ============================================================

class TestApproveWithdrawal:
    def test_full_withdrawal_closes_investment(self, db, make_investment, admin):
        investment = make_investment(principal="500", accrued_interest="20")
        withdrawal = request(db, investment, "520")
        service.approve_withdrawal(db, withdrawal.id, admin.id, now=NOW)

        fresh = reload(db, Investment, investment.id)
        assert fresh.status == InvestmentStatus.CLOSED
        assert fresh.principal == Decimal("0")
        assert fresh.accrued_interest == Decimal("0")
        assert fresh.locked_amount == Decimal("0")
        assert fresh.closed_at == NOW
        assert reload(db, Deposit, investment.deposit_id).status == DepositStatus.WITHDRAWN

    def test_partial_withdrawal_takes_interest_first(self, db, make_investment, admin):
        investment = make_investment(principal="500", accrued_interest="20")
        withdrawal = request(db, investment, "10")
        service.approve_withdrawal(db, withdrawal.id, admin.id)

        fresh = reload(db, Investment, investment.id)
        assert fresh.accrued_interest == Decimal("10")
        assert fresh.principal == Decimal("500")
        assert fresh.locked_amount == Decimal("0")
        assert fresh.status == InvestmentStatus.ACTIVE
        assert reload(db, Withdrawal, withdrawal.id).status == WithdrawalStatus.APPROVED

    def test_spills_into_principal(self, db, make_investment, admin):
        investment = make_investment(principal="500", accrued_interest="20")
        withdrawal = request(db, investment, "100")
        service.approve_withdrawal(db, withdrawal.id, admin.id)

        fresh = reload(db, Investment, investment.id)
        assert fresh.accrued_interest == Decimal("0")
        assert fresh.principal == Decimal("420")
        assert fresh.status == InvestmentStatus.ACTIVE

    def test_close_kind_closes_investment(self, db, make_investment, admin):
        investment = make_investment(principal="500")
        withdrawal = request(db, investment, None)
        service.approve_withdrawal(db, withdrawal.id, admin.id)
        assert reload(db, Investment, investment.id).status == InvestmentStatus.CLOSED

    def test_network_fee_recorded_separately(self, db, make_investment, admin):
        investment = make_investment(principal="500")
        withdrawal = request(db, investment, "100")
        service.approve_withdrawal(db, withdrawal.id, admin.id, network_fee="1.5", note="paid")

        approved = reload(db, Withdrawal, withdrawal.id)
        assert approved.network_fee == Decimal("1.5")
        assert approved.admin_note == "paid"
        assert approved.admin_id == admin.id
        assert reload(db, Investment, investment.id).principal == Decimal("400")

        entries = db.execute(
            select(LedgerEntry).where(LedgerEntry.ref_id == withdrawal.id)
        ).scalars().all()
        assert sorted(e.type for e in entries) == [EntryType.FEE, EntryType.WITHDRAWAL]

    def test_negative_fee(self, db, make_investment, admin):
        investment = make_investment()
        withdrawal = request(db, investment, "10")
        with pytest.raises(ServiceError) as exc:
            service.approve_withdrawal(db, withdrawal.id, admin.id, network_fee="-1")
        assert exc.value.code == ErrorCode.VALIDATION_ERROR

    def test_approving_twice(self, db, make_investment, admin):
        investment = make_investment()
        withdrawal = request(db, investment, "10")
        service.approve_withdrawal(db, withdrawal.id, admin.id)
        with pytest.raises(ServiceError) as exc:
            service.approve_withdrawal(db, withdrawal.id, admin.id)
        assert exc.value.code == ErrorCode.ALREADY_PROCESSED
        assert reload(db, Investment, investment.id).principal == Decimal("990")

    def test_unknown_withdrawal(self, db, admin):
        with pytest.raises(ServiceError) as exc:
            service.approve_withdrawal(db, "missing", admin.id)
        assert exc.value.code == ErrorCode.NOT_FOUND

    def test_investment_closed_meanwhile(self, db, make_investment, admin):
        investment = make_investment()
        withdrawal = request(db, investment, "10")
        ledger.close_investment(db, investment.id)
        with pytest.raises(ServiceError) as exc:
            service.approve_withdrawal(db, withdrawal.id, admin.id)
        assert exc.value.code == ErrorCode.CONFLICT
        assert reload(db, Withdrawal, withdrawal.id).status == WithdrawalStatus.REQUESTED

    def test_investment_frozen_meanwhile(self, db, make_investment, admin):
        investment = make_investment()
        withdrawal = request(db, investment, "10")
        ledger.adjust_investment(db, investment.id, status="frozen")
        with pytest.raises(ServiceError) as exc:
            service.approve_withdrawal(db, withdrawal.id, admin.id)
        assert exc.value.code == ErrorCode.CONFLICT

    def test_lock_lowered_by_admin(self, db, make_investment, admin):
        investment = make_investment()
        withdrawal = request(db, investment, "100")
        ledger.set_locked_amount(db, investment.id, "50")
        with pytest.raises(ServiceError) as exc:
            service.approve_withdrawal(db, withdrawal.id, admin.id)
        assert exc.value.code == ErrorCode.CONFLICT
        fresh = reload(db, Investment, investment.id)
        assert fresh.principal == Decimal("1000")
        assert fresh.locked_amount == Decimal("50")

    def test_audit_records_split(self, db, make_investment, admin):
        investment = make_investment(principal="500", accrued_interest="20")
        withdrawal = request(db, investment, "30")
        service.approve_withdrawal(db, withdrawal.id, admin.id)
        entry = db.execute(
            select(AuditLog).where(AuditLog.action == "admin.withdrawal.approve")
        ).scalar_one()
        assert Decimal(entry.meta["withdrawn_profit"]) == Decimal("20")
        assert Decimal(entry.meta["withdrawn_principal"]) == Decimal("10")
        assert entry.meta["investment_closed"] is False


# ============================================================
# REJECT / SENT
# ============================================================

class TestRejectWithdrawal:
    def test_releases_lock_without_debit(self, db, make_investment, admin):
        investment = make_investment(principal="500")
        withdrawal = request(db, investment, "100")
        assert reload(db, Investment, investment.id).available == Decimal("400")

        service.reject_withdrawal(db, withdrawal.id, admin.id, "wrong address")

        fresh = reload(db, Investment, investment.id)
        assert fresh.available == Decimal("500")
        assert fresh.principal == Decimal("500")
        assert fresh.accrued_interest == Decimal("0")
        rejected = reload(db, Withdrawal, withdrawal.id)
        assert rejected.status == WithdrawalStatus.REJECTED
        assert rejected.admin_note == "wrong address"

    @pytest.mark.parametrize("note", [None, "", "   "])
    def test_note_required(self, db, make_investment, admin, note):
        investment = make_investment()
        withdrawal = request(db, investment, "10")
        with pytest.raises(ServiceError) as exc:
            service.reject_withdrawal(db, withdrawal.id, admin.id, note)
        assert exc.value.code == ErrorCode.VALIDATION_ERROR
        assert reload(db, Investment, investment.id).locked_amount == Decimal("10")

    def test_cannot_reject_approved(self, db, make_investment, admin):
        investment = make_investment()
        withdrawal = request(db, investment, "10")
        service.approve_withdrawal(db, withdrawal.id, admin.id)
        with pytest.raises(ServiceError) as exc:
            service.reject_withdrawal(db, withdrawal.id, admin.id, "too late")
        assert exc.value.code == ErrorCode.ALREADY_PROCESSED


class TestMarkSent:
    def test_only_after_approval(self, db, make_investment, admin):
        investment = make_investment()
        withdrawal = request(db, investment, "10")
        with pytest.raises(ServiceError) as exc:
            service.mark_withdrawal_sent(db, withdrawal.id, admin.id)
        assert exc.value.code == ErrorCode.ALREADY_PROCESSED

        service.approve_withdrawal(db, withdrawal.id, admin.id)
        before = reload(db, Investment, investment.id)
        service.mark_withdrawal_sent(db, withdrawal.id, admin.id, tx_hash="0xabc")

        sent = reload(db, Withdrawal, withdrawal.id)
        assert sent.status == WithdrawalStatus.SENT
        assert sent.tx_hash == "0xabc"
        after = reload(db, Investment, investment.id)
        assert after.principal == before.principal
        assert after.accrued_interest == before.accrued_interest


def test_list_puts_requested_first(db, make_investment, admin):
    investment = make_investment()
    first = request(db, investment, "10", now=NOW)
    second = request(db, investment, "10", now=NOW + timedelta(seconds=1))
    service.approve_withdrawal(db, second.id, admin.id)
    third = request(db, investment, "10", now=NOW + timedelta(seconds=2))

    ordered = [w.id for w in service.list_withdrawals(db, user_id=investment.user_id)]
    assert ordered == [third.id, first.id, second.id]
    assert [w.id for w in service.list_withdrawals(db, status="approved")] == [second.id]


def test_total_withdrawn_in_listing(db, make_investment, admin):
    investment = make_investment(principal="500")
    withdrawal = request(db, investment, "120")
    service.approve_withdrawal(db, withdrawal.id, admin.id)
    request(db, investment, "30")

    [view] = ledger.list_investments(db, user_id=investment.user_id)
    assert view["total_withdrawn"] == Decimal("120")
    assert view["available"] == Decimal("350")


# ============================================================
# CLOSE SETTLEMENT / AUDIT FAILURE
# ============================================================

class TestCloseSettlement:
    def test_interest_earned_after_request_is_paid_out(self, db, session_factory, make_investment, admin):
        investment = make_investment(principal="1000")
        withdrawal = request(db, investment, None, now=NOW)
        assert withdrawal.amount == Decimal("1000")

        AccrualEngine(session_factory, statuses=["active"]).run_tick(NOW + timedelta(minutes=60))
        assert reload(db, Investment, investment.id).accrued_interest == Decimal("0.06944444")

        service.approve_withdrawal(db, withdrawal.id, admin.id, now=NOW + timedelta(minutes=61))

        fresh = reload(db, Investment, investment.id)
        assert fresh.status == InvestmentStatus.CLOSED
        assert fresh.total_value == Decimal("0")
        assert fresh.locked_amount == Decimal("0")
        # 61 minutes at 5% a month on 1000
        assert reload(db, Withdrawal, withdrawal.id).amount == Decimal("1000.07060185")
        entry = db.execute(
            select(LedgerEntry).where(LedgerEntry.idempotency_key == f"withdrawal:{withdrawal.id}")
        ).scalar_one()
        assert entry.amount == Decimal("1000.07060185")

    def test_other_pending_withdrawal_keeps_investment_open(self, db, make_investment, admin):
        investment = make_investment(principal="500")
        partial = request(db, investment, "100")
        close = request(db, investment, None)
        assert close.amount == Decimal("400")

        service.approve_withdrawal(db, close.id, admin.id, now=NOW)

        fresh = reload(db, Investment, investment.id)
        assert fresh.status == InvestmentStatus.ACTIVE
        assert fresh.total_value == Decimal("100")
        assert fresh.locked_amount == Decimal("100")

        service.approve_withdrawal(db, partial.id, admin.id, now=NOW)
        assert reload(db, Investment, investment.id).status == InvestmentStatus.CLOSED


class BrokenAuditSession(Session):
    def commit(self):
        raise OperationalError("INSERT INTO audit_log", {}, Exception("disk I/O error"))


def test_failing_audit_does_not_undo_approval(db, make_investment, admin, monkeypatch, caplog):
    investment = make_investment(principal="500", accrued_interest="20")
    withdrawal = request(db, investment, "100")
    audits_before = len(db.execute(select(AuditLog)).scalars().all())

    monkeypatch.setattr(audit_service, "Session", BrokenAuditSession)
    with caplog.at_level(logging.ERROR, logger="conglomerate.services.audit"):
        approved = service.approve_withdrawal(db, withdrawal.id, admin.id, now=NOW)

    assert approved.status == WithdrawalStatus.APPROVED
    fresh = reload(db, Investment, investment.id)
    assert fresh.accrued_interest == Decimal("0")
    assert fresh.principal == Decimal("420")
    assert fresh.locked_amount == Decimal("0")
    assert reload(db, Withdrawal, withdrawal.id).status == WithdrawalStatus.APPROVED
    assert len(db.execute(select(AuditLog)).scalars().all()) == audits_before
    assert "Failed to record audit admin.withdrawal.approve" in caplog.text
