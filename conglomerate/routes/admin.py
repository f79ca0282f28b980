# conglomerate/routes/admin.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from conglomerate.core.database import get_db
from conglomerate.core.security import Identity, require_admin
from conglomerate.schemas.audit import AuditLogResponse
from conglomerate.schemas.common import ApiResponse, MessageData, ok
from conglomerate.schemas.deposit import DepositApprove, DepositApproved, DepositReject, DepositResponse
from conglomerate.schemas.investment import InvestmentResponse, InvestmentSummary, InvestmentUpdate
from conglomerate.schemas.user import ProfileResponse, UserSummary, UserUpdate
from conglomerate.schemas.withdrawal import (
    WithdrawalApprove,
    WithdrawalMarkSent,
    WithdrawalReject,
    WithdrawalResponse,
)
from conglomerate.services import deposits as deposit_service
from conglomerate.services import ledger
from conglomerate.services import users as user_service
from conglomerate.services import withdrawals as withdrawal_service

router = APIRouter()


# Deposits

@router.get("/deposits", response_model=ApiResponse[List[DepositResponse]])
def get_deposits(
    status: Optional[str] = None,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    deposits = deposit_service.list_deposits(db, status=status)
    return ok([DepositResponse.model_validate(d) for d in deposits])


@router.post("/deposits/{deposit_id}/approve", response_model=ApiResponse[DepositApproved])
def approve_deposit(
    deposit_id: str,
    body: Optional[DepositApprove] = None,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    note = body.admin_note if body else None
    investment_id = deposit_service.approve_deposit(db, deposit_id, admin.user_id, note=note)
    return ok(DepositApproved(deposit_id=deposit_id, investment_id=investment_id))


@router.post("/deposits/{deposit_id}/reject", response_model=ApiResponse[MessageData])
def reject_deposit(
    deposit_id: str,
    body: DepositReject,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    deposit_service.reject_deposit(db, deposit_id, admin.user_id, body.admin_note)
    return ok(MessageData(message="Deposit rejected", id=deposit_id))


# Withdrawals

@router.get("/withdrawals", response_model=ApiResponse[List[WithdrawalResponse]])
def get_withdrawals(
    status: Optional[str] = None,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    withdrawals = withdrawal_service.list_withdrawals(db, status=status)
    return ok([WithdrawalResponse.model_validate(w) for w in withdrawals])


@router.post("/withdrawals/{withdrawal_id}/approve", response_model=ApiResponse[WithdrawalResponse])
def approve_withdrawal(
    withdrawal_id: str,
    body: Optional[WithdrawalApprove] = None,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    body = body or WithdrawalApprove()
    withdrawal = withdrawal_service.approve_withdrawal(
        db, withdrawal_id, admin.user_id, network_fee=body.network_fee, note=body.admin_note,
    )
    return ok(WithdrawalResponse.model_validate(withdrawal))


@router.post("/withdrawals/{withdrawal_id}/reject", response_model=ApiResponse[WithdrawalResponse])
def reject_withdrawal(
    withdrawal_id: str,
    body: WithdrawalReject,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    withdrawal = withdrawal_service.reject_withdrawal(db, withdrawal_id, admin.user_id, body.admin_note)
    return ok(WithdrawalResponse.model_validate(withdrawal))


@router.post("/withdrawals/{withdrawal_id}/mark-sent", response_model=ApiResponse[WithdrawalResponse])
def mark_withdrawal_sent(
    withdrawal_id: str,
    body: Optional[WithdrawalMarkSent] = None,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    body = body or WithdrawalMarkSent()
    withdrawal = withdrawal_service.mark_withdrawal_sent(
        db, withdrawal_id, admin.user_id, tx_hash=body.tx_hash, note=body.admin_note,
    )
    return ok(WithdrawalResponse.model_validate(withdrawal))


# Investments

@router.get("/investments", response_model=ApiResponse[List[InvestmentSummary]])
def get_investments(
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return ok([InvestmentSummary.from_view(view) for view in ledger.list_investments(db)])


@router.put("/investments/{investment_id}", response_model=ApiResponse[InvestmentResponse])
def update_investment(
    investment_id: str,
    body: InvestmentUpdate,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    investment = ledger.adjust_investment(
        db,
        investment_id,
        rate=body.rate_monthly,
        status=body.status,
        locked_amount=body.locked_amount,
        actor_id=admin.user_id,
    )
    return ok(InvestmentResponse.model_validate(investment))


# Users

@router.get("/users", response_model=ApiResponse[List[UserSummary]])
def get_users(
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return ok([UserSummary.from_view(view) for view in user_service.list_users(db)])


@router.put("/users/{user_id}", response_model=ApiResponse[ProfileResponse])
def update_user(
    user_id: str,
    body: UserUpdate,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    profile = user_service.update_user(
        db,
        user_id,
        status=body.status,
        monthly_percentage=body.monthly_percentage,
        actor_id=admin.user_id,
    )
    return ok(ProfileResponse.model_validate(profile))


# Audit log

@router.get("/audit-logs", response_model=ApiResponse[List[AuditLogResponse]])
def get_audit_logs(
    limit: int = 100,
    action: Optional[str] = None,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db)
):
    logs = user_service.list_audit_logs(db, limit=limit, action=action)
    return ok([AuditLogResponse.model_validate(log) for log in logs])
