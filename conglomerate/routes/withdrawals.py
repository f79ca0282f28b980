# conglomerate/routes/withdrawals.py
from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session
from typing import List
from conglomerate.core.database import get_db
from conglomerate.core.errors import ErrorCode, ServiceError, validation_error
from conglomerate.core.security import Identity, get_current_identity
from conglomerate.models.investment import Investment, InvestmentStatus
from conglomerate.schemas.common import ApiResponse, ok
from conglomerate.schemas.withdrawal import WithdrawalCreate, WithdrawalResponse
from conglomerate.services import withdrawals as withdrawal_service

router = APIRouter()


def _resolve_investment_id(db: Session, user_id: str, withdrawal_data: WithdrawalCreate) -> str:
    if withdrawal_data.investment_id:
        return withdrawal_data.investment_id

    query = select(Investment.id).where(
        Investment.user_id == user_id,
        Investment.status == InvestmentStatus.ACTIVE,
    ).order_by(Investment.opened_at)
    if withdrawal_data.selected_deposit_id:
        query = query.where(Investment.deposit_id == withdrawal_data.selected_deposit_id)
    investment_id = db.execute(query).scalars().first()
    if investment_id is None:
        raise ServiceError(ErrorCode.INVESTMENT_NOT_ACTIVE, "No active investment found")
    return investment_id


@router.post("", response_model=ApiResponse[WithdrawalResponse], status_code=status.HTTP_201_CREATED)
def create_withdrawal(
    withdrawal_data: WithdrawalCreate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    if not withdrawal_data.close and withdrawal_data.amount is None:
        raise validation_error("Amount is required unless closing the investment")

    investment_id = _resolve_investment_id(db, identity.user_id, withdrawal_data)
    withdrawal = withdrawal_service.request_withdrawal(
        db,
        investment_id=investment_id,
        user_id=identity.user_id,
        amount=None if withdrawal_data.close else withdrawal_data.amount,
        destination=withdrawal_data.destination,
    )
    return ok(WithdrawalResponse.model_validate(withdrawal))


@router.get("", response_model=ApiResponse[List[WithdrawalResponse]])
def get_my_withdrawals(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    withdrawals = withdrawal_service.list_withdrawals(db, user_id=identity.user_id)
    return ok([WithdrawalResponse.model_validate(w) for w in withdrawals])
