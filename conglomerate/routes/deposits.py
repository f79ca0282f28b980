# conglomerate/routes/deposits.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
from conglomerate.core.database import get_db
from conglomerate.core.security import Identity, get_current_identity
from conglomerate.schemas.common import ApiResponse, ok
from conglomerate.schemas.deposit import DepositCreate, DepositResponse
from conglomerate.services import deposits as deposit_service

router = APIRouter()


@router.post("", response_model=ApiResponse[DepositResponse], status_code=status.HTTP_201_CREATED)
def create_deposit(
    deposit_data: DepositCreate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    deposit = deposit_service.create_deposit(
        db,
        user_id=identity.user_id,
        amount=deposit_data.amount,
        payment_details=deposit_data.payment_details,
        currency=deposit_data.currency,
    )
    return ok(DepositResponse.model_validate(deposit))


@router.get("", response_model=ApiResponse[List[DepositResponse]])
def get_my_deposits(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    deposits = deposit_service.list_deposits(db, user_id=identity.user_id)
    return ok([DepositResponse.model_validate(d) for d in deposits])
