# conglomerate/routes/investments.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from conglomerate.core.database import get_db
from conglomerate.core.security import Identity, get_current_identity
from conglomerate.schemas.common import ApiResponse, ok
from conglomerate.schemas.investment import InvestmentSummary
from conglomerate.services import ledger

router = APIRouter()


@router.get("", response_model=ApiResponse[List[InvestmentSummary]])
def get_my_investments(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    # admins see every investment
    user_id = None if identity.is_admin else identity.user_id
    views = ledger.list_investments(db, user_id=user_id)
    return ok([InvestmentSummary.from_view(view) for view in views])
