from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from conglomerate.core.database import get_db
from conglomerate.core.security import Identity, get_current_identity
from conglomerate.schemas.common import ApiResponse, ok
from conglomerate.schemas.wallet import WalletResponse
from conglomerate.services import users as user_service

router = APIRouter()


@router.get("", response_model=ApiResponse[WalletResponse])
def get_wallet(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
):
    """Balance totals across the caller's investments."""
    return ok(WalletResponse(**user_service.wallet_summary(db, identity.user_id)))
