# conglomerate/routes/cron.py
from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session, sessionmaker
from typing import Optional
from conglomerate.core.config import settings
from conglomerate.core.database import get_db
from conglomerate.core.errors import ErrorCode, ServiceError
from conglomerate.schemas.common import ApiResponse, ok
from conglomerate.schemas.investment import AccrualResponse
from conglomerate.services.accrual import run_accrual_tick

router = APIRouter()


@router.post("/accrue", response_model=ApiResponse[AccrualResponse])
def accrue_interest(
    x_cron_secret: Optional[str] = Header(default=None),
    db: Session = Depends(get_db)
):
    """Trigger for an external scheduler."""
    if not settings.CRON_SECRET or x_cron_secret != settings.CRON_SECRET:
        raise ServiceError(ErrorCode.FORBIDDEN, "Invalid cron secret")
    session_factory = sessionmaker(bind=db.get_bind(), autoflush=False, expire_on_commit=False)
    result = run_accrual_tick(session_factory=session_factory)
    return ok(AccrualResponse.model_validate(result))
