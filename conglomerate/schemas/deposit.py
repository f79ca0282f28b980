# conglomerate/schemas/deposit.py
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from conglomerate.schemas.common import Amount


class DepositCreate(BaseModel):
    amount: Amount
    currency: Optional[str] = None
    payment_details: Optional[dict] = None


class DepositApprove(BaseModel):
    admin_note: Optional[str] = None


class DepositReject(BaseModel):
    admin_note: Optional[str] = None


class DepositResponse(BaseModel):
    id: str
    user_id: str
    amount: Amount
    currency: str
    payment_details: Optional[dict] = None
    status: str
    admin_note: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class DepositApproved(BaseModel):
    deposit_id: str
    investment_id: str
    message: str = "Deposit approved and investment opened"
