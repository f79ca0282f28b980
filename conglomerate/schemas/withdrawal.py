# conglomerate/schemas/withdrawal.py
from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime
from conglomerate.schemas.common import Amount


class WithdrawalCreate(BaseModel):
    investment_id: Optional[str] = None
    selected_deposit_id: Optional[str] = None
    amount: Optional[Amount] = None
    close: bool = False
    destination: dict

    @field_validator("destination")
    @classmethod
    def destination_required(cls, v):
        if not v:
            raise ValueError("Destination is required")
        return v


class WithdrawalApprove(BaseModel):
    admin_note: Optional[str] = None
    network_fee: Optional[Amount] = None


class WithdrawalReject(BaseModel):
    admin_note: Optional[str] = None


class WithdrawalMarkSent(BaseModel):
    tx_hash: Optional[str] = None
    admin_note: Optional[str] = None


class WithdrawalResponse(BaseModel):
    id: str
    investment_id: str
    user_id: str
    amount: Amount
    kind: str
    destination: Optional[dict] = None
    status: str
    admin_note: Optional[str] = None
    network_fee: Amount
    tx_hash: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
