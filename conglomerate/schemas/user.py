from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from conglomerate.schemas.common import Amount


class ProfileResponse(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str
    status: str
    monthly_percentage: Optional[Amount] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BalanceSummary(BaseModel):
    current_investments: Amount
    unrealized_profit: Amount
    frozen_funds: Amount
    available: Amount
    total_withdrawals: Amount
    active_count: int
    closed_count: int


class UserSummary(ProfileResponse, BalanceSummary):
    total_deposits: Amount

    @classmethod
    def from_view(cls, view: dict) -> "UserSummary":
        data = ProfileResponse.model_validate(view["profile"]).model_dump()
        data.update({key: value for key, value in view.items() if key != "profile"})
        return cls(**data)


class UserUpdate(BaseModel):
    status: Optional[str] = None
    monthly_percentage: Optional[Amount] = None
