# conglomerate/schemas/investment.py
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from conglomerate.schemas.common import Amount


class InvestmentBase(BaseModel):
    principal: Amount
    rate_monthly: Amount
    accrued_interest: Amount
    locked_amount: Amount
    status: str


class InvestmentResponse(InvestmentBase):
    id: str
    user_id: str
    deposit_id: str
    opened_at: datetime
    last_accrued_at: datetime
    closed_at: Optional[datetime] = None
    total_value: Amount
    available: Amount

    class Config:
        from_attributes = True


class InvestmentSummary(InvestmentResponse):
    is_frozen: bool
    total_withdrawn: Amount

    @classmethod
    def from_view(cls, view: dict) -> "InvestmentSummary":
        investment = view["investment"]
        data = InvestmentResponse.model_validate(investment).model_dump()
        data.update(is_frozen=view["is_frozen"], total_withdrawn=view["total_withdrawn"])
        return cls(**data)


class InvestmentUpdate(BaseModel):
    rate_monthly: Optional[Amount] = None
    status: Optional[str] = None
    locked_amount: Optional[Amount] = None


class AccrualResponse(BaseModel):
    processed_count: int
    total_accrued: Amount
    skipped_count: int
    failed_count: int

    class Config:
        from_attributes = True
