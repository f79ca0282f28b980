# conglomerate/schemas/common.py
from decimal import Decimal
from pydantic import BaseModel, PlainSerializer
from typing import Annotated, Generic, Optional, TypeVar

T = TypeVar("T")

# plain notation in JSON ("0.00000000", never "0E-8")
Amount = Annotated[Decimal, PlainSerializer(lambda v: format(v, "f"), return_type=str, when_used="json")]


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail


class MessageData(BaseModel):
    message: str
    id: Optional[str] = None


def ok(data) -> dict:
    return {"success": True, "data": data}
