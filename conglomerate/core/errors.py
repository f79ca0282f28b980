# conglomerate/core/errors.py
import enum
from fastapi import status


class ErrorCode(str, enum.Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_AVAILABLE = "INSUFFICIENT_AVAILABLE"
    INVESTMENT_NOT_ACTIVE = "INVESTMENT_NOT_ACTIVE"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    DATABASE_ERROR = "DATABASE_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


HTTP_STATUS = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorCode.ALREADY_PROCESSED: status.HTTP_409_CONFLICT,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.INSUFFICIENT_AVAILABLE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVESTMENT_NOT_ACTIVE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.DATABASE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.SERVER_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ServiceError(Exception):
    """Domain failure carrying an explicit error kind."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.code]

    def __repr__(self):
        return f"ServiceError({self.code.value}, {self.message!r})"


def validation_error(message: str) -> ServiceError:
    return ServiceError(ErrorCode.VALIDATION_ERROR, message)


def not_found(entity: str) -> ServiceError:
    return ServiceError(ErrorCode.NOT_FOUND, f"{entity} not found")


def already_processed(entity: str) -> ServiceError:
    return ServiceError(ErrorCode.ALREADY_PROCESSED, f"{entity} already processed")


def conflict(message: str) -> ServiceError:
    return ServiceError(ErrorCode.CONFLICT, message)
