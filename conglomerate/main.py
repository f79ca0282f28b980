import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from conglomerate.core.config import settings
from conglomerate.core.database import Base, engine
from conglomerate.core.errors import ErrorCode, HTTP_STATUS, ServiceError
from conglomerate.routes import admin, cron, deposits, investments, wallet, withdrawals
from conglomerate.schemas.common import ErrorDetail, ErrorResponse
from conglomerate.services.accrual import default_engine
from conglomerate.services.scheduler import AccrualScheduler
import conglomerate.models  # noqa: F401  registers tables on Base

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Investment platform backend: deposits, interest accrual and withdrawals",
    version=settings.VERSION
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

scheduler = AccrualScheduler(default_engine, interval=settings.ACCRUAL_INTERVAL_SECONDS)


def error_response(code: ErrorCode, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=HTTP_STATUS[code],
        content=ErrorResponse(error=ErrorDetail(code=code.value, message=message)).model_dump(),
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return error_response(exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return error_response(ErrorCode.VALIDATION_ERROR, message)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return error_response(ErrorCode.DATABASE_ERROR, "Database error")


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(ErrorCode.SERVER_ERROR, "Internal server error")


app.include_router(deposits.router, prefix=f"{settings.API_PREFIX}/deposits", tags=["deposits"])
app.include_router(investments.router, prefix=f"{settings.API_PREFIX}/investments", tags=["investments"])
app.include_router(withdrawals.router, prefix=f"{settings.API_PREFIX}/withdrawals", tags=["withdrawals"])
app.include_router(wallet.router, prefix=f"{settings.API_PREFIX}/wallet", tags=["wallet"])
app.include_router(admin.router, prefix=f"{settings.API_PREFIX}/admin", tags=["admin"])
app.include_router(cron.router, prefix=f"{settings.API_PREFIX}/cron", tags=["cron"])


# Create database tables on startup
@app.on_event("startup")
async def startup_event():
    Base.metadata.create_all(bind=engine)
    if settings.ACCRUAL_SCHEDULER_ENABLED:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    await scheduler.stop()


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": settings.PROJECT_NAME, "timestamp": datetime.now(timezone.utc).isoformat()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("conglomerate.main:app", host="0.0.0.0", port=8000, reload=True)
