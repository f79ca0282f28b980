# conglomerate/core/config.py
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # API Configuration
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "Conglomerate API"
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Security (tokens are issued by the identity provider, we only verify them)
    SECRET_KEY: str = "your-secret-key-here-change-in-production"
    ALGORITHM: str = "HS256"
    TOKEN_AUDIENCE: Optional[str] = None
    CRON_SECRET: Optional[str] = None

    # Database
    DATABASE_URL: str = "sqlite:///./conglomerate.db"
    DATABASE_ECHO: bool = False

    # CORS
    BACKEND_CORS_ORIGINS: list = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Investment configuration
    DEFAULT_CURRENCY: str = "USD"
    DEFAULT_MONTHLY_PERCENTAGE: float = 5.0
    MAX_CONFLICT_RETRIES: int = 3

    # Accrual
    ACCRUAL_SCHEDULER_ENABLED: bool = False
    ACCRUAL_INTERVAL_SECONDS: int = 60
    ACCRUAL_STATUSES: list = ["active", "frozen"]

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()
