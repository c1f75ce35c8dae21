from decimal import Decimal
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API Settings
    PROJECT_NAME: str = "Poultry POS Ledger"
    API_V1_STR: str = "/api/v1"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Invoice, payment and customer debt ledger for a poultry point of sale"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "poultry_pos"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Ledger
    CURRENCY: str = "USD"
    DEFAULT_PAYMENT_METHOD: str = "CASH"
    QUICK_PAYMENT_MAX_DEBT_MULTIPLE: Decimal = Decimal("2")
    BULK_PARTIAL_FRACTION: Decimal = Decimal("0.25")

    # Unit of work; retries only apply to non-transactional saves
    BULK_RETRY_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: float = 0.2

    # Customer validation
    VALIDATION_DEBOUNCE_MS: int = 750
    SUBMIT_VALIDATION_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
