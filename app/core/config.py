from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # API Settings
    PROJECT_NAME: str = "Split Bill API"
    API_V1_STR: str = "/api"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Bill splitting with TON/USDT settlement for Telegram Mini Apps"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "split_bill"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Mini App
    FRONTEND_URL: str = "http://localhost:3000"

    # JWT
    SECRET_KEY: str = "change-this-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # TON indexer
    TON_API_URL: str = "https://tonapi.io/v2"
    TON_API_KEY: str = ""
    TON_API_TIMEOUT_SECONDS: float = 10.0
    USDT_JETTON_MASTER: str = "EQCxE6mUtQJKFnGfaROTKOt1lZbDiiX1kCixRv7Nw2Id_sDs"

    # Reconciliation
    RECONCILE_ENABLED: bool = True
    RECONCILE_INTERVAL_SECONDS: float = 30.0
    RECONCILE_DELAY_SECONDS: float = 1.0
    RECONCILE_TRANSFER_LIMIT: int = 10

    # Payment intents
    PAYMENT_INTENT_TTL_MINUTES: int = 15
    STALE_INTENT_HOURS: int = 24
    WEBHOOK_SECRET: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

    @property
    def is_prod(self) -> bool:
        return self.ENVIRONMENT == "production"

settings = Settings()
