from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "ShopBooks Backend"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Document numbering
    SEQUENCE_WIDTH: int = 4  # Digits in the daily sequence (0001)
    SEQUENCE_OVERFLOW_POLICY: str = "FAIL"  # FAIL or WIDEN once 10**width - 1 is used up

    # Tax defaults
    DEFAULT_TAX_RATE: float = 18.0  # Applied when a line omits its tax rate

    # Automatic retries for ConflictError (numbering collision, stale payment write)
    CONFLICT_RETRIES: int = 1
    # Payments re-read the pending amount on every attempt, so a lost race is retried until the
    # amount no longer fits
    PAYMENT_CONFLICT_RETRIES: int = 5

    # Inventory service. Unset means stock is adjusted directly in the items table.
    INVENTORY_SERVICE_URL: Optional[str] = None
    INVENTORY_SERVICE_TIMEOUT: float = 5.0  # Seconds

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('SEQUENCE_OVERFLOW_POLICY', mode='before')
    @classmethod
    def normalize_overflow_policy(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            if v not in ("FAIL", "WIDEN"):
                raise ValueError("SEQUENCE_OVERFLOW_POLICY must be FAIL or WIDEN")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return list(self.CORS_ORIGINS)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
