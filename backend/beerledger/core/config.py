from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    PROJECT_NAME: str = "Beer Ledger"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Invariant checks raise in development and clamp in production
    STRICT_INVARIANTS: Optional[bool] = None

    # Database configuration
    DATABASE_URL: str = "sqlite:///./beerledger.db"

    # Game Settings
    DEFAULT_MAX_WEEKS: int = Field(default=20, ge=1)
    DEFAULT_ORDER_DELAY: int = Field(default=2, ge=0)
    DEFAULT_SHIPPING_DELAY: int = Field(default=2, ge=0)
    INITIAL_INVENTORY: int = Field(default=12, ge=0)
    HOLDING_COST_PER_UNIT: float = 1.0
    BACKORDER_COST_PER_UNIT: float = 2.0
    DEFAULT_DEMAND: int = 4

    # Factory production
    PRODUCTION_LEAD_TIME: int = Field(default=1, ge=1)
    MAX_PRODUCTION_RUN: int = Field(default=40, ge=0)
    PRODUCTION_INVENTORY_CEILING: int = Field(default=100, ge=0)

    # Ledger RPC
    LEDGER_RPC_URL: Optional[str] = None
    LEDGER_TIMEOUT_SECONDS: float = 10.0
    LEDGER_MAX_RETRIES: int = Field(default=3, ge=0)
    LEDGER_BACKOFF_SECONDS: float = 0.5
    LEDGER_BACKOFF_MAX_SECONDS: float = 8.0

    # Background jobs (seconds)
    RECONCILE_INTERVAL_SECONDS: float = 30.0
    RECONCILE_STALE_SECONDS: float = 60.0
    LEDGER_DISPATCH_INTERVAL_SECONDS: float = 2.0
    AUTOPLAY_INTERVAL_SECONDS: float = 5.0
    RETENTION_INTERVAL_SECONDS: float = 24 * 60 * 60

    # Data retention (days)
    RETENTION_COMPLETED_GAMES: int = 30
    RETENTION_INCOMPLETE_GAMES: int = 7

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("LEDGER_RPC_URL", mode="before")
    @classmethod
    def blank_url_is_none(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def is_production(self) -> bool:
        """Check if the application is running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def strict_invariants(self) -> bool:
        if self.STRICT_INVARIANTS is not None:
            return self.STRICT_INVARIANTS
        return not self.is_production


def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return settings


# Global settings instance
settings = Settings()
