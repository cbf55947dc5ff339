"""
Pizza day backend configuration, read from the environment (and .env) with pydantic-settings.
"""
from typing import Optional
from urllib.parse import quote_plus
from zoneinfo import ZoneInfo

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
ENVIRONMENTS = ("development", "production")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # PostgreSQL; DATABASE_URL wins over the DB_* parts when set
    DB_USER: str = Field(..., description="PostgreSQL user")
    DB_PASSWORD: str = Field(..., description="PostgreSQL password")
    DB_NAME: str = Field(..., description="PostgreSQL database")
    DB_HOST: str = Field(default="localhost")
    DB_PORT: str = Field(default="5432")
    DATABASE_URL: Optional[str] = Field(default=None, description="Complete SQLAlchemy async URL")
    DB_POOL_SIZE: int = Field(default=20, gt=0)
    DB_MAX_OVERFLOW: int = Field(default=40, ge=0)
    DB_POOL_RECYCLE: int = Field(default=3600, gt=0, description="Seconds before a pooled connection is recycled")

    # Redis carries slot/order change events to websocket listeners
    REDIS_HOST: str = Field(default="localhost")
    REDIS_PORT: int = Field(default=6379)
    REDIS_DB: int = Field(default=0)

    # Admin panel credentials and API token
    ADMIN_LOGIN: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None
    ADMIN_SECRET: Optional[str] = Field(default=None, description="Value expected in the X-Admin-Token header")

    ALLOWED_ORIGINS: str = Field(default="", description="Comma-separated CORS origins")
    ENVIRONMENT: str = Field(default="production")
    LOG_LEVEL: str = Field(default="INFO")
    TIMEZONE: str = Field(default="Europe/Bratislava", description="Local zone deciding which pizza days are upcoming")

    RESERVATION_HOLD_TTL_SECONDS: int = Field(
        default=900, gt=0, description="Held reservations with no order are swept after this age"
    )
    SWEEP_INTERVAL_SECONDS: int = Field(default=300, gt=0)
    CHECKOUT_RATE_LIMIT: str = Field(default="20/minute", description="slowapi limit string for POST /public/orders")

    @field_validator("ENVIRONMENT")
    @classmethod
    def check_environment(cls, v: str) -> str:
        if v not in ENVIRONMENTS:
            raise ValueError(f"ENVIRONMENT must be one of {ENVIRONMENTS}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {LOG_LEVELS}")
        return level

    @field_validator("TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        ZoneInfo(v)  # raises for unknown zone names
        return v

    def validate_production_settings(self) -> list[str]:
        """Names of settings that must be set in production but are empty."""
        if not self.is_production:
            return []
        required = {
            "ADMIN_LOGIN": self.ADMIN_LOGIN,
            "ADMIN_PASSWORD": self.ADMIN_PASSWORD,
            "ADMIN_SECRET": self.ADMIN_SECRET,
            "ALLOWED_ORIGINS": self.ALLOWED_ORIGINS,
        }
        return [f"{name} is required in production" for name, value in required.items() if not value]

    @property
    def db_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{quote_plus(self.DB_PASSWORD)}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)

    @property
    def allowed_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Load settings once; refuse to start with an incomplete production config."""
    global _settings
    if _settings is None:
        settings = Settings()
        errors = settings.validate_production_settings()
        if errors:
            raise ValueError("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))
        _settings = settings
    return _settings
