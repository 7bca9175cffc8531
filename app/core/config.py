# app/core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict
import urllib.parse

class Settings(BaseSettings):
    # Read env from .env; ignore unknown keys so extra lines don't crash startup
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Database ---
    # DATABASE_URL wins when set (e.g. sqlite+aiosqlite:///./scheduling.db for local runs)
    DATABASE_URL: str | None = None
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "scheduling"
    POSTGRES_USER: str = "scheduling"
    POSTGRES_PASSWORD: str = ""

    # --- Security ---
    API_KEY: str | None = None

    # --- Monitoring & Logging ---
    APP_ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    LOG_REQUESTS: bool = False
    LOG_RESPONSES: bool = False
    MAX_LOG_LENGTH: int = 200

    # --- Performance ---
    SLOW_REQUEST_THRESHOLD: float = 2.0
    METRICS_RETENTION_SAMPLES: int = 1000

    # --- Scheduling ---
    DEFAULT_SLOT_DURATION: int = 30
    SLOT_WRITE_MAX_RETRIES: int = 5
    RESERVATION_TTL_SECONDS: int = 900

    # Sync URI (Alembic)
    @property
    def sync_db_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL.replace("+asyncpg", "").replace("+aiosqlite", "")
        pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Async URI (SQLAlchemy engine)
    @property
    def async_db_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Monitoring helpers
    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() in ("development", "dev", "local")

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() in ("production", "prod")

# Singleton
settings = Settings()
