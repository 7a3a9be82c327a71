from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: str = Field(default="dev")  # dev|prod

    # DB
    DATABASE_URL: str = Field(default="postgresql+psycopg://app:app@db:5432/app")

    # CORS
    CORS_ORIGINS: str = Field(default="http://localhost:3000,http://localhost")

    # Celery / Redis
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # Files
    UPLOAD_DIR: str = Field(default="/app/data/uploads")
    MAX_UPLOAD_MB: int = Field(default=10)

    # Import pipeline
    IMPORT_PROGRESS_BATCH: int = Field(default=50)  # rows between progress writes
    IMPORT_YIELD_EVERY: int = Field(default=200)  # rows between cancel checks
    IMPORT_YIELD_SECONDS: float = Field(default=0.0)
    IMPORT_STUCK_AFTER_MINUTES: int = Field(default=30)
    WATCHDOG_INTERVAL_SECONDS: int = Field(default=300)

    # Business defaults
    DEFAULT_CURRENCY: str = Field(default="PLN")
    ALLOWED_CURRENCIES: str = Field(default="USD,EUR,PLN,GBP,CHF,JPY")

    @property
    def allowed_currencies(self) -> set[str]:
        return {c.strip().upper() for c in self.ALLOWED_CURRENCIES.split(",") if c.strip()}


settings = Settings()
