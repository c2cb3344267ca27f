from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import Field, AnyUrl

class Settings(BaseSettings):
    app_name: str = "Ledgerbook API"
    app_env: str = Field("development", alias="APP_ENV")
    app_url: AnyUrl | str = Field("http://localhost:3000", alias="APP_URL")
    api_url: AnyUrl | str = Field("http://localhost:8000", alias="API_URL")

    postgres_url: str = Field(..., alias="POSTGRES_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    sentry_dsn: str | None = Field(None, alias="SENTRY_DSN")

    # Reconciliation engine
    reconciliation_threshold_cents: int = Field(1, alias="RECONCILIATION_THRESHOLD_CENTS")
    import_chunk_size: int = Field(500, alias="IMPORT_CHUNK_SIZE")
    max_checkpoints_per_account: int = Field(100, alias="MAX_CHECKPOINTS_PER_ACCOUNT")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
