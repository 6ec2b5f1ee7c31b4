from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "Household Ledger"
    ENV: str = "dev"

    # Default SQLite file DB, resolved next to apps/backend regardless of CWD
    _default_db_path = Path(__file__).resolve().parents[2] / "ledger.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]
    # "today" and the current period boundaries are computed in this zone
    TIMEZONE: str = "UTC"
    LOG_LEVEL: str = "INFO"

    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="LEDGER_", case_sensitive=False)


settings = Settings()
