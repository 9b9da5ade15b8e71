from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    rule_catalog_file: str = "data/cards/sample_catalog.json"

    ledger_database_url: str = "sqlite+aiosqlite:///data/usage.db"
    ledger_echo: bool = False

    default_points_currency: str = "points"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
