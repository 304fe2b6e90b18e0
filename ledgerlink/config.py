"""Configuration settings for the application."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "LedgerLink Finance API"
    debug: bool = False
    log_level: str = "INFO"

    # Public URL of the web app; callback redirects land on {app_url}/dashboard
    app_url: str = "http://localhost:8000"
    database_path: str = "ledgerlink.db"

    # Bank aggregator ("powens" or "mock")
    aggregator_provider: str = "powens"
    powens_api_url: str = "https://fineltori-sandbox.biapi.pro/2.0"
    powens_webview_url: str = ""
    powens_client_id: str = ""
    powens_client_secret: str = ""
    http_timeout_seconds: float = 30.0

    # Synchronization
    sync_window_days: int = 90
    sync_transaction_limit: int = 500
    sync_workers: int = 4


settings = Settings()
