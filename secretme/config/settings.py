"""
Application settings and configuration.
All secrets are loaded from environment variables.
"""

from typing import Optional

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database - Use DATA_DIR for persistent volumes
    data_dir: str = "."
    database_url_override: Optional[str] = None

    @property
    def database_url(self) -> str:
        """Database URL, SQLite in DATA_DIR unless overridden."""
        if self.database_url_override:
            return self.database_url_override
        return f"sqlite+aiosqlite:///{self.data_dir}/secretme.db"

    # Application Settings
    debug: bool = False
    app_url: str = "http://localhost:3000"

    # Shared secrets for the cron trigger and the admin surface
    cron_secret: Optional[str] = None
    admin_api_token: Optional[str] = None

    # Telegram Configuration
    telegram_bot_token: str = ""
    telegram_api_base: str = "https://api.telegram.org"

    # Twilio Configuration (WhatsApp channel)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_whatsapp_number: str = ""  # Format: whatsapp:+14155238886

    # SMTP Configuration (email channel)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "no-reply@secretme.local"
    smtp_start_tls: bool = True

    # Queue processing
    channel_timeout_seconds: float = 15.0
    queue_concurrency: int = 5
    queue_batch_size: int = 10
    queue_days_to_keep: int = 7

    # In-process trigger for single-node deployments without an external cron
    enable_internal_scheduler: bool = False
    queue_process_interval_seconds: int = 60

    # Rate limiting
    rate_limit_cache_ttl_seconds: int = 300

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
