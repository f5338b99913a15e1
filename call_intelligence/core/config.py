"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str

    # Server
    environment: str = "development"
    log_level: str = "INFO"
    app_url: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8000

    # Webhooks
    disable_webhook_auth: bool = False
    cron_secret: Optional[str] = None

    # Job queue
    job_backoff_base_seconds: int = 60
    max_jobs_per_run: int = 10
    scheduler_poll_interval_seconds: int = 0  # 0 disables the in-process poll loop

    # Telavox
    telavox_api_base: str = "https://api.telavox.se"

    # ElevenLabs
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_api_base: str = "https://api.eu.residency.elevenlabs.io"
    transcription_webhook_secret: Optional[str] = None

    # HubSpot
    hubspot_access_token: Optional[str] = None
    hubspot_api_base: str = "https://api.hubapi.com"
    hubspot_webhook_secret: Optional[str] = None
    hubspot_create_call_objects: bool = False

    # Slack
    slack_bot_token: Optional[str] = None
    slack_signing_secret: Optional[str] = None
    slack_api_base: str = "https://slack.com/api"

    # Recording storage
    storage_url: Optional[str] = None
    storage_service_key: Optional[str] = None
    storage_bucket: str = "call_intelligence_call_recordings"

    # OpenAI
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


settings = Settings()
