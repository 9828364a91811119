from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
from typing import Optional

load_dotenv()


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Lead Consent Service"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"
    app_base_url: str = "http://localhost:3000"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Database settings
    database_url: str

    # Security settings
    secret_key: str
    jwt_algorithm: str = "HS256"

    # CORS settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Application form links
    link_ttl_days: int = 7
    client_activity_ttl_minutes: int = 15

    # Consent template catalog
    default_form_type: str = "financing_application"
    template_cache_ttl_seconds: int = 300
    template_cache_stale_warning_seconds: int = 900

    # Downstream CRM webhook (ready-for-review events)
    crm_webhook_url: Optional[str] = None
    crm_webhook_token: Optional[str] = None
    crm_webhook_timeout_seconds: float = 10.0
    crm_webhook_max_attempts: int = 3
    crm_webhook_retry_backoff_seconds: list[float] = [0.5, 2.0]

    # SMTP
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: str = "no-reply@localhost"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()
