"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (and .env file).

Each concern gets its own sub-config so services receive only the slice they
need (OAuthSettings for the authority, WebhookSettings for the dispatcher…).
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_uri: str
    db_name: str = "integrations"


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Optional; without Redis, API key rate limits are not enforced
    redis_uri: Optional[str] = None


class JWTSettings(BaseSettings):
    """Verification settings for host-issued caller tokens."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    jwt_issuer: str = "integrations"
    jwt_audience: str = "integrations.api"

    # RS256 public key (preferred)
    jwt_public_key: str = ""

    # HS256 fallback (used when the RS256 key is absent)
    jwt_secret: str = ""

    @property
    def use_rs256(self) -> bool:
        return bool(self.jwt_public_key)


class ApiKeySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    api_key_max_active_per_user: int = 20
    api_key_default_per_minute: int = 60
    api_key_default_per_hour: int = 1000
    api_key_default_per_day: int = 10000


class OAuthSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    oauth_access_token_ttl_seconds: int = 3600
    oauth_refresh_token_ttl_seconds: int = 2592000
    oauth_authorization_code_ttl_seconds: int = 600
    # Off by default: a refresh keeps the previous pair valid until it expires
    oauth_rotate_refresh_tokens: bool = False


class WebhookSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    webhook_default_timeout_ms: int = 10000
    webhook_default_max_attempts: int = 3
    webhook_default_backoff_multiplier: float = 2.0
    webhook_default_initial_delay_ms: int = 1000
    # "fixed" gives new webhooks five attempts on the 1s, 5s, 30s, 5m, 1h schedule
    webhook_default_retry_schedule: Literal["exponential", "fixed"] = "exponential"
    webhook_response_body_max_chars: int = 1024

    # Retry sweep
    webhook_sweeper_enabled: bool = True
    webhook_sweep_interval_seconds: float = 5.0
    webhook_sweep_batch_size: int = 100
    webhook_sweep_max_concurrency: int = 10
    # How long a claimed delivery stays invisible to other sweep workers
    webhook_claim_lease_seconds: int = 60


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production

    # Sampling rates (0.0–1.0)
    sample_rate_api_key_validation: float = 0.05
    sample_rate_token_validation: float = 0.05
    sample_rate_sweep: float = 0.10


class SentrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    sentry_dsn: str = ""
    sentry_send_pii: bool = False
    sentry_traces_sample_rate: float = 0.1
    sentry_profile_sample_rate: float = 0.05


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    env: str = "development"
    app_name: str = "integrations"

    # CORS: all origins, credentials allowed
    cors_origins: list[str] = ["*"]

    # OpenAPI docs URL (None disables the docs UI in production)
    docs_url: Optional[str] = "/docs"

    # Sub-configs (composed via model_validator below)
    db: Optional[DatabaseSettings] = None
    redis: Optional[RedisSettings] = None
    jwt: Optional[JWTSettings] = None
    api_keys: Optional[ApiKeySettings] = None
    oauth: Optional[OAuthSettings] = None
    webhooks: Optional[WebhookSettings] = None
    logging: Optional[LoggingSettings] = None
    sentry: Optional[SentrySettings] = None

    @model_validator(mode="after")
    def _populate_sub_configs(self) -> "AppSettings":
        # Populate sub-configs from the same env/dotenv source
        if self.db is None:
            self.db = DatabaseSettings()
        if self.redis is None:
            self.redis = RedisSettings()
        if self.jwt is None:
            self.jwt = JWTSettings()
        if self.api_keys is None:
            self.api_keys = ApiKeySettings()
        if self.oauth is None:
            self.oauth = OAuthSettings()
        if self.webhooks is None:
            self.webhooks = WebhookSettings()
        if self.logging is None:
            self.logging = LoggingSettings()
        if self.sentry is None:
            self.sentry = SentrySettings()

        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"
