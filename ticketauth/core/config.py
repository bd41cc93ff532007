"""Configuration settings using Pydantic Settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str

    environment: Literal["development", "production"] = "development"
    log_level: str = "INFO"
    slow_query_ms: float = 0.0
    metrics_token: str | None = None
    api_docs_enabled: bool | None = None

    # Access token verification (tokens are issued by the identity provider)
    token_algorithms: Annotated[list[str], NoDecode] = ["RS256"]
    token_secret: str | None = None
    token_jwks_url: str | None = None
    token_audience: str | None = None
    token_issuer: str | None = None
    token_client_id: str = "event-ticket-platform-app"

    # Identity directory (Keycloak admin REST API)
    directory_base_url: str = "http://localhost:9090"
    directory_realm: str = "event-ticket-platform"
    directory_client_id: str = "ticketauth-admin"
    directory_client_secret: str | None = None
    directory_timeout_seconds: float = 10.0

    # Invite codes
    invite_default_ttl_hours: int = 72
    invite_max_ttl_hours: int = 720
    invite_expiry_sweep_minutes: int = 60

    # Celery (periodic invite expiry)
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str | None = None

    # CORS
    cors_allow_origins: Annotated[list[str], NoDecode] = ["http://localhost:5173"]
    cors_allow_methods: Annotated[list[str], NoDecode] = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    cors_allow_headers: Annotated[list[str], NoDecode] = [
        "Accept",
        "Authorization",
        "Content-Type",
        "X-Request-ID",
    ]
    cors_allow_credentials: bool = True

    @field_validator(
        "token_algorithms",
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        mode="before",
    )
    @classmethod
    def _parse_csv_lists(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @model_validator(mode="after")
    def _validate_production_settings(self) -> Settings:
        if self.environment != "production":
            return self

        if not self.token_jwks_url:
            if not self.token_secret or len(self.token_secret) < 32:
                raise ValueError(
                    "TOKEN_JWKS_URL or a strong TOKEN_SECRET must be set in production"
                )

        if not self.directory_client_secret:
            raise ValueError("DIRECTORY_CLIENT_SECRET must be set in production")

        if any(x == "*" for x in self.cors_allow_origins):
            raise ValueError("CORS_ALLOW_ORIGINS cannot contain '*' in production")
        if any(x == "*" for x in self.cors_allow_methods):
            raise ValueError("CORS_ALLOW_METHODS cannot contain '*' in production")
        if any(x == "*" for x in self.cors_allow_headers):
            raise ValueError("CORS_ALLOW_HEADERS cannot contain '*' in production")

        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
