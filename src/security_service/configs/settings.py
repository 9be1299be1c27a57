from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration.

    - Values loaded from `.env`
    - Application level token TTLs live on the application record; the
      defaults below apply to applications created without explicit values.
    """

    # ----------------------------
    # Service
    # ----------------------------
    SERVICE_NAME: str = "security-service"
    ENVIRONMENT: str = "development"  # emitted as the `env` claim
    LOG_LEVEL: str = "INFO"

    # ----------------------------
    # Mongo
    # ----------------------------
    mongo_uri: str = "mongodb://localhost:27017/?replicaSet=rs0"
    mongo_db: str = "security_service"

    # ----------------------------
    # Redis (token cache)
    # ----------------------------
    redis_url: str = "redis://localhost:6379/0"
    token_cache_prefix: str = "aeg-security:"

    # ----------------------------
    # Tenancy
    # ----------------------------
    # fallback directory searched when a principal is not in the requested one
    primary_directory_id: str | None = None

    # ----------------------------
    # JWT
    # ----------------------------
    jwt_alg: str = "HS256"
    jwt_leeway_seconds: int = 0

    # ----------------------------
    # Credentials
    # ----------------------------
    password_hash_rounds: int = 13
    default_access_token_ttl: int = 3600
    default_refresh_token_ttl: int = 5184000  # 60 days

    # Pydantic settings config (v2 style)
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
