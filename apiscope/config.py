# ABOUTME: Application configuration and settings
# ABOUTME: Loads settings from environment variables using pydantic-settings

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(env_file=".env")

    environment: str = "development"
    database_url: str = "sqlite:///./data/apiscope.db"
    log_level: str = "INFO"

    # Modules imported at startup; each registers its models with apiscope.services.resources.registry
    resource_modules: list[str] = []

    default_per_page: int = 100
    max_per_page: int = 1000

    audit_enabled: bool = True
    audit_async: bool = True
    audit_redacted_headers: list[str] = ["authorization", "cookie", "x-api-key"]
    # JSON response fields never written to the audit log, e.g. newly issued keys
    audit_redacted_body_fields: list[str] = ["api_key"]

    # Only honor X-Forwarded-For when running behind a trusted proxy
    trust_proxy_headers: bool = False


@lru_cache
def get_settings() -> Settings:
    """Returns cached settings instance."""
    return Settings()
