"""Application configuration loaded from environment variables."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings


class SchoolAPISettings(BaseSettings):
    url: str = "http://localhost:8000/api"
    service_token: str = ""
    timeout: int = 5

    model_config = {"env_prefix": "SCHOOL_API_"}


class PermissionCacheSettings(BaseSettings):
    catalog_ttl_seconds: int = 600  # roles + permissions catalog (10 min)
    user_ttl_seconds: int = 300  # per-user grants/denials (5 min)
    loading_retry_after: int = 2  # Retry-After header while permissions load

    model_config = {"env_prefix": "PERMISSIONS_"}


class LoggingSettings(BaseSettings):
    level: str = "INFO"
    format: str = "json"

    model_config = {"env_prefix": "LOG_"}


class ServerSettings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8090
    login_path: str = "/login"

    model_config = {"env_prefix": "SERVER_"}


@dataclass
class ValidationError:
    """A single config validation error."""

    field: str
    message: str
    hint: str


@dataclass
class ValidationResult:
    """Result of config validation."""

    errors: list[ValidationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return len(self.errors) == 0

    def add(self, field_name: str, message: str, hint: str = "") -> None:
        self.errors.append(ValidationError(field=field_name, message=message, hint=hint))


class Settings(BaseSettings):
    """Root settings: aggregates all sub-settings."""

    school_api: SchoolAPISettings = Field(default_factory=SchoolAPISettings)
    permissions: PermissionCacheSettings = Field(default_factory=PermissionCacheSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    model_config = {"env_prefix": ""}

    def validate_required(self) -> ValidationResult:
        """Validate semantic correctness of required configuration.

        Pydantic already validates types; this checks that values
        are meaningful (valid URL schemes, positive TTLs, known log level).
        """
        result = ValidationResult()

        # SCHOOL_API_URL: must be an http(s) URL with a host
        api_url = self.school_api.url
        parsed_api = urlparse(api_url)
        if parsed_api.scheme not in ("http", "https") or not parsed_api.netloc:
            result.add(
                "SCHOOL_API_URL",
                f"invalid URL: {api_url!r}",
                "Expected http://host:port/path or https://...",
            )

        # SCHOOL_API_SERVICE_TOKEN: catalog endpoints need an authenticated caller
        if not self.school_api.service_token:
            result.add(
                "SCHOOL_API_SERVICE_TOKEN",
                "not set",
                "Set: export SCHOOL_API_SERVICE_TOKEN=<token issued by the school backend>",
            )

        if self.school_api.timeout <= 0:
            result.add(
                "SCHOOL_API_TIMEOUT",
                f"must be positive, got {self.school_api.timeout}",
                "Timeout is in seconds, e.g. 5",
            )

        if self.permissions.catalog_ttl_seconds <= 0:
            result.add(
                "PERMISSIONS_CATALOG_TTL_SECONDS",
                f"must be positive, got {self.permissions.catalog_ttl_seconds}",
                "Default is 600 (10 minutes)",
            )

        if self.permissions.user_ttl_seconds <= 0:
            result.add(
                "PERMISSIONS_USER_TTL_SECONDS",
                f"must be positive, got {self.permissions.user_ttl_seconds}",
                "Default is 300 (5 minutes)",
            )

        level = self.logging.level.upper()
        if not isinstance(logging.getLevelName(level), int):
            result.add(
                "LOG_LEVEL",
                f"unknown level: {self.logging.level!r}",
                "Use DEBUG, INFO, WARNING or ERROR",
            )

        if self.logging.format not in ("json", "text"):
            result.add(
                "LOG_FORMAT",
                f"unknown format: {self.logging.format!r}",
                "Use json or text",
            )

        return result


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
