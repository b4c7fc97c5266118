"""
Configuration Module - Load and validate client settings.
=========================================================

Loads configuration from:
1. config/settings.yaml (defaults)
2. Environment variables from .env file
3. Environment variables from system

Environment variables override YAML defaults. Nested sections can be
overridden with a double underscore, e.g. ``TRANSPORT__MAX_RETRIES=5``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

# Load .env file early
load_dotenv()


# Find project root (where pyproject.toml is located)
def _find_project_root() -> Path:
    """Find the project root directory by looking for pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    # Fallback to current working directory
    return Path.cwd()


PROJECT_ROOT = _find_project_root()
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.yaml"


# ─────────────────────────────────────────────────────────────────────────────
# Nested Configuration Models
# ─────────────────────────────────────────────────────────────────────────────


class SourceConfig(BaseModel):
    """Where the source application lives."""

    base_url: str = "https://www.gradescope.com"
    login_path: str = "/login"
    account_path: str = "/account"

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class TransportConfig(BaseModel):
    """HTTP transport settings: retries, backoff, request budget."""

    timeout: float = 30.0
    max_retries: int = 4
    retry_min_wait: float = 1.0
    retry_max_wait: float = 30.0
    rate_limit: float = 1.0
    rate_limit_backoff: float = 30.0
    max_retry_after: float = 300.0
    max_requests: int = 0  # 0 = unlimited
    user_agent: str = "gradescope-client/0.1.0"


class SessionConfig(BaseModel):
    """Authentication and expiry detection rules."""

    max_auth_attempts: int = 2
    # A redirect chain ending on one of these paths means the session expired
    login_paths: list[str] = Field(default_factory=lambda: ["/login"])
    # A 200 page matching any of these selectors is the login page in disguise
    expired_markers: list[str] = Field(
        default_factory=lambda: [
            "form[action='/login'] input[name=authenticity_token]",
        ]
    )


class PaginationConfig(BaseModel):
    """Detection rules for the "has next page" signal."""

    container_selectors: list[str] = Field(
        default_factory=lambda: ["div.pagination", "nav.pagination", "ul.pagination"]
    )
    next_selectors: list[str] = Field(
        default_factory=lambda: ["a[rel~=next]", "a.next_page", "li.next > a"]
    )
    disabled_selectors: list[str] = Field(
        default_factory=lambda: [
            "span.next_page.disabled",
            ".next_page.disabled",
            "li.next.disabled",
        ]
    )
    page_param: str = "page"
    max_pages: int = 500


class ConcurrencyConfig(BaseModel):
    """Bounded fan-out for independent fetches."""

    max_workers: int = 4

    @field_validator("max_workers")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        return v


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    rich_console: bool = True
    file: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Main Settings Class
# ─────────────────────────────────────────────────────────────────────────────


class Settings(BaseSettings):
    """
    Main client settings.

    Loads from:
    1. config/settings.yaml (defaults)
    2. Environment variables

    Environment variables override YAML settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Credentials (from environment only)
    gs_email: str = Field(default="", validation_alias=AliasChoices("GS_EMAIL", "EMAIL"))
    gs_password: SecretStr = Field(default=SecretStr(""), validation_alias="GS_PASSWORD")

    # Top-level environment overrides
    log_level: Optional[str] = Field(default=None, validation_alias="LOG_LEVEL")

    # Nested configurations (from YAML)
    source: SourceConfig = Field(default_factory=SourceConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Earlier sources win; the YAML file only fills what the environment leaves unset
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
            YamlConfigSettingsSource(settings_cls),
        )

    @field_validator("gs_email", mode="before")
    @classmethod
    def validate_email(cls, v: Any) -> str:
        """Allow an empty email; credentials may be passed explicitly."""
        if v is None:
            return ""
        return str(v).strip()

    @property
    def has_credentials(self) -> bool:
        """Whether both email and password are configured."""
        return bool(self.gs_email) and bool(self.gs_password.get_secret_value())

    def get_effective_log_level(self) -> str:
        """Get the effective log level (env override or config)."""
        if self.log_level:
            return self.log_level.upper()
        return self.logging.level.upper()


def _create_settings(config_path: Optional[Path] = None) -> Settings:
    """Create settings with environment variables layered over a YAML file."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    class FileSettings(Settings):
        model_config = SettingsConfigDict(yaml_file=config_path, yaml_file_encoding="utf-8")

    return FileSettings()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the singleton settings instance.

    Returns:
        Settings instance with merged configuration

    Example:
        >>> settings = get_settings()
        >>> print(settings.transport.max_retries)
        4
    """
    return _create_settings()


def reload_settings() -> Settings:
    """
    Force reload of settings (clears cache).

    Returns:
        Fresh Settings instance
    """
    get_settings.cache_clear()
    return get_settings()
