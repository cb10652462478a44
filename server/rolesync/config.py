import logging
import os
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource
from typing_extensions import Self


# =============================================================================
# Application Configuration
# =============================================================================


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Load settings from YAML file specified by ROLESYNC_CONFIG_FILE env var."""

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Get the value for a field from the YAML config."""
        yaml_data = self._load_yaml_config()
        field_value = yaml_data.get(field_name)
        return field_value, field_name, False

    def __call__(self) -> dict[str, Any]:
        """Return all settings from YAML file."""
        return self._load_yaml_config()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load config from YAML file if specified."""
        config_file = os.environ.get("ROLESYNC_CONFIG_FILE")
        if config_file:
            path = Path(config_file)
            if path.exists():
                return yaml.safe_load(path.read_text()) or {}
        return {}


class Frontend(BaseModel):
    """Frontend configuration (nested in Config, uses env_nested_delimiter)."""

    url: str = "http://localhost:3000"
    link_result_path: str = "/dashboard"  # Where the dashboard shows link success/failure


class Server(BaseModel):
    """Server configuration (nested in Config, uses env_nested_delimiter)."""

    name: str = "Rolesync"
    version: str = "0.1.0"
    description: str = "Keeps community platform roles in step with subscription plans"


class DatabaseConfig(BaseModel):
    """Database configuration (nested in Config, uses env_nested_delimiter).

    The url field uses empty string as sentinel to indicate "derive from data_dir".
    When user doesn't override via ROLESYNC_DATABASE__URL, we compute the actual path
    in Config's model_validator.
    """

    url: str = ""  # Empty string = derive from data_dir; explicit value = use as-is
    echo: bool = False
    auto_migrate: bool = True  # Auto-migrate for SQLite, manual for PostgreSQL


class LoggingConfig(BaseModel):
    """Logging configuration (nested in Config, uses env_nested_delimiter)."""

    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    @property
    def file(self) -> str | None:
        """Get log file path from ROLESYNC_LOG_FILE env var."""
        return os.environ.get("ROLESYNC_LOG_FILE")


# =============================================================================
# Authentication Configuration
# =============================================================================


class JwtConfig(BaseModel):
    """JWT configuration.

    The dashboard issues bearer tokens with this secret; we only verify them.
    The same secret signs OAuth state tokens.
    """

    secret: str = ""  # Must be set in production
    algorithm: str = "HS256"
    audience: str = "authenticated"


class AuthConfig(BaseModel):
    """Authentication configuration."""

    jwt: JwtConfig = JwtConfig()
    service_key: str = ""  # Shared secret for billing / sweep collaborators
    callback_url: str = ""  # Full callback URL (e.g., https://app.example.com/api/v1/link/discord/callback)


# =============================================================================
# External Platform Configuration
# =============================================================================


class RoleMappingConfig(BaseModel):
    """Subscription plan to Discord role id mapping.

    Every plan tier must map to a distinct role. Loaded once at startup.
    """

    free: str
    starter: str
    pro: str
    empire: str

    @field_validator("free", "starter", "pro", "empire")
    @classmethod
    def validate_snowflake(cls, v: str) -> str:
        v = v.strip()
        if not v.isdigit():
            raise ValueError(f"Role id must be a numeric snowflake, got {v!r}")
        return v

    @model_validator(mode="after")
    def validate_distinct(self) -> Self:
        ids = [self.free, self.starter, self.pro, self.empire]
        if len(set(ids)) != len(ids):
            raise ValueError("Each plan tier must map to a distinct role id")
        return self


class DiscordConfig(BaseModel):
    """Discord OAuth application and bot configuration."""

    client_id: str = ""
    client_secret: str = ""
    bot_token: str = ""
    guild_id: str = ""
    api_base_url: str = "https://discord.com/api/v10"
    authorize_url: str = "https://discord.com/oauth2/authorize"
    scopes: list[str] = ["identify", "email", "guilds.join"]
    roles: RoleMappingConfig | None = None  # Required when the platform is enabled
    fallback_invite: str | None = None  # Shown to linked users who are not in the guild

    @property
    def enabled(self) -> bool:
        return bool(self.client_id and self.bot_token and self.guild_id)


class BucketConfig(BaseModel):
    """Token bucket budget for one route class."""

    capacity: int = 5
    refill_per_second: float = 1.0


class RateLimitConfig(BaseModel):
    """Rate limiting and retry policy for the external platform API."""

    buckets: dict[str, BucketConfig] = {
        "guild_member_read": BucketConfig(capacity=10, refill_per_second=5.0),
        "guild_member_join": BucketConfig(capacity=5, refill_per_second=1.0),
        "guild_member_role": BucketConfig(capacity=10, refill_per_second=2.0),
        "oauth_token": BucketConfig(capacity=5, refill_per_second=1.0),
        "identity": BucketConfig(capacity=5, refill_per_second=1.0),
    }
    default_bucket: BucketConfig = BucketConfig()
    max_attempts: int = 3  # For 5xx and network errors
    base_backoff: float = 0.5  # Seconds
    max_backoff: float = 8.0  # Seconds
    max_retry_after: float = 60.0  # Cap on server-provided 429 hints
    token_refresh_skew: int = 60  # Refresh OAuth tokens this many seconds before expiry


class SweepConfig(BaseModel):
    """Periodic full reconciliation sweep."""

    cron: str = ""  # Empty = disabled; e.g. "0 */6 * * *"
    account_timeout: float = 120.0  # Seconds allowed per account before moving on


class Config(BaseSettings):
    # These are BaseModel, so env_nested_delimiter handles their env vars
    server: Server = Server()
    frontend: Frontend = Frontend()
    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    auth: AuthConfig = AuthConfig()
    discord: DiscordConfig = DiscordConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    sweep: SweepConfig = SweepConfig()
    data_dir: str = "~/.rolesync"

    model_config = {
        "env_prefix": "ROLESYNC_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",  # Allows ROLESYNC_DATABASE__URL override
    }

    @model_validator(mode="after")
    def derive_database_url(self) -> Self:
        """Derive database URL from data_dir if not explicitly set."""
        if not self.database.url:
            db_file = Path(self.data_dir).expanduser() / "rolesync.db"
            self.database = DatabaseConfig(
                url=f"sqlite+aiosqlite:///{db_file}",
                echo=self.database.echo,
                auto_migrate=self.database.auto_migrate,
            )
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources to include YAML config.

        Priority (highest to lowest):
        1. init_settings - values passed to Config()
        2. env_settings - environment variables
        3. dotenv_settings - .env file
        4. yaml_settings - ROLESYNC_CONFIG_FILE yaml
        5. file_secret_settings - secrets from files
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def configure_logging(config: LoggingConfig) -> None:
    """Configure Python logging based on config.

    Should be called early in application startup, before other modules
    are imported to ensure all loggers pick up the configuration.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(config.level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(config.format, datefmt=config.date_format)

    if config.file:
        log_path = Path(config.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(config.level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(config.level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)  # Suppress job completion spam

    logging.debug("Logging configured: level=%s, file=%s", config.level, config.file)
