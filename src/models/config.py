"""Configuration models for the stop place synchronization service."""

from pydantic import BaseModel, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class RegistryConfig(BaseModel):
    """Configuration for the stop place Registry (GraphQL API)."""

    base_url: HttpUrl = Field(default="http://tiamat:8777", description="Registry base URL")
    graphql_path: str = Field(
        default="/services/stop_places/graphql", description="Path of the GraphQL endpoint"
    )
    changes_path: str = Field(
        default="/services/stop_places/changes",
        description="Path of the changed stop places endpoint",
    )
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout")


class RepositoryConfig(BaseModel):
    """Configuration for the downstream Repository ingestion endpoint."""

    base_url: HttpUrl = Field(default="http://chouette:8080", description="Repository base URL")
    timeout_seconds: float = Field(default=60.0, gt=0, description="HTTP timeout")


class SchedulerConfig(BaseModel):
    """Configuration for cron triggers and busy retries."""

    delta_cron: str = Field(default="*/5 * * * *", description="Crontab for delta sync")
    full_cron: str = Field(default="0 2 * * *", description="Crontab for full sync")
    timezone: str = Field(default="Europe/Oslo", description="Time zone for cron triggers")
    autostart: bool = Field(default=True, description="Start cron triggers on service start")
    retry_delay_seconds: float = Field(
        default=15.0, gt=0, description="Delay before redelivering a task after a busy response"
    )

    @field_validator("delta_cron", "full_cron")
    @classmethod
    def validate_cron_fields(cls, v: str) -> str:
        """Crontab expressions must have exactly five fields."""
        if len(v.split()) != 5:
            raise ValueError(f"cron expression must have 5 fields: {v!r}")
        return v


class WatermarkConfig(BaseModel):
    """Configuration for the persisted sync watermark."""

    path: str = Field(default="./data/sync_state.json", description="Watermark file path")


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class LoggingConfig(BaseModel):
    """Log output settings."""

    log_level: str = Field(default="INFO", description="One of " + ", ".join(LOG_LEVELS))
    json_logs: bool = Field(default=True, description="JSON lines instead of console output")
    log_file: str | None = Field(default=None, description="Rotating log file next to stdout")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {v!r}")
        return v.upper()


class AppConfig(BaseSettings):
    """Settings for the whole service.

    Every section has defaults matching the production deployment, so an empty
    environment yields a runnable configuration. Override single values with
    APP_<SECTION>__<KEY>, for example APP_SCHEDULER__DELTA_CRON; these take
    precedence over values loaded from YAML.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    watermark: WatermarkConfig = Field(default_factory=WatermarkConfig)
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
        """APP_* variables win over values passed in (the YAML layers); sections merge key by key."""
        return env_settings, init_settings, dotenv_settings, file_secret_settings
