"""Application configuration management for feedrefresh.

This module defines the application settings and the settings source that
loads the feed list from a YAML file named by another setting.
"""

from datetime import timedelta
from enum import Enum
import logging
from pathlib import Path
import re
from typing import Any, Literal, cast

from pydantic import Field, ValidationInfo, field_validator
from pydantic.fields import FieldInfo
from pydantic_core import PydanticUndefined
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
import pytimeparse2  # pyright: ignore[reportMissingTypeStubs]
import yaml

from ..exceptions import ConfigLoadError
from .feed_config import FeedConfig

logger = logging.getLogger(__name__)

_MILLISECONDS_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*ms\s*$", re.IGNORECASE)


class DebugMode(str, Enum):
    """Represent available debug modes for the application.

    ONCE runs a single scheduling pass, drains the queue, and exits.
    """

    ONCE = "once"


def parse_duration(v: Any, field_name: str) -> timedelta:
    """Parse a duration setting.

    Accepts a timedelta, a number of seconds, or a string such as ``"30m"``,
    ``"15 minutes"``, ``"1h30m"`` or ``"500ms"``.

    Raises:
        ValueError: If the string is not a duration, or the duration is negative.
        TypeError: If the value has an unsupported type.
    """
    match v:
        case timedelta():
            duration = v
        case bool():
            raise TypeError(f"{field_name} must be a duration, got bool")
        case int() | float():
            duration = timedelta(seconds=v)
        case str() as s if (ms_match := _MILLISECONDS_RE.match(s)) is not None:
            duration = timedelta(milliseconds=float(ms_match.group(1)))
        case str() as s:
            seconds = cast(
                int | float | None,
                pytimeparse2.parse(s.strip()),  # pyright: ignore[reportUnknownMemberType]
            )
            if seconds is None:
                raise ValueError(
                    f"Invalid duration format for {field_name}: '{s}'. "
                    "Examples: '500ms', '1s', '30m', '15 minutes', '1h'"
                )
            duration = timedelta(seconds=seconds)
        case _:
            raise TypeError(
                f"{field_name} must be a duration string or number of seconds, "
                f"got {type(v).__name__}"
            )
    if duration < timedelta(0):
        raise ValueError(f"{field_name} must be non-negative, got '{v}'")
    return duration


class YamlFileFromFieldSource(PydanticBaseSettingsSource):
    """Load configuration from a YAML file specified by a field.

    A settings source that loads configuration from a YAML file specified
    by the ``config_file`` field of the settings model itself. This source
    should be run after all other sources that might populate that field.

    Attributes:
        yaml_file_encoding: Encoding to use when reading the YAML file.
        yaml_data: Cached YAML data loaded from the file.
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file_encoding: str | None = None,
    ):
        super().__init__(settings_cls)
        self.yaml_file_encoding = yaml_file_encoding or "utf-8"
        self.yaml_data: dict[str, Any] = {}

    def _get_current_state_of(self, field_name: str) -> Any:
        value = self.current_state.get(field_name)
        if value not in (None, PydanticUndefined):
            return value

        field_info = self.settings_cls.model_fields[field_name]
        if isinstance(field_info.validation_alias, str):
            value = self.current_state.get(field_info.validation_alias)
            if value not in (None, PydanticUndefined):
                return value
        return field_info.get_default()

    def _get_yaml_path(self) -> Path | None:
        """Determine the YAML path from the already processed settings state."""
        path_value = self._get_current_state_of("config_file")
        match path_value:
            case Path():
                return path_value.expanduser()
            case str() as s if s.strip():
                return Path(s).expanduser()
            case None | "":
                return None
            case _:
                raise TypeError(
                    f"Field 'config_file' must resolve to a Path or string, "
                    f"received type '{type(path_value).__name__}'"
                )

    def _read_yaml_file(self, file_path: Path) -> dict[str, Any]:
        logger.debug("Reading YAML configuration.", extra={"file_path": str(file_path)})
        with Path.open(file_path, encoding=self.yaml_file_encoding) as f:
            loaded_yaml = yaml.safe_load(f)

        match loaded_yaml:
            case dict():
                return cast(dict[str, Any], loaded_yaml)
            case None:
                logger.info(
                    "YAML configuration file is empty.",
                    extra={"file_path": str(file_path)},
                )
                return {}
            case _:
                raise TypeError(
                    f"Invalid YAML config format: expected dict, got {type(loaded_yaml).__name__}"
                )

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        """Get value from loaded YAML data."""
        field_value = self.yaml_data.get(field_name)
        return field_value, field_name, self.field_is_complex(field)

    def __call__(self) -> dict[str, Any]:
        """Load YAML data from the file named by the config_file field.

        Raises:
            ConfigLoadError: If the path cannot be resolved or the file cannot
                be read or parsed.
        """
        try:
            yaml_path = self._get_yaml_path()
        except TypeError as e:
            raise ConfigLoadError(
                "Failed to resolve YAML configuration file path."
            ) from e

        if yaml_path is None:
            logger.debug("No YAML configuration file specified; skipping.")
            self.yaml_data = {}
            return {}

        try:
            self.yaml_data = self._read_yaml_file(yaml_path)
        except (TypeError, OSError, yaml.YAMLError) as e:
            raise ConfigLoadError(
                "Failed to load or parse YAML configuration file.",
                config_file=str(yaml_path),
            ) from e
        return self.yaml_data.copy()


class AppSettings(BaseSettings):
    """Application settings and feed configurations.

    Configuration is loaded from initialization arguments, environment
    variables, a ``.env`` file, CLI arguments, and the YAML file named by
    ``config_file``.

    Attributes:
        debug_mode: Debug mode to run (once, or None for the service).
        log_format: Format for application logs (human or json).
        log_level: Logging level for the application.
        log_include_stacktrace: Include full stack traces in error logs.
        data_dir: Directory holding the SQLite database.
        config_file: Path to the YAML config file.
        queue_backend: Where refresh jobs are kept (sqlite or memory).

        Worker Pool:
            worker_concurrency: Number of concurrent refresh workers.
            rate_limit_max: Job starts allowed per rate-limit window.
            rate_limit_window: Length of the rate-limit window.
            poll_interval: Longest an idle worker sleeps between queue checks.
            job_timeout: Per-attempt fetch timeout; None for no timeout.
            fetch_timeout: HTTP timeout of a single feed request.

        Jobs:
            max_attempts: Attempts per refresh, counting the first.
            backoff_delay: Delay before the first retry; doubles per retry.
            remove_on_complete: Completed jobs retained.
            remove_on_fail: Failed or abandoned jobs retained.

        Scheduling:
            stale_threshold: Age after which a fetched feed is due again.
            refresh_interval: Interval between scheduling passes.

        feeds: Feeds to seed into the database, keyed by feed id.
    """

    # Global settings
    debug_mode: DebugMode | None = Field(
        default=None,
        validation_alias="DEBUG_MODE",
        description="Specifies the debug mode to run ('once', or None for the service).",
    )
    log_format: Literal["human", "json"] = Field(
        default="json",
        validation_alias="LOG_FORMAT",
        description="Format for application logs ('human' or 'json').",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Logging level for the application (e.g., DEBUG, INFO, WARNING, ERROR). Case-insensitive.",
    )
    log_include_stacktrace: bool = Field(
        default=False,
        validation_alias="LOG_INCLUDE_STACKTRACE",
        description="Include full stack traces in error logs (true/false).",
    )
    data_dir: Path = Field(
        default=Path("/data"),
        validation_alias="DATA_DIR",
        description="Directory for the SQLite database.",
    )
    config_file: Path = Field(
        default=Path("/config/feeds.yaml"),
        validation_alias="CONFIG_FILE",
        description="Path to the YAML config file.",
    )
    queue_backend: Literal["sqlite", "memory"] = Field(
        default="sqlite",
        validation_alias="QUEUE_BACKEND",
        description="Refresh job queue backend: 'sqlite' (durable) or 'memory' (lost on restart).",
    )

    # Worker pool
    worker_concurrency: int = Field(
        default=5,
        ge=1,
        validation_alias="WORKER_CONCURRENCY",
        description="Number of refresh jobs executed concurrently.",
    )
    rate_limit_max: int = Field(
        default=10,
        ge=1,
        validation_alias="RATE_LIMIT_MAX",
        description="Maximum job starts per rate-limit window.",
    )
    rate_limit_window: timedelta = Field(
        default=timedelta(seconds=1),
        validation_alias="RATE_LIMIT_WINDOW",
        description="Length of the rate-limit window (e.g., '1s', '500ms').",
    )
    poll_interval: timedelta = Field(
        default=timedelta(seconds=1),
        validation_alias="POLL_INTERVAL",
        description="Longest an idle worker waits before re-checking the queue.",
    )
    job_timeout: timedelta | None = Field(
        default=None,
        validation_alias="JOB_TIMEOUT",
        description="Per-attempt timeout for a refresh job (e.g., '2m'). Unset means no timeout.",
    )
    fetch_timeout: timedelta = Field(
        default=timedelta(seconds=30),
        validation_alias="FETCH_TIMEOUT",
        description="HTTP timeout for a single feed request.",
    )

    # Jobs
    max_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias="MAX_ATTEMPTS",
        description="Attempts per refresh job, counting the first.",
    )
    backoff_delay: timedelta = Field(
        default=timedelta(seconds=5),
        validation_alias="BACKOFF_DELAY",
        description="Delay before the first retry; doubled for every further retry.",
    )
    remove_on_complete: int = Field(
        default=100,
        ge=0,
        validation_alias="REMOVE_ON_COMPLETE",
        description="Number of completed refresh jobs to retain.",
    )
    remove_on_fail: int = Field(
        default=50,
        ge=0,
        validation_alias="REMOVE_ON_FAIL",
        description="Number of failed or abandoned refresh jobs to retain.",
    )

    # Scheduling
    stale_threshold: timedelta = Field(
        default=timedelta(minutes=30),
        validation_alias="STALE_THRESHOLD",
        description="Feeds last fetched longer ago than this are refreshed.",
    )
    refresh_interval: timedelta = Field(
        default=timedelta(minutes=15),
        validation_alias="REFRESH_INTERVAL",
        description="Interval between scheduling passes.",
    )

    feeds: dict[str, FeedConfig] = Field(
        default_factory=dict[str, FeedConfig],
        description="Feeds to refresh, keyed by feed id. Must be read from a YAML file.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        cli_parse_args=True,
        cli_ignore_unknown_args=True,
        cli_kebab_case=True,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "rate_limit_window",
        "poll_interval",
        "fetch_timeout",
        "backoff_delay",
        "stale_threshold",
        "refresh_interval",
        mode="before",
    )
    @classmethod
    def parse_required_duration(cls, v: Any, info: ValidationInfo) -> timedelta:
        """Parse a duration string or number of seconds into a timedelta."""
        return parse_duration(v, info.field_name)

    @field_validator("job_timeout", mode="before")
    @classmethod
    def parse_optional_duration(cls, v: Any) -> timedelta | None:
        """Parse the job timeout; empty means no timeout."""
        match v:
            case None:
                return None
            case str() as s if not s.strip() or s.strip().lower() == "none":
                return None
            case _:
                return parse_duration(v, "job_timeout")

    @field_validator(
        "rate_limit_window", "poll_interval", "fetch_timeout", "refresh_interval"
    )
    @classmethod
    def require_positive_duration(cls, v: timedelta, info: ValidationInfo) -> timedelta:
        """Reject zero-length windows and intervals."""
        if v <= timedelta(0):
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("job_timeout")
    @classmethod
    def require_positive_timeout(cls, v: timedelta | None) -> timedelta | None:
        """Reject a zero timeout."""
        if v is not None and v <= timedelta(0):
            raise ValueError("job_timeout must be positive")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order and sources for settings loading.

        Initialization parameters and environment variables are processed
        first so they can set ``config_file``; ``YamlFileFromFieldSource`` then
        reads that file.

        Args:
            settings_cls: The settings class being configured.
            init_settings: Settings from initialization parameters.
            env_settings: Settings from environment variables.
            dotenv_settings: Settings from .env files.
            file_secret_settings: Settings from secret files.

        Returns:
            Tuple of settings sources in the order they should be processed.
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlFileFromFieldSource(settings_cls=settings_cls),
            file_secret_settings,
        )
