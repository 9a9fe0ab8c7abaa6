"""Settings for the syndication controllers.

Settings are plain key/value pairs using dotted keys, e.g.::

    init.validation.attempts.threshold=5
    init.validation.percentage.threshold=20
    validation.attempts.threshold=3
    validation.percentage.threshold=20

They may come from a properties file, a mapping, or ``SYNDICATION_*``
environment variables (``SYNDICATION_VALIDATION_ATTEMPTS_THRESHOLD=3``).
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError
from .models import PipelineState

logger = logging.getLogger(__name__)

ENV_PREFIX = "SYNDICATION_"


class DatabaseConfig(BaseModel):
    """Connection settings for a PostgreSQL database."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: Optional[str] = None
    database: str = "postgres"
    ssl_mode: Optional[str] = None
    # Seconds; every connection and statement is bounded
    connect_timeout: int = 10
    statement_timeout: int = 30

    @field_validator("connect_timeout", "statement_timeout")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    def dsn(self) -> str:
        """Build PostgreSQL connection string."""
        if self.password:
            base_dsn = f"postgresql://{quote(self.user, safe='')}:{quote(self.password, safe='')}@{self.host}:{self.port}/{self.database}"
        else:
            base_dsn = f"postgresql://{quote(self.user, safe='')}@{self.host}:{self.port}/{self.database}"

        params = [f"connect_timeout={self.connect_timeout}"]
        if self.ssl_mode:
            params.append(f"sslmode={self.ssl_mode}")
        return base_dsn + "?" + "&".join(params)

    def jdbc_url(self) -> str:
        """Build the JDBC URL handed to sink connectors."""
        return f"jdbc:postgresql://{self.host}:{self.port}/{self.database}"

    @classmethod
    def from_env(cls, prefix: str, environ: Optional[Mapping[str, str]] = None) -> "DatabaseConfig":
        """Read ``<prefix>HOST``, ``<prefix>PORT``, ... from the environment."""
        environ = os.environ if environ is None else environ
        values = {}
        for field_name in cls.model_fields:
            key = f"{prefix}{field_name.upper()}"
            if key in environ:
                values[field_name] = environ[key]
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid database settings for {prefix}*: {e}") from e


@dataclass(frozen=True)
class Thresholds:
    """Attempts/percentage pair used to judge one validation phase."""
    attempts: int
    percentage: int


class SyndicationSettings(BaseModel):
    """Controller settings, injected at construction time."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    init_validation_attempts_threshold: int = Field(
        5, alias="init.validation.attempts.threshold", ge=1)
    init_validation_percentage_threshold: int = Field(
        20, alias="init.validation.percentage.threshold", ge=0, le=100)
    validation_attempts_threshold: int = Field(
        3, alias="validation.attempts.threshold", ge=1)
    validation_percentage_threshold: int = Field(
        20, alias="validation.percentage.threshold", ge=0, le=100)

    # Seconds between validation passes
    init_validation_interval: int = Field(
        15, alias="init.validation.interval", ge=1)
    validation_interval: int = Field(60, alias="validation.interval", ge=1)

    validation_compare_columns: List[str] = Field(
        default_factory=list, alias="validation.compare.columns")
    validation_report_ids: int = Field(
        10, alias="validation.report.ids", ge=0)

    db_schema: str = Field("inventory", alias="db.schema", min_length=1)
    db_view: str = Field("hosts", alias="db.view", min_length=1)
    source_table: str = Field("public.hosts", alias="source.table", min_length=1)

    connect_url: str = Field("http://localhost:8083", alias="connect.url")
    connect_topic: str = Field("platform.inventory.events", alias="connect.topic")
    connect_tasks_max: int = Field(1, alias="connect.tasks.max", ge=1)
    connect_batch_size: int = Field(100, alias="connect.batch.size", ge=1)
    connect_timeout: int = Field(30, alias="connect.timeout", ge=1)

    conflict_retries: int = Field(3, alias="reconcile.conflict.retries", ge=1)
    store_table: str = Field("syndication_pipelines", alias="store.table")

    source_db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    app_db: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @field_validator("validation_compare_columns", mode="before")
    @classmethod
    def split_columns(cls, v):
        if isinstance(v, str):
            return [c.strip() for c in v.split(",") if c.strip()]
        return v

    def thresholds_for(self, state: PipelineState) -> Thresholds:
        """Select the threshold pair for the phase a pipeline is in."""
        if state == PipelineState.INITIAL_SYNC:
            return Thresholds(self.init_validation_attempts_threshold,
                              self.init_validation_percentage_threshold)
        return Thresholds(self.validation_attempts_threshold,
                          self.validation_percentage_threshold)

    def interval_for(self, state: PipelineState) -> int:
        if state in (PipelineState.NEW, PipelineState.INITIAL_SYNC):
            return self.init_validation_interval
        return self.validation_interval

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> "SyndicationSettings":
        """Build settings from dotted key/value pairs."""
        try:
            return cls.model_validate(dict(values))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid syndication settings: {e}") from e


def read_properties(path: Path) -> Dict[str, str]:
    """Parse a ``key=value`` properties file. Blank lines and ``#`` comments are skipped."""
    values: Dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e

    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            raise ConfigurationError(f"{path}:{lineno}: expected key=value")
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Translate ``SYNDICATION_FOO_BAR`` variables into ``foo.bar`` keys."""
    environ = os.environ if environ is None else environ
    aliases = {
        field.alias.replace(".", "_").upper(): field.alias
        for field in SyndicationSettings.model_fields.values()
        if field.alias
    }
    values = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        alias = aliases.get(key[len(ENV_PREFIX):])
        if alias:
            values[alias] = value
    return values


def load_settings(
    properties: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> SyndicationSettings:
    """Load settings from an optional properties file overlaid with the environment.

    Database connections are read from ``SOURCE_DB_*`` and ``APP_DB_*``.
    """
    values: Dict[str, object] = {}
    if properties is not None:
        values.update(read_properties(properties))
    values.update(env_overrides(environ))
    values["source_db"] = DatabaseConfig.from_env("SOURCE_DB_", environ)
    values["app_db"] = DatabaseConfig.from_env("APP_DB_", environ)

    settings = SyndicationSettings.from_mapping(values)
    logger.debug(f"Loaded settings: {settings.model_dump(exclude={'source_db', 'app_db'})}")
    return settings
