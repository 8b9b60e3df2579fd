"""Agent configuration loading helpers."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "apmcore" / "config.toml"


class RecordSQL(str, Enum):
    """Local setting for how much SQL text may be retained."""

    RAW = "raw"
    OBFUSCATED = "obfuscated"
    OFF = "off"


class SlowQueryConfig(BaseModel):
    """Slow query capture settings."""

    enabled: bool = True
    threshold: float = 0.01


class DatastoreTracerConfig(BaseModel):
    """Settings applied to every datastore segment."""

    instance_reporting: bool = True
    database_name_reporting: bool = True
    query_parameters: bool = True
    slow_query: SlowQueryConfig = Field(default_factory=SlowQueryConfig)
    infer_from_query: bool = False
    sql_dialect: str | None = None


class CodeLevelMetricsConfig(BaseModel):
    """Controls how traced operations are attributed to source code."""

    enabled: bool = True
    scope: set[str] = Field(default_factory=lambda: {"all"})
    ignored_prefixes: list[str] = Field(default_factory=list)
    path_prefixes: list[str] = Field(default_factory=list)


class HarvestConfig(BaseModel):
    """Harvest cycle cadence and per-cycle limits."""

    interval: float = 60.0
    max_slow_queries: int = 10
    max_tracked_queries: int = 100
    max_event_samples: int = 1000
    max_synthetics_traces: int = 20


class AgentConfig(BaseModel):
    """Shape of the agent configuration file."""

    app_name: str = "My Application"
    high_security: bool = False
    record_sql: RecordSQL = RecordSQL.RAW
    cross_application_tracer: bool = True
    distributed_tracer: bool = True
    datastore_tracer: DatastoreTracerConfig = Field(default_factory=DatastoreTracerConfig)
    code_level_metrics: CodeLevelMetricsConfig = Field(default_factory=CodeLevelMetricsConfig)
    harvest: HarvestConfig = Field(default_factory=HarvestConfig)

    def with_high_security(self, enabled: bool = True) -> AgentConfig:
        """Return a copy with high-security mode toggled."""

        return self.model_copy(update={"high_security": enabled})

    def with_datastore(self, **updates: object) -> AgentConfig:
        """Return a copy with datastore tracer settings changed."""

        datastore = self.datastore_tracer.model_copy(update=updates)
        return self.model_copy(update={"datastore_tracer": datastore})

    def with_slow_query(self, **updates: object) -> AgentConfig:
        """Return a copy with slow query settings changed."""

        slow_query = self.datastore_tracer.slow_query.model_copy(update=updates)
        return self.with_datastore(slow_query=slow_query)

    def with_code_level_metrics(self, **updates: object) -> AgentConfig:
        clm = self.code_level_metrics.model_copy(update=updates)
        return self.model_copy(update={"code_level_metrics": clm})

    def with_harvest(self, **updates: object) -> AgentConfig:
        harvest = self.harvest.model_copy(update=updates)
        return self.model_copy(update={"harvest": harvest})


def load_config(path: Path | None = None) -> AgentConfig:
    """Load configuration from disk; fall back to defaults if missing or invalid."""

    target = path or CONFIG_FILE
    try:
        with target.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return AgentConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Unreadable agent config, using defaults", extra={"path": str(target), "error": str(exc)})
        return AgentConfig()

    try:
        return AgentConfig.model_validate(raw)
    except ValidationError as exc:
        LOG.warning(
            "Invalid agent config, using defaults",
            extra={"path": str(target), "errors": exc.error_count()},
        )
        return AgentConfig()


__all__ = [
    "AgentConfig",
    "CONFIG_FILE",
    "CodeLevelMetricsConfig",
    "DatastoreTracerConfig",
    "HarvestConfig",
    "RecordSQL",
    "SlowQueryConfig",
    "load_config",
]
