"""
Configuration manager implementation for RTM-Triage.

This module provides the main configuration management functionality
including environment-specific settings, validation, and the tunable
scoring, SLA, ranking and lifecycle policies of the triage engine.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rtm_triage.core.exceptions import ConfigError
from rtm_triage.core.models import TERMINAL_STATUSES, AlertStatus, Severity

load_dotenv()

RISK_COMPONENTS = ("vitals_deviation", "trend_velocity", "adherence_penalty")


def _check_severity_keys(table: Dict[str, Any], name: str) -> Dict[str, Any]:
    unknown = set(table) - {s.value for s in Severity}
    if unknown:
        raise ValueError(f"Unknown severities in {name}: {sorted(unknown)}")
    return table


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    host: str = "localhost"
    port: int = 5432
    database: str = "rtm_triage"
    username: str = "rtm_triage"
    password: str = "password"
    pool_min_size: int = 2
    pool_max_size: int = 10
    command_timeout: float = 30.0

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{self.username}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}"
        )


class RedisConfig(BaseSettings):
    """Redis configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    enabled: bool = False
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    max_connections: int = 10

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "INFO"
    format: str = "json"


class ScoringConfig(BaseSettings):
    """Risk scoring weights and tuning."""

    model_config = SettingsConfigDict(env_prefix="SCORING_")

    weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "vitals_deviation": 0.4,
            "trend_velocity": 0.3,
            "adherence_penalty": 0.3,
        }
    )
    severity_multipliers: Dict[str, float] = Field(
        default_factory=lambda: {
            "LOW": 1.0,
            "MEDIUM": 1.2,
            "HIGH": 1.5,
            "CRITICAL": 2.0,
        }
    )
    deviation_steepness: float = Field(default=3.0, gt=0)
    trend_window: int = Field(default=5, ge=2)
    trend_min_points: int = Field(default=3, ge=2)
    default_trend_scale: float = Field(default=5.0, gt=0)
    metrics: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @field_validator("weights")
    @classmethod
    def validate_weights(cls, v):
        if set(v) != set(RISK_COMPONENTS):
            raise ValueError(f"weights must define exactly {list(RISK_COMPONENTS)}")
        if any(w < 0 for w in v.values()):
            raise ValueError("weights must be non-negative")
        if sum(v.values()) <= 0:
            raise ValueError("weights must sum to a positive normalizer")
        return v

    @field_validator("severity_multipliers")
    @classmethod
    def validate_multipliers(cls, v):
        _check_severity_keys(v, "severity_multipliers")
        if not v or any(m <= 0 for m in v.values()):
            raise ValueError("severity multipliers must be positive")
        return v

    @property
    def normalizer(self) -> float:
        return sum(self.weights.values())


class SLAConfig(BaseSettings):
    """SLA windows and escalation delays, in minutes."""

    model_config = SettingsConfigDict(env_prefix="SLA_")

    windows_minutes: Dict[str, int] = Field(
        default_factory=lambda: {
            "CRITICAL": 30,
            "HIGH": 120,
            "MEDIUM": 480,
            "LOW": 1440,
        }
    )
    warning_buffer_minutes: int = Field(default=30, ge=0)
    escalation_delay_minutes: Dict[str, int] = Field(
        default_factory=lambda: {
            "CRITICAL": 30,
            "HIGH": 120,
            "MEDIUM": 240,
        }
    )

    @field_validator("windows_minutes")
    @classmethod
    def validate_windows(cls, v):
        _check_severity_keys(v, "windows_minutes")
        missing = {s.value for s in Severity} - set(v)
        if missing:
            raise ValueError(f"Missing SLA windows for: {sorted(missing)}")
        if any(m <= 0 for m in v.values()):
            raise ValueError("SLA windows must be positive")
        return v

    @field_validator("escalation_delay_minutes")
    @classmethod
    def validate_delays(cls, v):
        _check_severity_keys(v, "escalation_delay_minutes")
        if any(m < 0 for m in v.values()):
            raise ValueError("escalation delays must be non-negative")
        return v


class RankingConfig(BaseSettings):
    """Priority ranking policy."""

    model_config = SettingsConfigDict(env_prefix="RANKING_")

    ranked_statuses: List[AlertStatus] = Field(
        default_factory=lambda: [
            AlertStatus.PENDING,
            AlertStatus.CLAIMED,
            AlertStatus.ACKNOWLEDGED,
            AlertStatus.SNOOZED,
        ]
    )
    mirror_to_redis: bool = False

    @field_validator("ranked_statuses")
    @classmethod
    def validate_statuses(cls, v):
        if not v:
            raise ValueError("ranked_statuses cannot be empty")
        if any(s in TERMINAL_STATUSES for s in v):
            raise ValueError("terminal statuses cannot be ranked")
        return v


class LifecycleConfig(BaseSettings):
    """Alert lifecycle policy."""

    model_config = SettingsConfigDict(env_prefix="LIFECYCLE_")

    allow_unclaimed_acknowledge: bool = False
    allow_resolve_from_claimed: bool = False
    enforce_claim_ownership: bool = True
    min_resolution_notes_length: int = Field(default=10, ge=1)
    min_time_spent_minutes: int = Field(default=1, ge=0)
    claim_timeout_minutes: int = Field(default=60, gt=0)
    default_snooze_minutes: int = Field(default=60, gt=0)
    max_snooze_minutes: int = Field(default=7 * 24 * 60, gt=0)


class SignalConfig(BaseSettings):
    """Signal extraction windows and timeouts."""

    model_config = SettingsConfigDict(env_prefix="SIGNALS_")

    observation_lookback_days: int = Field(default=7, gt=0)
    adherence_lookback_days: int = Field(default=30, gt=0)
    fetch_timeout_seconds: float = Field(default=2.0, gt=0)
    max_observations: int = Field(default=50, gt=0)


class SchedulerConfig(BaseSettings):
    """Background job intervals for the API server."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    enabled: bool = True
    rank_interval_seconds: int = Field(default=300, gt=0)
    maintenance_interval_seconds: int = Field(default=60, gt=0)


class ConfigManager:
    """Configuration manager for RTM-Triage."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        config_data: Optional[Dict[str, Any]] = None,
    ):
        self._explicit_path = config_path is not None
        self.config_path = config_path or self._get_default_config_path()
        if config_data is not None:
            self._config = dict(config_data)
        else:
            self._config = self._load_config()
        self._build_sections()

    def _get_default_config_path(self) -> str:
        """Get the default configuration file path."""
        env = os.getenv("RTM_TRIAGE_ENV", "development")
        return f"configs/{env}.yaml"

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file."""
        config_file = Path(self.config_path)
        if not config_file.exists():
            if self._explicit_path:
                raise ConfigError(f"Configuration file not found: {config_file}")
            config: Dict[str, Any] = {}
        else:
            try:
                with open(config_file, "r") as f:
                    config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Failed to load configuration: {str(e)}")

        if not isinstance(config, dict):
            raise ConfigError(f"Configuration root must be a mapping: {config_file}")

        # Override with environment variables
        self._apply_env_overrides(config)
        return config

    def _apply_env_overrides(self, config: Dict[str, Any]):
        """Apply environment variable overrides."""
        env_mapping = {
            "RTM_TRIAGE_LOG_LEVEL": ("logging", "level"),
            "RTM_TRIAGE_DB_HOST": ("database", "host"),
            "RTM_TRIAGE_REDIS_HOST": ("redis", "host"),
        }

        for env_var, config_path in env_mapping.items():
            if env_var in os.environ:
                self._set_nested_value(config, config_path, os.environ[env_var])

    def _set_nested_value(self, config: Dict[str, Any], path: tuple, value: Any):
        """Set a nested value in the configuration dictionary."""
        for key in path[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]
        config[path[-1]] = value

    def _build_sections(self):
        """Validate and build the typed configuration sections."""
        sections = {
            "database": DatabaseConfig,
            "redis": RedisConfig,
            "logging": LoggingConfig,
            "scoring": ScoringConfig,
            "sla": SLAConfig,
            "ranking": RankingConfig,
            "lifecycle": LifecycleConfig,
            "signals": SignalConfig,
            "scheduler": SchedulerConfig,
        }
        self._sections: Dict[str, BaseSettings] = {}
        for name, section_cls in sections.items():
            raw = self._config.get(name) or {}
            try:
                self._sections[name] = section_cls(**raw)
            except ValidationError as e:
                raise ConfigError(f"Invalid '{name}' configuration: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a raw configuration value by dotted key."""
        value: Any = self._config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def get_database_config(self) -> DatabaseConfig:
        """Get database configuration."""
        return self._sections["database"]

    def get_redis_config(self) -> RedisConfig:
        """Get Redis configuration."""
        return self._sections["redis"]

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration."""
        return self._sections["logging"]

    def get_scoring_config(self) -> ScoringConfig:
        return self._sections["scoring"]

    def get_sla_config(self) -> SLAConfig:
        return self._sections["sla"]

    def get_ranking_config(self) -> RankingConfig:
        return self._sections["ranking"]

    def get_lifecycle_config(self) -> LifecycleConfig:
        return self._sections["lifecycle"]

    def get_signal_config(self) -> SignalConfig:
        return self._sections["signals"]

    def get_scheduler_config(self) -> SchedulerConfig:
        return self._sections["scheduler"]

    def reload(self):
        """Reload configuration from file."""
        self._config = self._load_config()
        self._build_sections()
