# src/trackerflow/core/config.py
"""
Configuration schema and loading for trackerflow.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction. Every field has a
default, so ``TrackerflowSettings()`` is a complete configuration and a
settings file only needs the keys it overrides.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from trackerflow.contracts.errors import SettingsError


class CacheSettings(BaseModel):
    """Bounds for compiled-plan and resolved-option caches."""

    model_config = {"frozen": True, "extra": "forbid"}

    validation_plan_limit: int = Field(default=2000, gt=0, description="Compiled validation plans kept")
    calculation_plan_limit: int = Field(default=100, gt=0, description="Compiled calculation plans kept")
    graph_plan_limit: int = Field(default=1000, gt=0, description="Compiled option graphs kept")
    result_limit: int = Field(default=500, gt=0, description="Resolved option lists kept")
    result_ttl_seconds: int = Field(default=300, gt=0, description="Default TTL of resolved option lists")


class HttpSettings(BaseModel):
    """Outbound HTTP behaviour of the dynamic-options http_get source."""

    model_config = {"frozen": True, "extra": "forbid"}

    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")
    max_response_bytes: int = Field(default=1_000_000, gt=0, description="Largest accepted response body")
    user_agent: str = Field(default="trackerflow-dynamic-options", description="User-Agent header value")


class OptionsSettings(BaseModel):
    """Dynamic-options execution limits."""

    model_config = {"frozen": True, "extra": "forbid"}

    max_items: int = Field(default=500, gt=0, description="Maximum options returned per resolution")
    ai_max_rows: int = Field(default=200, gt=0, description="Default row cap for ai.extract_options nodes")
    secret_env_prefix: str = Field(
        default="DYNAMIC_OPTION_SECRET_",
        description="Environment variable prefix used by the env secret resolver",
    )

    @field_validator("secret_env_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if v and not v.replace("_", "").isalnum():
            raise ValueError(f"secret_env_prefix must be alphanumeric/underscore, got {v!r}")
        return v


class TrackerflowSettings(BaseModel):
    """Top-level settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    cache: CacheSettings = Field(default_factory=CacheSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    options: OptionsSettings = Field(default_factory=OptionsSettings)


def load_settings(config_path: Path | None = None) -> TrackerflowSettings:
    """Load settings from a YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (TRACKERFLOW_*) - highest priority
    2. Config file (settings.yaml), when given
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: TRACKERFLOW_HTTP__TIMEOUT_SECONDS for nested keys.

    Args:
        config_path: Optional path to a YAML configuration file

    Returns:
        Validated TrackerflowSettings instance

    Raises:
        SettingsError: If the file is missing, is not valid YAML, or the
            merged configuration fails validation
    """
    from dynaconf import Dynaconf

    settings_files: list[str] = []
    if config_path is not None:
        # Dynaconf silently accepts missing files
        if not config_path.exists():
            raise SettingsError(f"Config file not found: {config_path}")
        try:
            yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise SettingsError(f"Invalid YAML in {config_path}: {e}") from e
        settings_files.append(str(config_path))

    dynaconf_settings = Dynaconf(
        envvar_prefix="TRACKERFLOW",
        settings_files=settings_files,
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; Pydantic fields are lowercase
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = _lowercase_keys({k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys})

    try:
        return TrackerflowSettings(**raw_config)
    except ValidationError as e:
        raise SettingsError(f"Invalid settings: {e}") from e


def _lowercase_keys(config: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        result[key.lower()] = _lowercase_keys(value) if isinstance(value, dict) else value
    return result
