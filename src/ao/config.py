"""YAML configuration with defaults, loaded into a frozen settings object."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .context import BudgetSettings
from .orchestrator import OrchestratorSettings
from .resilience import CircuitBreakerConfig

DEFAULT_CONFIG_NAME = "ao.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "budget": {
        "max_tokens": 60000,
        "keep_last_turns": 20,
        "chars_per_token": 4,
        "action_name_surcharge": 1,
        "argument_surcharge": 1,
    },
    "diagnosis": {
        "window": 3,
        "error_threshold": 0.75,
    },
    "sandbox": {
        "command_timeout": 60,
        "image": "ao-sandbox",
        "root": "data/sandboxes",
        "repo_dir": "repo",
    },
    "orchestrator": {
        "max_review_count": 3,
        "max_context_actions": 75,
        "max_idle_turns": 2,
        "max_proposer_failures": 3,
        "require_plan_approval": False,
        "branch_prefix": "ao/",
    },
    "safety": {
        "enabled": True,
        "timeout": 30,
        "max_workers": 8,
    },
    "actions": {
        "max_output_start": 10000,
        "max_output_end": 10000,
        "max_workers": 8,
    },
    "resilience": {
        "retries": 3,
        "retry_delay": 0.0,
        "failure_threshold": 2,
        "recovery_timeout": 180,
    },
    "models": {
        "default": "gpt-5-mini",
        "timeout": 120,
    },
    "paths": {
        "data": "data",
        "db_path": "data/ao.sqlite",
        "logs": "data/logs",
    },
    "logging": {
        "level": "INFO",
    },
}


class ConfigError(ValueError):
    """Raised when a configuration file cannot be used."""


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested mappings merge key by key."""
    merged: Dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def read_config_file(config_path: Path) -> Dict[str, Any]:
    """Read a YAML mapping from ``config_path``."""
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    return data


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


@dataclass(slots=True, frozen=True)
class EngineConfig:
    """Typed view over the merged configuration mapping."""

    raw: Mapping[str, Any]
    base_dir: Path

    def section(self, name: str) -> Mapping[str, Any]:
        value = self.raw.get(name) or {}
        if not isinstance(value, Mapping):
            raise ConfigError(f"Config section '{name}' must be a mapping.")
        return value

    def _path(self, key: str) -> Path:
        path = Path(str(self.section("paths").get(key) or DEFAULT_CONFIG_TEMPLATE["paths"][key]))
        return path if path.is_absolute() else (self.base_dir / path)

    @property
    def db_path(self) -> Path:
        return self._path("db_path")

    @property
    def logs_path(self) -> Path:
        return self._path("logs")

    @property
    def data_path(self) -> Path:
        return self._path("data")

    @property
    def sandbox_root(self) -> Path:
        root = Path(str(self.section("sandbox").get("root") or "data/sandboxes"))
        return root if root.is_absolute() else (self.base_dir / root)

    @property
    def log_level(self) -> str:
        return str(self.section("logging").get("level") or "INFO").upper()

    @property
    def model(self) -> str:
        return str(self.section("models").get("default") or "gpt-5-mini")

    @property
    def model_timeout(self) -> float:
        return float(self.section("models").get("timeout") or 120)

    def budget_settings(self) -> BudgetSettings:
        budget = self.section("budget")
        return BudgetSettings(
            max_tokens=int(budget["max_tokens"]),
            keep_last_turns=int(budget["keep_last_turns"]),
            chars_per_token=int(budget["chars_per_token"]),
            action_name_surcharge=int(budget["action_name_surcharge"]),
            argument_surcharge=int(budget["argument_surcharge"]),
        )

    def orchestrator_settings(self) -> OrchestratorSettings:
        section = self.section("orchestrator")
        return OrchestratorSettings(
            max_review_count=int(section["max_review_count"]),
            max_context_actions=int(section["max_context_actions"]),
            max_idle_turns=int(section["max_idle_turns"]),
            max_proposer_failures=int(section["max_proposer_failures"]),
            require_plan_approval=bool(section["require_plan_approval"]),
            branch_prefix=str(section["branch_prefix"]),
            action_timeout=float(self.section("sandbox")["command_timeout"]),
        )

    def breaker_config(self) -> CircuitBreakerConfig:
        section = self.section("resilience")
        return CircuitBreakerConfig(
            failure_threshold=int(section["failure_threshold"]),
            recovery_timeout=float(section["recovery_timeout"]),
        )


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """Load ``config_path`` (when it exists) over the defaults."""
    data: Dict[str, Any] = {}
    base_dir = Path.cwd()
    if config_path is not None:
        if config_path.exists():
            data = read_config_file(config_path)
        base_dir = config_path.resolve().parent
    merged = deep_merge(DEFAULT_CONFIG_TEMPLATE, data)
    config = EngineConfig(raw=merged, base_dir=base_dir)
    validate_config(config)
    return config


def validate_config(config: EngineConfig) -> None:
    """Raise :class:`ConfigError` when a numeric setting is out of range."""
    budget = config.budget_settings()
    if budget.max_tokens <= 0:
        raise ConfigError("budget.max_tokens must be positive.")
    if budget.chars_per_token <= 0:
        raise ConfigError("budget.chars_per_token must be positive.")
    if budget.keep_last_turns < 0:
        raise ConfigError("budget.keep_last_turns cannot be negative.")
    threshold = float(config.section("diagnosis")["error_threshold"])
    if not 0.0 <= threshold <= 1.0:
        raise ConfigError("diagnosis.error_threshold must be between 0 and 1.")
    if int(config.section("diagnosis")["window"]) <= 0:
        raise ConfigError("diagnosis.window must be positive.")
    settings = config.orchestrator_settings()
    if settings.max_proposer_failures <= 0:
        raise ConfigError("orchestrator.max_proposer_failures must be positive.")


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "EngineConfig",
    "copy_config_template",
    "deep_merge",
    "load_config",
    "read_config_file",
    "validate_config",
    "write_config",
]
