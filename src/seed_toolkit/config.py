from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple

import yaml
from pydantic import BaseModel, field_validator

SEED_MODES = ("GENERATED", "FIXTURE", "HYBRID")
DEFAULT_MAX_CONCURRENT_COMMANDS = 5


class PathsConfig(BaseModel):
    scenarios: Optional[str] = None
    fixtures: Optional[str] = None
    database: str
    manifests: str
    reports: str
    allowed_output_roots: List[str] = []

    @field_validator("allowed_output_roots", mode="before")
    @classmethod
    def _split_roots(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part for part in value.split(os.pathsep) if part.strip()]
        return value


class SeedConfig(BaseModel):
    days: int = 30
    seed: int = 42
    mode: str = "GENERATED"
    base_impressions: int = 10000
    platforms: str = ""
    allow_real_tenant: bool = False

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        upper = value.upper()
        if upper not in SEED_MODES:
            raise ValueError(f"mode must be one of {', '.join(SEED_MODES)}")
        return upper


class ExecutorConfig(BaseModel):
    max_concurrent_commands: int = DEFAULT_MAX_CONCURRENT_COMMANDS

    @field_validator("max_concurrent_commands", mode="before")
    @classmethod
    def _fallback_limit(cls, value: Any) -> int:
        try:
            limit = int(value)
        except (TypeError, ValueError):
            return DEFAULT_MAX_CONCURRENT_COMMANDS
        return limit if limit > 0 else DEFAULT_MAX_CONCURRENT_COMMANDS


class LoggingConfig(BaseModel):
    level: str = "INFO"
    env: str = "LOCAL"


class AppConfig(BaseModel):
    paths: PathsConfig
    seed: SeedConfig
    executor: ExecutorConfig
    logging: LoggingConfig


def _resolve_default_config_path() -> Path:
    repo_candidate = Path(__file__).resolve().parents[2] / "configs" / "default.yaml"
    package_candidate = Path(__file__).resolve().parent / "configs" / "default.yaml"
    for candidate in (repo_candidate, package_candidate):
        if candidate.exists():
            return candidate
    raise FileNotFoundError(
        "Unable to locate default configuration; expected it under "
        f"{repo_candidate} or {package_candidate}."
    )


DEFAULT_CONFIG_PATH = _resolve_default_config_path()
ENV_TO_PATH: Dict[str, Tuple[str, ...]] = {
    "TOOLKIT_ENV": ("logging", "env"),
    "TOOLKIT_LOG_LEVEL": ("logging", "level"),
    "TOOLKIT_MANIFEST_DIR": ("paths", "manifests"),
    "TOOLKIT_REPORT_DIR": ("paths", "reports"),
    "TOOLKIT_ALLOWED_OUTPUT_ROOTS": ("paths", "allowed_output_roots"),
    "TOOLKIT_DB_PATH": ("paths", "database"),
    "TOOLKIT_MAX_CONCURRENT_COMMANDS": ("executor", "max_concurrent_commands"),
}


def load_config(
    default_path: Path,
    override_yaml_path_or_none: Optional[Path],
    env: Mapping[str, str],
    cli_overrides: Mapping[str, Any],
) -> AppConfig:
    data = _load_yaml(default_path)
    if override_yaml_path_or_none:
        data = _deep_merge(data, _load_yaml(override_yaml_path_or_none))

    data = _apply_env_overrides(data, env)
    data = _apply_cli_overrides(data, cli_overrides)

    return AppConfig.model_validate(data)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    content = path.read_text(encoding="utf-8")
    if not content.strip():
        return {}

    loaded = yaml.safe_load(content)
    if loaded is not None and not isinstance(loaded, dict):
        raise ValueError(f"Config file {path} must contain a mapping.")
    return loaded or {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(
    data: Dict[str, Any], env: Mapping[str, str]
) -> Dict[str, Any]:
    updated = json.loads(json.dumps(data))
    for var, path in ENV_TO_PATH.items():
        if var in env:
            _assign_path(updated, path, env[var])
    return updated


def _apply_cli_overrides(
    data: Dict[str, Any], overrides: Mapping[str, Any]
) -> Dict[str, Any]:
    updated = json.loads(json.dumps(data))
    for key, value in overrides.items():
        path = tuple(key.split(".")) if isinstance(key, str) else tuple(key)
        if not path:
            continue
        _assign_path(updated, path, value)
    return updated


def _assign_path(
    target: MutableMapping[str, Any], path: Tuple[str, ...], value: Any
) -> None:
    cursor: MutableMapping[str, Any] = target
    for part in path[:-1]:
        if part not in cursor or not isinstance(cursor[part], MutableMapping):
            cursor[part] = {}
        cursor = cursor[part]
    cursor[path[-1]] = value


__all__ = [
    "AppConfig",
    "DEFAULT_CONFIG_PATH",
    "SEED_MODES",
    "load_config",
]
