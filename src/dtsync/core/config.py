"""
dtsync settings.

Three sections, each a dataclass whose fields are the only accepted keys:

    app:          run_id, dry_run
    environment:  url, token, verify_tls, timeout_sec
    logging:      base_dir, console_level, file_level

Layers, lowest to highest: dataclass defaults, the first YAML file found, DTSYNC_
variables (`DTSYNC_ENVIRONMENT__TOKEN`, a `.env` file included), CLI overrides.
String values may reference other variables as `${VAR}`.
"""

from __future__ import annotations

import os
import re
import uuid
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv


class ConfigError(ValueError):
    """Raised when runtime configuration cannot be resolved."""


@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False


@dataclass
class EnvironmentSection:
    url: str = ""
    token: str = ""          # secret, never logged
    verify_tls: bool = True
    timeout_sec: int = 60


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"
    file_level: str = "DEBUG"


@dataclass
class AppConfig:
    app: AppSection
    environment: EnvironmentSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """Identifier of this run, generated on first access when not configured."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


_SECTIONS = {
    "app": AppSection,
    "environment": EnvironmentSection,
    "logging": LoggingSection,
}

_DEFAULT_FILES: Tuple[str, ...] = (
    "./dtsync.yml",
    os.path.expanduser("~/.config/dtsync/config.yml"),
    "/etc/dtsync/config.yml",
)

_VAR_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_TRUTHY = {"1", "true", "yes", "y", "on"}

Layer = Dict[str, Dict[str, Any]]


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def _as_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got {value!r}") from None


# keyed by the field annotation as written (postponed annotations are strings)
_COERCE: Dict[str, Callable[[str, Any], Any]] = {
    "bool": _as_bool,
    "int": _as_int,
    "str": lambda key, value: str(value),
}


def _yaml_layer(files: Iterable[str]) -> Layer:
    for path in files:
        if not os.path.exists(path):
            continue
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Top-level YAML must be a mapping: {path}")
        return data
    return {}


def _env_layer(prefix: str) -> Layer:
    layer: Layer = {}
    for section, cls in _SECTIONS.items():
        for f in fields(cls):
            var = f"{prefix}{section}__{f.name}".upper()
            if var in os.environ:
                layer.setdefault(section, {})[f.name] = os.environ[var]
    return layer


def _cli_layer(overrides: Optional[Dict[str, Any]]) -> Layer:
    # unset flags arrive as None or "" and must not hide lower layers
    return {
        section: {k: v for k, v in (values or {}).items() if v is not None and v != ""}
        for section, values in (overrides or {}).items()
    }


def _merge(*layers: Layer) -> Layer:
    merged: Layer = {section: {} for section in _SECTIONS}
    for layer in layers:
        for section, values in layer.items():
            if section not in _SECTIONS:
                raise ConfigError(f"Unknown configuration section: {section}")
            if values is None:
                continue
            if not isinstance(values, dict):
                raise ConfigError(f"Configuration section '{section}' must be a mapping")
            merged[section].update(values)
    return merged


def _interpolate(value: Any) -> Any:
    if isinstance(value, str):
        return _VAR_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    return value


def _build_section(section: str, values: Dict[str, Any]) -> Any:
    cls = _SECTIONS[section]
    known = {f.name: f for f in fields(cls)}
    kwargs: Dict[str, Any] = {}
    for key, raw in values.items():
        if key not in known:
            raise ConfigError(f"Unknown configuration key: {section}.{key}")
        if raw is None:
            continue
        coerce = _COERCE.get(str(known[key].type))
        value = _interpolate(raw)
        kwargs[key] = coerce(f"{section}.{key}", value) if coerce else value
    return cls(**kwargs)


def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "DTSYNC_",
    load_env_file: bool = True,
) -> AppConfig:
    """Resolve the layered settings into an AppConfig.

    Raises:
        ConfigError: On malformed input, or when environment.url / environment.token
            are missing outside dry-run.
    """
    if load_env_file:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)

    merged = _merge(_yaml_layer(files), _env_layer(env_prefix), _cli_layer(cli_overrides))
    cfg = AppConfig(**{section: _build_section(section, values) for section, values in merged.items()})

    if not cfg.app.dry_run:
        missing = [
            key for key, value in (
                ("environment.url", cfg.environment.url),
                ("environment.token", cfg.environment.token),
            ) if not value
        ]
        if missing:
            raise ConfigError("Missing required configuration for non-dry run: " + ", ".join(missing))
    return cfg
