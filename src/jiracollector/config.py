# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Collector configuration — YAML file over defaults, env vars over both.

Layering (later wins):
  1. dataclass defaults
  2. YAML file passed to ``load_config``
  3. ``JIRA_COLLECTOR_*`` environment variables

Example file::

    server:
      port: 5000
    storage:
      database_path: ~/.jira-collector/collector.db
    logging:
      level: DEBUG
      json: true
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_MAX_HTML_BYTES = 10 * 1024 * 1024
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TRUE = ("1", "true", "yes")


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 5000
    max_html_bytes: int = DEFAULT_MAX_HTML_BYTES


@dataclass(frozen=True)
class StorageConfig:
    database_path: str = field(
        default_factory=lambda: os.path.join(os.path.expanduser("~"), ".jira-collector", "collector.db")
    )
    in_memory: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass(frozen=True)
class EventsConfig:
    queue_size: int = 256


@dataclass(frozen=True)
class JiraConfig:
    base_url: str = ""
    username: str = ""
    api_token: str = ""
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ExtractionConfig:
    capture_raw_html: bool = True


@dataclass(frozen=True)
class CollectorConfig:
    """Immutable collector configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    jira: JiraConfig = field(default_factory=JiraConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)


# ── Building sections ────────────────────────────────────────────


def _coerce(section: str, name: str, expected: type, value: Any) -> Any:
    if expected is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in (*_TRUE, "0", "false", "no"):
            return value.strip().lower() in _TRUE
    elif expected is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif expected is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif expected is str:
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            return str(value)
    raise ConfigError(f"{section}.{name}: expected {expected.__name__}, got {value!r}")


def _build_section(section: str, cls: type, values: Any) -> Any:
    if values is None:
        return cls()
    if not isinstance(values, Mapping):
        raise ConfigError(f"Section '{section}' must be a mapping, got {type(values).__name__}")

    # Field annotations are strings under postponed evaluation
    types = {"str": str, "int": int, "float": float, "bool": bool}
    known = {f.name: types[f.type] for f in dataclasses.fields(cls)}
    kwargs: dict[str, Any] = {}
    for name, value in values.items():
        if name not in known:
            raise ConfigError(f"Unknown option '{section}.{name}'")
        kwargs[name] = _coerce(section, name, known[name], value)
    return cls(**kwargs)


def _validate(config: CollectorConfig) -> None:
    if not 0 < config.server.port < 65536:
        raise ConfigError(f"server.port out of range: {config.server.port}")
    if config.server.max_html_bytes <= 0:
        raise ConfigError("server.max_html_bytes must be positive")
    if config.events.queue_size <= 0:
        raise ConfigError("events.queue_size must be positive")
    if config.jira.timeout_seconds <= 0:
        raise ConfigError("jira.timeout_seconds must be positive")
    if config.logging.level not in _LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(_LOG_LEVELS)}")


def config_from_mapping(data: Mapping[str, Any] | None) -> CollectorConfig:
    """Build a config from a parsed YAML document.

    Raises:
        ConfigError: unknown section/option or a value of the wrong type.
    """
    data = data or {}
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration root must be a mapping")

    sections = {f.name: f.default_factory for f in dataclasses.fields(CollectorConfig)}
    unknown = set(data) - set(sections)
    if unknown:
        raise ConfigError(f"Unknown configuration section(s): {', '.join(sorted(unknown))}")

    built = {name: _build_section(name, factory, data.get(name)) for name, factory in sections.items()}
    config = CollectorConfig(**built)
    if isinstance(data.get("logging"), Mapping) and "level" in data["logging"]:
        config = dataclasses.replace(
            config, logging=dataclasses.replace(config.logging, level=config.logging.level.upper())
        )
    return config


def _apply_env(config: CollectorConfig) -> CollectorConfig:
    server = config.server
    storage = config.storage
    log = config.logging

    env_host = os.environ.get("JIRA_COLLECTOR_HOST", "").strip()
    if env_host:
        server = dataclasses.replace(server, host=env_host)

    env_port = os.environ.get("JIRA_COLLECTOR_PORT", "").strip()
    if env_port:
        with suppress(ValueError):
            server = dataclasses.replace(server, port=int(env_port))

    env_db = os.environ.get("JIRA_COLLECTOR_DB_PATH", "").strip()
    if env_db:
        storage = dataclasses.replace(storage, database_path=env_db, in_memory=env_db == ":memory:")

    env_level = os.environ.get("JIRA_COLLECTOR_LOG_LEVEL", "").strip().upper()
    if env_level:
        log = dataclasses.replace(log, level=env_level)

    env_json = os.environ.get("JIRA_COLLECTOR_LOG_JSON", "").strip().lower()
    if env_json:
        log = dataclasses.replace(log, json=env_json in _TRUE)

    return dataclasses.replace(config, server=server, storage=storage, logging=log)


def load_config(path: str | Path | None = None) -> CollectorConfig:
    """Load configuration from ``path`` (optional) and the environment.

    Raises:
        ConfigError: the file is unreadable, not valid YAML, or holds invalid values.
    """
    data: Any = None
    if path is not None:
        config_path = Path(path).expanduser()
        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    config = _apply_env(config_from_mapping(data))
    _validate(config)
    return config
