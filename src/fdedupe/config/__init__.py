"""Configuration management for fdedupe."""

from __future__ import annotations

import os
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError, PatternError
from .models import FdedupeConfig, LoggingSettings, RemoveSettings, ScanSettings
from .resolver import ENV_PREFIX, env_overrides, flatten_for_env, resolve_with_precedence

DEFAULT_CONFIG_PATH = Path("~/.fdedupe/config.yaml")
LOCAL_CONFIG_NAME = "fdedupe_options.yaml"
_CONFIG_HEADER = textwrap.dedent(
    """\
    # fdedupe configuration file
    # Generated automatically; manage via `fdedupe config set`.
    """
)


def locate_config(cwd: Path | None = None) -> Path:
    """Return the options file that applies to ``cwd``.

    A ``fdedupe_options.yaml`` in the working directory wins; otherwise the
    per-user file under ``~/.fdedupe`` is used (whether or not it exists yet).
    """
    local = (cwd or Path.cwd()) / LOCAL_CONFIG_NAME
    if local.is_file():
        return local
    return DEFAULT_CONFIG_PATH.expanduser()


class ConfigManager:
    """Load and persist fdedupe options, applying precedence rules."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or locate_config()).expanduser()
        self._env = env if env is not None else os.environ

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = False,
        env_overrides: Mapping[str, str] | None = None,
    ) -> FdedupeConfig:
        """Return the effective configuration.

        Args:
            cli_overrides: Dotted-key values from command line flags.
            include_env: Whether ``FDEDUPE__*`` variables are applied.
            ensure_file: Create the options file with defaults first.
            env_overrides: Environment to read instead of ``os.environ``.

        Raises:
            ConfigError: If the file cannot be parsed or a value is invalid.
        """
        if ensure_file:
            self.ensure_exists()

        env_layer = None
        if include_env:
            env_layer = _env_layer(env_overrides if env_overrides is not None else self._env)

        return resolve_with_precedence(
            defaults=FdedupeConfig(),
            file_overrides=self._read_file(),
            env_overrides=env_layer or None,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return the raw mapping stored in the options file."""
        return self._read_file()

    def set_value(self, key: str, value: Any) -> FdedupeConfig:
        """Store ``value`` under the dotted ``key`` after validating the result.

        Raises:
            ConfigError: If ``key`` is empty or the updated file would be invalid.
        """
        segments = [segment.strip() for segment in key.split(".") if segment.strip()]
        if not segments:
            raise ConfigError("KEY must specify a dotted path such as 'scan.recursive'.")
        data = self._read_file()
        assign_nested(data, segments, value)
        config = resolve_with_precedence(defaults=FdedupeConfig(), file_overrides=data)
        self._write_file(data)
        return config

    def save(self, config: FdedupeConfig | Mapping[str, Any]) -> None:
        if isinstance(config, FdedupeConfig):
            self._write_file(config.model_dump(mode="python"))
        else:
            self._write_file(dict(config))

    def ensure_exists(self) -> Path:
        """Create the options file with defaults when it is missing."""
        if not self._config_path.exists():
            self._write_file(FdedupeConfig().model_dump(mode="python"))
        return self._config_path

    def read_text(self) -> str:
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")

    def _read_file(self) -> dict[str, Any]:
        if not self._config_path.exists():
            return {}
        try:
            raw = yaml.safe_load(self._config_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Failed to read {self._config_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"{self._config_path} must contain a mapping at the top level.")
        return raw

    def _write_file(self, data: Mapping[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        self._config_path.write_text(
            _CONFIG_HEADER
            + f"# Last updated: {stamp}\n"
            + yaml.safe_dump(dict(data), sort_keys=False),
            encoding="utf-8",
        )


def _env_layer(env: Mapping[str, str]) -> dict[str, Any]:
    return env_overrides(env)


def assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign ``value`` into ``target`` following ``path``, creating mappings as needed."""
    current = target
    for segment in path[:-1]:
        existing = current.get(segment)
        if not isinstance(existing, dict):
            existing = {}
            current[segment] = existing
        current = existing
    current[path[-1]] = value


__all__ = [
    "ConfigError",
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "ENV_PREFIX",
    "FdedupeConfig",
    "LOCAL_CONFIG_NAME",
    "LoggingSettings",
    "PatternError",
    "RemoveSettings",
    "ScanSettings",
    "assign_nested",
    "env_overrides",
    "flatten_for_env",
    "locate_config",
    "resolve_with_precedence",
]
