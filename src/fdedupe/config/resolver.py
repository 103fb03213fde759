"""Layered configuration resolution.

Sources apply in the order defaults < file < environment < CLI. Each layer is
validated as soon as it is merged, so a bad value is reported against the
source that introduced it rather than against the final merge.
"""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import FdedupeConfig

ENV_PREFIX = "FDEDUPE__"


def resolve_with_precedence(
    *,
    defaults: FdedupeConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> FdedupeConfig:
    """Merge configuration sources and return the validated result.

    Args:
        defaults: Baseline configuration.
        file_overrides: Nested mapping loaded from the YAML file.
        env_overrides: Mapping produced by :func:`env_overrides`.
        cli_overrides: Dotted-key mapping supplied by CLI flags.

    Raises:
        ConfigError: If a layer is malformed or yields invalid values.
    """
    merged = defaults.model_dump(mode="python")
    resolved = defaults.model_copy(deep=True)
    for name, source in (
        ("file", file_overrides),
        ("environment", env_overrides),
        ("cli", cli_overrides),
    ):
        if source is None:
            continue
        merged = _deep_merge(merged, _normalize_mapping(source, source_name=name))
        try:
            resolved = FdedupeConfig.model_validate(merged)
        except ValidationError as exc:
            raise ConfigError(
                f"Invalid configuration values from {name}: {_describe(exc)}"
            ) from exc
    return resolved


def env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Return dotted-key overrides for every ``FDEDUPE__SECTION__KEY`` variable.

    Values are parsed as YAML so ``true`` and ``[a, b]`` keep their types;
    text that is not valid YAML (a bare ``*.tmp`` glob, for example) is kept
    verbatim.
    """
    overrides: dict[str, Any] = {}
    for key, raw_value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        segments = [segment.lower() for segment in key[len(ENV_PREFIX) :].split("__") if segment]
        if not segments:
            continue
        try:
            value = yaml.safe_load(raw_value)
        except yaml.YAMLError:
            value = raw_value
        overrides[".".join(segments)] = value
    return overrides


def flatten_for_env(config: FdedupeConfig) -> Dict[str, str]:
    """Render ``config`` as the environment variables that would reproduce it."""
    flat: Dict[str, str] = {}

    def _recurse(prefix: list[str], value: Any) -> None:
        if isinstance(value, dict):
            for key, child in value.items():
                _recurse(prefix + [str(key)], child)
            return
        flat[ENV_PREFIX + "__".join(part.upper() for part in prefix)] = _render(value)

    _recurse([], config.model_dump(mode="python"))
    return flat


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, list):
        return yaml.safe_dump(value, default_flow_style=True).strip()
    return str(value)


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'config'}: {error['msg']}"
        for error in exc.errors()
    )


def _normalize_mapping(source: Mapping[str, Any], *, source_name: str) -> dict[str, Any]:
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")

    result: dict[str, Any] = {}
    for key, value in source.items():
        if not isinstance(key, str):
            raise ConfigError(f"{source_name.capitalize()} override keys must be strings.")
        _assign(result, key.split("."), value, source_name=source_name)
    return result


def _assign(target: dict[str, Any], path: list[str], value: Any, *, source_name: str) -> None:
    node = target
    for segment in path[:-1]:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise ConfigError(
                f"{source_name.capitalize()} override for {'.'.join(path)} "
                "conflicts with an existing value."
            )
        node = child
    if isinstance(value, MappingABC):
        existing = node.get(path[-1])
        nested = _normalize_mapping(value, source_name=source_name)
        node[path[-1]] = _deep_merge(existing if isinstance(existing, dict) else {}, nested)
    else:
        node[path[-1]] = value


def _deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = deepcopy(dict(base))
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, MappingABC) and isinstance(current, MappingABC):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = ["ENV_PREFIX", "env_overrides", "flatten_for_env", "resolve_with_precedence"]
