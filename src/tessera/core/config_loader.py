"""Configuration file loading: JSONC parsing, env substitution, deep merge."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import commentjson

from ..util.log import Log
from .config import RuntimeConfig

log = Log.create({"service": "config.loader"})


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested dicts merge recursively."""
    result = base.copy()
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        elif isinstance(result.get(key), list) and isinstance(value, list) and key == "deniedTools":
            result[key] = list(dict.fromkeys([*result[key], *value]))
        else:
            result[key] = value
    return result


def substitute_env_vars(text: str) -> str:
    """Replace ``{env:VAR}`` patterns with environment variable values."""
    def replacer(match: re.Match[str]) -> str:
        return os.environ.get(match.group(1), "")

    return re.sub(r"\{env:([^}]+)\}", replacer, text)


def load_json_file(filepath: str) -> Dict[str, Any]:
    """Load a JSON or JSONC file, returning ``{}`` when missing or unreadable."""
    path = Path(filepath)
    if not path.exists():
        return {}

    try:
        data = commentjson.loads(substitute_env_vars(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, UnicodeDecodeError) as e:
        log.error("failed to load config file", {"path": filepath, "error": str(e)})
        return {}
    if not isinstance(data, dict):
        log.warn("config file is not an object", {"path": filepath})
        return {}
    return data


def load_config(
    paths: Iterable[str] = (),
    overrides: Optional[Dict[str, Any]] = None,
) -> RuntimeConfig:
    """Load and merge config files in order, then apply ``overrides``.

    Later files win. Validation errors from pydantic propagate to the caller.
    """
    merged: Dict[str, Any] = {}
    for filepath in paths:
        data = load_json_file(filepath)
        if data:
            log.info("loaded config", {"path": filepath})
            merged = deep_merge(merged, data)
    if overrides:
        merged = deep_merge(merged, overrides)
    return RuntimeConfig.model_validate(merged)
