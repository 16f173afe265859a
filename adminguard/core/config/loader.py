from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from adminguard.core.config.models import GuardConfig
from adminguard.core.errors import ConfigError

DEFAULT_CONFIG_PATH = os.path.join("config", "adminguard.json")


def _deep_merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in (over or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def read_config_file(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}", path=path) from e
    except OSError as e:
        raise ConfigError(f"{path} could not be read: {e}", path=path) from e
    if not isinstance(obj, dict):
        raise ConfigError(f"{path} invalid (not an object).", path=path)
    return obj


def build_config(raw: Optional[Dict[str, Any]] = None) -> GuardConfig:
    try:
        return GuardConfig.model_validate(raw or {})
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in e.errors()]
        raise ConfigError("Invalid adminguard configuration: " + "; ".join(errors), errors=errors) from e


def load_config(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> GuardConfig:
    """
    Loads the effective configuration.

    A missing file means defaults. ``overrides`` are deep-merged on top of the
    file contents before validation. Any problem raises ``ConfigError``.
    """
    raw = read_config_file(path or DEFAULT_CONFIG_PATH)
    if overrides:
        raw = _deep_merge(raw, overrides)
    return build_config(raw)
