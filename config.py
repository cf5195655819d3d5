from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

"""Config loader and validator.

Provides `load_config` which accepts either a path to a YAML file,
a dictionary or None and returns a normalized configuration dict
using DEFAULTS for missing values.
"""


DEFAULTS: dict[str, Any] = {
    "minify": False,
    "direct_start": False,
    "start_super_speed": False,
    "enable_breakpoints": False,
    "ascii_view": False,
    "tape_cells": 32000,
    "speed": 0,
    "step_limit": 10_000_000,
    "lenient_log": False,
}

# names used by the web front-end
ALIASES: dict[str, str] = {
    "directStart": "direct_start",
    "startSuperSpeed": "start_super_speed",
    "enableBreakpoints": "enable_breakpoints",
    "asciiView": "ascii_view",
}

_BOOL_KEYS = ("minify", "direct_start", "start_super_speed", "enable_breakpoints", "ascii_view", "lenient_log")


class ConfigError(ValueError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def _apply_aliases(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of `data` with camelCase aliases renamed."""
    out: dict[str, Any] = {}
    for k, v in data.items():
        out[ALIASES.get(k, k)] = v
    return out


def _to_bool(key: str, v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, int):
        return v != 0
    if isinstance(v, str) and v.strip().lower() in ("true", "yes", "on", "1"):
        return True
    if isinstance(v, str) and v.strip().lower() in ("false", "no", "off", "0", ""):
        return False
    msg = f"{key} must be boolean, got {v!r}"
    raise ConfigError(msg)


def _convert_types(cfg: dict[str, Any]) -> None:
    """Normalize types for configuration values in-place.

    Raises ConfigError on conversion failure.
    """
    for key in _BOOL_KEYS:
        cfg[key] = _to_bool(key, cfg.get(key, DEFAULTS[key]))

    try:
        cfg["tape_cells"] = int(cfg.get("tape_cells", DEFAULTS["tape_cells"]))

        speed = cfg.get("speed")
        cfg["speed"] = int(DEFAULTS["speed"] if speed is None else speed)

        sl = cfg.get("step_limit", DEFAULTS["step_limit"])
        cfg["step_limit"] = int(sl)
    except (TypeError, ValueError) as e:
        msg = f"Bad types in config: {e}"
        raise ConfigError(msg) from e


def _validate_cfg(cfg: dict[str, Any]) -> None:
    """Perform semantic validation on normalized config dict.

    Raises ConfigError on invalid values.
    """
    if cfg["tape_cells"] <= 0:
        msg = "tape_cells must be positive"
        raise ConfigError(msg)

    if not (0 <= cfg["speed"] <= 100):
        msg = f"speed ({cfg['speed']}) out of range (0..100)"
        raise ConfigError(msg)

    if cfg["step_limit"] <= 0:
        msg = "step_limit must be positive"
        raise ConfigError(msg)


def load_config(path_or_dict: str | Path | dict[str, Any] | None = None) -> dict[str, Any]:
    """Load and normalize configuration.

    Accepts:
      - None -> returns DEFAULTS copy
      - dict -> overlay DEFAULTS with provided dict
      - str or Path -> load YAML and overlay DEFAULTS

    Returns a normalized dict or raises ConfigError.
    """
    if path_or_dict is None:
        cfg: dict[str, Any] = dict(DEFAULTS)
    elif isinstance(path_or_dict, dict):
        cfg = dict(DEFAULTS)
        cfg.update(_apply_aliases(path_or_dict))
    elif isinstance(path_or_dict, (str, Path)):
        p = Path(path_or_dict)
        if not p.exists():
            msg = f"Config file not found: {path_or_dict}"
            raise ConfigError(msg)
        try:
            with p.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            msg = f"Failed to load config file {path_or_dict}: {e}"
            raise ConfigError(msg) from e
        if not isinstance(data, dict):
            msg = f"Config file {path_or_dict} does not contain a mapping"
            raise ConfigError(msg)
        cfg = dict(DEFAULTS)
        cfg.update(_apply_aliases(data))
    else:
        msg = "Unsupported config input"
        raise ConfigError(msg)

    # convert types and validate semantics
    _convert_types(cfg)
    _validate_cfg(cfg)

    return cfg
