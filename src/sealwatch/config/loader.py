# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from .models import SealwatchConfig

log = logging.getLogger("sealwatch")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_overrides_file(config_path: Path) -> Path | None:
    """
    Locate an overrides file using this priority:

    1. SEALWATCH_OVERRIDES_FILE environment variable (explicit override)
    2. overrides.yaml in the same directory as the config
    """
    env = os.environ.get("SEALWATCH_OVERRIDES_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("SEALWATCH_OVERRIDES_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "overrides.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping in {path}, got {type(data).__name__}")
    return data


def load_config(path: str | Path) -> SealwatchConfig:
    """
    Load and validate a sealwatch YAML config.

    Host-specific values (addresses, key paths) can be layered on top in two
    ways, usable together:

    **Overrides file**
        A YAML file mirroring the config structure, deep-merged into the
        config dict before Pydantic validation.  Discovery order:
          1. ``SEALWATCH_OVERRIDES_FILE`` env var → explicit path
          2. ``overrides.yaml`` next to the config file

    **Environment variables**
        ``${ENV_VAR}`` placeholders inside either file are resolved at load
        time by ``os.path.expandvars``.
    """
    path = Path(path)
    data = _load_yaml(path)

    overrides_path = _find_overrides_file(path)
    if overrides_path:
        log.debug("Merging overrides from %s", overrides_path)
        _deep_merge(data, _load_yaml(overrides_path))
    else:
        log.debug("No overrides file found, using %s as-is", path)

    return SealwatchConfig.model_validate(data)
