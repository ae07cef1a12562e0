"""Configuration resolver — locate the source tree, target tree and vault.

Values come from a YAML file, then ``PATCHVAULT_*`` environment variables,
then explicit overrides, each layer replacing the one before it. The three
locations are mandatory; resolution fails before any command runs if one
is undefined.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import yaml

from patchvault.errors import ConfigError, ConfigMissing

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path.home() / ".patchvault.yaml"
CONFIG_ENV = "PATCHVAULT_CONFIG"

REQUIRED_KEYS = ("source", "target", "vault")
TARGET_VCS_CHOICES = ("git", "svn")

# Environment variable -> config key
ENV_KEYS = {
    "PATCHVAULT_SOURCE": "source",
    "PATCHVAULT_TARGET": "target",
    "PATCHVAULT_VAULT": "vault",
    "PATCHVAULT_TARGET_VCS": "target_vcs",
}


@dataclass(frozen=True)
class Config:
    """Resolved locations and tool settings for one invocation."""

    source: Path
    target: Path
    vault: Path
    target_vcs: str = "git"
    patch_command: str = "patch"
    strip: int = 1


def load_config(
    config_file: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides,
) -> Config:
    """Resolve the configuration for this invocation.

    Args:
        config_file: Explicit YAML file. When omitted, ``$PATCHVAULT_CONFIG``
            is used, then ``~/.patchvault.yaml`` if it exists.
        environ: Environment mapping (defaults to ``os.environ``).
        **overrides: Highest-precedence values; ``None`` values are ignored.

    Raises:
        ConfigMissing: If source, target or vault is undefined.
        ConfigError: If the file is unreadable or a setting is invalid.
    """
    env = os.environ if environ is None else environ
    values: dict = {}

    path = _find_config_file(config_file, env)
    if path is not None:
        values.update(_read_config_file(path))

    for var, key in ENV_KEYS.items():
        if env.get(var):
            values[key] = env[var]

    values.update({k: v for k, v in overrides.items() if v is not None})

    missing = [key for key in REQUIRED_KEYS if not values.get(key)]
    if missing:
        raise ConfigMissing(missing)

    target_vcs = str(values.get("target_vcs", "git")).lower()
    if target_vcs not in TARGET_VCS_CHOICES:
        raise ConfigError(
            f"Unknown target_vcs '{target_vcs}' (expected one of: "
            + ", ".join(TARGET_VCS_CHOICES) + ")"
        )

    try:
        strip = int(values.get("strip", 1))
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid strip level: {values.get('strip')!r}")

    config = Config(
        source=_as_path(values["source"]),
        target=_as_path(values["target"]),
        vault=_as_path(values["vault"]),
        target_vcs=target_vcs,
        patch_command=str(values.get("patch_command", "patch")),
        strip=strip,
    )
    logger.debug("Resolved configuration: %s", config)
    return config


def _find_config_file(
    config_file: str | Path | None, env: Mapping[str, str]
) -> Path | None:
    if config_file:
        path = Path(config_file).expanduser()
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        return path
    if env.get(CONFIG_ENV):
        path = Path(env[CONFIG_ENV]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path} (from {CONFIG_ENV})")
        return path
    if DEFAULT_CONFIG_FILE.is_file():
        return DEFAULT_CONFIG_FILE
    return None


def _read_config_file(path: Path) -> dict:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    logger.debug("Loaded config file %s", path)
    return data


def _as_path(value) -> Path:
    return Path(str(value)).expanduser()
