"""
Run Status — Environment Config Loader

Three-tier configuration loading:
  1. Base file (runstatus.yaml, optional)
  2. Per-environment overlay files ({RS_CONFIG_DIR}/{RS_ENV}.yaml merged over base)
  3. Environment variable overrides (RS_ prefixed, "__" separates sections)

Usage:
    from infra.config import load_config, Settings

    cfg = load_config(base_path="runstatus.yaml", env="prod")
    settings = Settings.from_config(cfg)

Environment variables:
    RS_ENV                       — active profile (dev, staging, prod)
    RS_CONFIG_DIR                — directory for overlay files (default: config/)
    RS_AGGREGATOR__NAMESPACE=ns  — {"aggregator": {"namespace": "ns"}}
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("runstatus.config")

ENV_PREFIX = "RS_"
_META_VARS = {"RS_ENV", "RS_CONFIG_DIR", "RS_VERSION"}


# ═══════════════════════════════════════════════════════════════════
# Deep Merge
# ═══════════════════════════════════════════════════════════════════

def deep_merge(base: dict, overlay: dict) -> dict:
    """
    Deep-merge overlay into base. Overlay values win.
    Lists are replaced (not appended). Dicts are recursed.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _set_nested(d: dict, keys: list[str], value: Any):
    """Set a nested dict value from a list of keys."""
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    d[keys[-1]] = value


# ═══════════════════════════════════════════════════════════════════
# Overlay Files
# ═══════════════════════════════════════════════════════════════════

def _load_overlay_file(
    base_path: str,
    env: str = "",
    config_dir: str = "",
) -> dict[str, Any]:
    """
    Load per-environment overlay file.
    Looks for {config_dir}/{env}.yaml, then config/{env}.yaml beside the base file.
    Returns empty dict if not found.
    """
    env = env or os.environ.get("RS_ENV", "")
    if not env:
        return {}

    config_dir = config_dir or os.environ.get("RS_CONFIG_DIR", "config")

    candidates = [
        Path(config_dir) / f"{env}.yaml",
        Path(config_dir) / f"{env}.yml",
        Path(os.path.dirname(base_path)) / "config" / f"{env}.yaml",
    ]

    for path in candidates:
        if path.exists():
            try:
                with open(path) as f:
                    overlay = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                logger.warning("Failed to load overlay %s: %s", path, e)
                continue
            logger.info("Loaded config overlay: %s (%d keys)", path, len(overlay))
            return overlay

    logger.debug("No config overlay found for env=%s", env)
    return {}


# ═══════════════════════════════════════════════════════════════════
# Environment Variable Overrides
# ═══════════════════════════════════════════════════════════════════

def _load_env_overrides(prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """
    Load RS_ prefixed environment variables as config overrides.

    Naming convention:
      RS_SECTION__KEY=value → {"section": {"key": value}}
      RS_LOG_LEVEL=DEBUG    → {"log_level": "DEBUG"}

    Values are parsed as YAML scalars (numbers, booleans, lists).
    """
    overrides: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key in _META_VARS:
            continue

        path = [part for part in key[len(prefix):].lower().split("__") if part]
        if not path:
            continue

        try:
            parsed = yaml.safe_load(value)
        except yaml.YAMLError:
            parsed = value

        _set_nested(overrides, path, parsed)

    if overrides:
        logger.debug("Loaded %d env var overrides", len(overrides))
    return overrides


# ═══════════════════════════════════════════════════════════════════
# Main Loader
# ═══════════════════════════════════════════════════════════════════

def load_config(
    base_path: str = "runstatus.yaml",
    env: str = "",
    config_dir: str = "",
    include_env_vars: bool = True,
) -> dict[str, Any]:
    """
    Load configuration with three-tier merging.

    Priority (highest wins):
      1. Environment variable overrides (RS_*)
      2. Per-environment overlay file (config/{env}.yaml)
      3. Base config file (runstatus.yaml)
    """
    config: dict[str, Any] = {}
    if os.path.exists(base_path):
        with open(base_path) as f:
            config = yaml.safe_load(f) or {}
        logger.debug("Loaded base config: %s", base_path)

    overlay = _load_overlay_file(base_path, env=env, config_dir=config_dir)
    if overlay:
        config = deep_merge(config, overlay)

    if include_env_vars:
        env_overrides = _load_env_overrides()
        if env_overrides:
            config = deep_merge(config, env_overrides)

    config["_active_env"] = env or os.environ.get("RS_ENV", "default")
    config["_config_source"] = base_path
    return config


def get_config_value(
    path: str,
    config: dict[str, Any] | None = None,
    default: Any = None,
) -> Any:
    """
    Get a nested config value by dotted path.

    Example:
        get_config_value("aggregator.publish_interval", cfg, 5.0)
    """
    if config is None:
        config = load_config()

    current = config
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return default
    return current


# ═══════════════════════════════════════════════════════════════════
# Typed Settings
# ═══════════════════════════════════════════════════════════════════

@dataclass
class Settings:
    """Resolved aggregator settings."""
    namespace: str = "runstatus"
    annotation_key: str = "runstatus.io/status"
    label_selector: str = "run=runstatus-aggregator"
    default_target: str = "runstatus"
    policy: str = "running_first"
    reject_duplicates: bool = False
    publish_interval: float = 5.0

    api_server: str = ""
    token_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/token"
    ca_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"
    http_timeout: float = 10.0

    log_level: str = "INFO"

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> Settings:
        defaults = cls()
        agg = config.get("aggregator", {}) or {}
        kube = config.get("kube", {}) or {}
        return cls(
            namespace=str(agg.get("namespace", defaults.namespace)),
            annotation_key=str(agg.get("annotation_key", defaults.annotation_key)),
            label_selector=str(agg.get("label_selector", defaults.label_selector)),
            default_target=str(agg.get("default_target", defaults.default_target)),
            policy=str(agg.get("policy", defaults.policy)),
            reject_duplicates=bool(agg.get("reject_duplicates", defaults.reject_duplicates)),
            publish_interval=float(agg.get("publish_interval", defaults.publish_interval)),
            api_server=str(kube.get("api_server", defaults.api_server) or ""),
            token_path=str(kube.get("token_path", defaults.token_path)),
            ca_path=str(kube.get("ca_path", defaults.ca_path)),
            http_timeout=float(kube.get("timeout", defaults.http_timeout)),
            log_level=str(config.get("log_level", defaults.log_level)),
        )
