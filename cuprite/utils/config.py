# cuprite/utils/config.py
"""
Minimal config loader with caching and gentle fallbacks.

- Reads ./config.yaml if present.
- Merges environment overrides (currently: logging.level).
- Returns a plain dict so callers can do .get(...) safely.
- Exposes reload_config() for tests.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

# Plain stdlib logger: setup_logger reads this module while configuring.
logger = logging.getLogger(__name__)

_CONFIG_CACHE: Dict[str, Any] | None = None


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        logger.error("Failed to parse %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    # logging.level (used by setup_logger)
    env_level = os.environ.get("CUPRITE_LOG_LEVEL")
    if env_level:
        logging_cfg = dict(cfg.get("logging") or {})
        logging_cfg["level"] = env_level
        cfg["logging"] = logging_cfg
    return cfg


def get_config() -> Dict[str, Any]:
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE

    cfg = _read_yaml(Path("config.yaml"))
    cfg = _apply_env_overrides(cfg)
    _CONFIG_CACHE = cfg
    return _CONFIG_CACHE


def reload_config() -> Dict[str, Any]:
    """Clear cache and reload (primarily for tests)."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = None
    return get_config()
