"""
Engine configuration.

The single public entry point for runtime config is ``get_engine_config()``.
It loads the packaged default set, or the file named by the
``GST_ENGINE_CONFIG`` environment variable, once per process.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

from gst_config.loader import DEFAULT_CONFIG_PATH, load_engine_config
from gst_config.schema import EngineConfig

_ENV_VAR = "GST_ENGINE_CONFIG"

_cached: EngineConfig | None = None
_cache_lock = threading.Lock()


def get_engine_config(path: Path | str | None = None) -> EngineConfig:
    """Return the active engine configuration; an explicit path bypasses the cache."""
    global _cached
    if path is not None:
        return load_engine_config(path)
    with _cache_lock:
        if _cached is None:
            _cached = load_engine_config(os.environ.get(_ENV_VAR) or DEFAULT_CONFIG_PATH)
        return _cached


def clear_config_cache() -> None:
    """Drop the cached configuration. FOR TESTING ONLY."""
    global _cached
    with _cache_lock:
        _cached = None


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "EngineConfig",
    "clear_config_cache",
    "get_engine_config",
    "load_engine_config",
]
