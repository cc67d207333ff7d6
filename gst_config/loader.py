"""
Configuration Loader (``gst_config.loader``).

Reads an engine configuration YAML file and parses it into an
``EngineConfig``.  The document may either hold the fields at top level or
nest them under an ``engine:`` key.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from gst_config.schema import EngineConfig
from gst_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed configuration document."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def load_engine_config(path: Path | str | None = None) -> EngineConfig:
    """
    Load an ``EngineConfig`` from ``path`` (the packaged default when None).

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: on unknown keys or invalid values.
    """
    path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    raw = load_yaml_file(path)
    data = raw.get("engine", raw)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: 'engine' must be a mapping")

    config = EngineConfig.from_dict(data)
    logger.info(
        "engine_config_loaded",
        extra={
            "path": str(path),
            "checksum": compute_checksum(data),
            "blocked_rule_count": len(config.blocked_credit_rules),
        },
    )
    return config
