"""
TOML-based configuration for the TCK harness.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from tck_core.config import load_config
    cfg = load_config("tck.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class RPCConfig:
    """JSON-RPC backend under test."""
    url: str = "http://localhost:8544"
    timeout_seconds: float = 30.0


@dataclass
class MirrorConfig:
    """Mirror-node REST endpoint (eventually consistent)."""
    rest_url: str = "http://localhost:5551"
    timeout_seconds: float = 10.0


@dataclass
class ConsistencyConfig:
    """Polling budget for cross-source assertions."""
    max_attempts: int = 10
    interval_seconds: float = 1.0


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class TCKConfig:
    """Top-level configuration container."""
    rpc: RPCConfig = field(default_factory=RPCConfig)
    mirror: MirrorConfig = field(default_factory=MirrorConfig)
    consistency: ConsistencyConfig = field(default_factory=ConsistencyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> TCKConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        TCK_JSON_RPC_URL          -> rpc.url        (fallback: JSON_RPC_SERVER_URL)
        TCK_RPC_TIMEOUT           -> rpc.timeout_seconds
        TCK_MIRROR_REST_URL       -> mirror.rest_url (fallback: MIRROR_NODE_REST_URL)
        TCK_MIRROR_TIMEOUT        -> mirror.timeout_seconds
        TCK_CONSISTENCY_ATTEMPTS  -> consistency.max_attempts
        TCK_CONSISTENCY_INTERVAL  -> consistency.interval_seconds
        TCK_LOG_LEVEL             -> logging.level
        TCK_LOG_FMT               -> logging.format
    """
    cfg = TCKConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("rpc", cfg.rpc),
                ("mirror", cfg.mirror),
                ("consistency", cfg.consistency),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("TCK_JSON_RPC_URL") or os.environ.get("JSON_RPC_SERVER_URL"):
        cfg.rpc.url = v
    if v := os.environ.get("TCK_RPC_TIMEOUT"):
        cfg.rpc.timeout_seconds = float(v)
    if v := os.environ.get("TCK_MIRROR_REST_URL") or os.environ.get("MIRROR_NODE_REST_URL"):
        cfg.mirror.rest_url = v
    if v := os.environ.get("TCK_MIRROR_TIMEOUT"):
        cfg.mirror.timeout_seconds = float(v)
    if v := os.environ.get("TCK_CONSISTENCY_ATTEMPTS"):
        cfg.consistency.max_attempts = int(v)
    if v := os.environ.get("TCK_CONSISTENCY_INTERVAL"):
        cfg.consistency.interval_seconds = float(v)
    if v := os.environ.get("TCK_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("TCK_LOG_FMT"):
        cfg.logging.format = v

    return cfg
