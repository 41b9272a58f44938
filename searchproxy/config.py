"""
SearchProxy Configuration Management
=====================================
Handles config loading, environment overrides, and platform-specific paths.
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml
from platformdirs import user_config_dir, user_data_dir

from searchproxy.core.recognizers import DEFAULT_DIALECTS

APP_NAME = "searchproxy"

# ── paths ────────────────────────────────────────────────────────────────────

CONFIG_DIR = Path(user_config_dir(APP_NAME))
DATA_DIR = Path(user_data_dir(APP_NAME))
CONFIG_FILE = CONFIG_DIR / "config.yaml"
QUERIES_FILE = DATA_DIR / "queries.jsonl"


def ensure_dirs() -> None:
    """Create all required directories."""
    for d in (CONFIG_DIR, DATA_DIR):
        d.mkdir(parents=True, exist_ok=True)


# ── default config ───────────────────────────────────────────────────────────

DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {
        "host": "127.0.0.1",
        "port": 8080,
        "upstream_timeout": 30.0,
        "include_traceback": False,
    },
    "store": {
        "backend": "mongodb",
        "host": "127.0.0.1",
        "port": 27017,
        "database": "HttpProxyQueries",
        "collection": "queries",
        "path": "",
        "await_writes": False,
    },
    "logging": {
        "level": "INFO",
    },
    "dialects": DEFAULT_DIALECTS,
}

STORE_BACKENDS = ("mongodb", "jsonl")


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8080
    upstream_timeout: float = 30.0
    include_traceback: bool = False


@dataclass
class StoreConfig:
    backend: str = "mongodb"
    host: str = "127.0.0.1"
    port: int = 27017
    database: str = "HttpProxyQueries"
    collection: str = "queries"
    path: str = ""  # jsonl backend; empty means QUERIES_FILE
    await_writes: bool = False


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class SearchProxyConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    dialects: List[Dict[str, str]] = field(default_factory=lambda: copy.deepcopy(DEFAULT_DIALECTS))


def load_config(path: Path = None) -> SearchProxyConfig:
    """Load configuration from disk, env vars, and defaults."""
    ensure_dirs()
    config_file = path or CONFIG_FILE
    raw: Dict[str, Any] = {}

    if config_file.exists():
        with open(config_file) as f:
            raw = yaml.safe_load(f) or {}

    # Merge with defaults
    merged = _deep_merge(copy.deepcopy(DEFAULT_CONFIG), raw)

    # Env-var overrides
    if os.environ.get("SEARCHPROXY_HOST"):
        merged["server"]["host"] = os.environ["SEARCHPROXY_HOST"]
    if os.environ.get("SEARCHPROXY_PORT"):
        merged["server"]["port"] = int(os.environ["SEARCHPROXY_PORT"])
    if os.environ.get("SEARCHPROXY_STORE"):
        merged["store"]["backend"] = os.environ["SEARCHPROXY_STORE"]
    if os.environ.get("SEARCHPROXY_MONGO_HOST"):
        merged["store"]["host"] = os.environ["SEARCHPROXY_MONGO_HOST"]
    if os.environ.get("SEARCHPROXY_MONGO_PORT"):
        merged["store"]["port"] = int(os.environ["SEARCHPROXY_MONGO_PORT"])
    if os.environ.get("SEARCHPROXY_LOG_LEVEL"):
        merged["logging"]["level"] = os.environ["SEARCHPROXY_LOG_LEVEL"]

    if merged["store"]["backend"] not in STORE_BACKENDS:
        raise ValueError(
            f"Unknown store backend '{merged['store']['backend']}' "
            f"(expected one of: {', '.join(STORE_BACKENDS)})"
        )

    cfg = SearchProxyConfig(
        server=ServerConfig(**merged.get("server", {})),
        store=StoreConfig(**merged.get("store", {})),
        logging=LoggingConfig(**merged.get("logging", {})),
        dialects=list(merged.get("dialects") or []),
    )
    return cfg


def save_config(cfg: SearchProxyConfig, path: Path = None) -> Path:
    """Persist current configuration to disk."""
    ensure_dirs()
    config_file = path or CONFIG_FILE
    data = {
        "server": {
            "host": cfg.server.host,
            "port": cfg.server.port,
            "upstream_timeout": cfg.server.upstream_timeout,
            "include_traceback": cfg.server.include_traceback,
        },
        "store": {
            "backend": cfg.store.backend,
            "host": cfg.store.host,
            "port": cfg.store.port,
            "database": cfg.store.database,
            "collection": cfg.store.collection,
            "path": cfg.store.path,
            "await_writes": cfg.store.await_writes,
        },
        "logging": {
            "level": cfg.logging.level,
        },
        "dialects": cfg.dialects,
    }
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    return config_file


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result
