"""
Configuration loader with mtime-based Hot-Reload.
src/lib/config_loader.py

Loads server configuration (.yaml) from the src/config/ directory.
Caches by file mtime and reloads when the file is modified. Missing keys
fall back to built-in defaults.
"""

import copy
import os
import yaml
import logging

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# Cache storage
# ─────────────────────────────────────────────────────────────────────────────

_cache = {}  # key → { "mtime": float, "data": any }

_CONFIG_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config")


def _get_path(*parts):
    return os.path.join(_CONFIG_DIR, *parts)


def _load_yaml_with_cache(filepath):
    """Read and parse YAML file if mtime changed."""
    if not os.path.exists(filepath):
        logger.error(f"[ConfigLoader] File not found: {filepath}")
        return None

    mtime = os.path.getmtime(filepath)
    cached = _cache.get(filepath)

    if cached and cached["mtime"] == mtime:
        return cached["data"]

    with open(filepath, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    basename = os.path.basename(filepath)
    if cached:
        logger.info(f"[ConfigLoader] Reloaded: {basename}")
    else:
        logger.info(f"[ConfigLoader] Loaded: {basename}")

    _cache[filepath] = {"mtime": mtime, "data": data}
    return data


def _merge(defaults, overrides):
    """Recursively overlay overrides onto a copy of defaults."""
    result = copy.deepcopy(defaults)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────

def load_server_config(filepath=None):
    """
    Load server configuration from src/config/server_config.yaml
    (or the given path).

    Returns dict with keys: http, serial, storage, playback.
    """
    if filepath is None:
        filepath = _get_path("server_config.yaml")

    data = _load_yaml_with_cache(filepath)
    if not data:
        logger.error("[ConfigLoader] Failed to load server config, using defaults")
        return _default_server_config()
    return _merge(_default_server_config(), data)


def _default_server_config():
    """Fallback defaults if config file is missing."""
    return {
        "http": {
            "host": "0.0.0.0",
            "port": 3001,
            "cors_origin": "http://localhost:3000",
            "static_dir": "public",
        },
        "serial": {
            "port": None,  # None = auto-discover
            "baudrate": 9600,
            "read_timeout_sec": 1.0,
        },
        "storage": {
            "sequences_file": "sequences.json",
            "export_file": "sequences.txt",
            "import_file": "imported_moves.txt",
        },
        "playback": {
            "home_settle_ms": 2000,
            "delay_per_speed_unit_ms": 50,
            "min_group_delay_ms": 50,
            "import_line_delay_ms": 1000,
        },
    }
