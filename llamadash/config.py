"""
Config loader for llamadash.
Reads config.yaml once at startup and layers it over built-in defaults.
${ENV_VAR} references in string values are resolved from the environment
(after .env is loaded), so the API key never has to live in the file.
"""

import copy
import logging
import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(os.environ.get("LLAMADASH_CONFIG", Path.cwd() / "config.yaml"))

DEFAULT_CONFIG: dict = {
    "server": {
        "url": "http://localhost:8080",
        "api_key": "${LLAMADASH_API_KEY}",
        "timeout": 600,
    },
    "generation": {
        "max_tokens": 2048,
        "temperature": 0.7,
        "top_p": 0.9,
    },
    "wiretap": {
        "enabled": False,
        "path": "./data/wire.jsonl",
    },
    "logging": {
        "level": "WARNING",
        "file": None,
    },
}

_config: dict | None = None


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def _merge(base: dict, override: dict) -> dict:
    """Deep-merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None, required: bool = False) -> dict:
    """
    Load and cache config from YAML file.
    With required=False a missing file just yields the defaults.
    """
    global _config
    if _config is not None and path is None:
        return _config

    config_path = Path(path) if path else _CONFIG_PATH
    raw: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    elif required or path is not None:
        raise FileNotFoundError(f"Config not found: {config_path}")

    _config = _walk_and_resolve(_merge(DEFAULT_CONFIG, raw))
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def reset_config():
    """Forget the cached config so the next get_config() re-reads the file."""
    global _config
    _config = None


def setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {}) or {}
    level = getattr(logging, str(log_cfg.get("level") or "WARNING").upper(), logging.WARNING)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
