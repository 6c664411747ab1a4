"""
Unified configuration loader for the consent ledger.

Loads config.yaml and turns its sections into validated settings for the
ledger, logging and the demo bootstrap network.

Precedence (lowest to highest):
    1. Hardcoded Python fallbacks (always present)
    2. config.yaml sections
    3. Environment variables CONSENT_LEDGER_* (container-level overrides)
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from core.exceptions import ConfigurationError
from core.models import LedgerConfig, LoggingConfig


_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

_cached_config: Optional[Dict] = None


def _parse_bool(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


# Environment overrides: env var -> (section key, converter)
_LEDGER_ENV_MAPPING = {
    "CONSENT_LEDGER_DEFAULT_DURATION_DAYS": ("default_duration_days", int),
    "CONSENT_LEDGER_MAX_DURATION_DAYS": ("max_duration_days", int),
    "CONSENT_LEDGER_HASH_ALGORITHM": ("hash_algorithm", str),
    "CONSENT_LEDGER_SUPERSEDE_ON_APPROVE": ("supersede_on_approve", _parse_bool),
}

_LOGGING_ENV_MAPPING = {
    "CONSENT_LEDGER_LOG_LEVEL": ("level", str),
    "CONSENT_LEDGER_LOG_FORMAT": ("format", str),
    "CONSENT_LEDGER_LOG_FILE": ("file", str),
}


def _find_config_file() -> Optional[Path]:
    """Find config.yaml: $CONSENT_LEDGER_CONFIG, ./config/config.yaml, packaged default."""
    search_paths = [
        os.environ.get("CONSENT_LEDGER_CONFIG", ""),
        "config/config.yaml",
        str(_DEFAULT_CONFIG_PATH),
    ]
    for path_str in search_paths:
        if not path_str:
            continue
        p = Path(path_str)
        if p.is_file():
            return p
    return None


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load and cache the full config.yaml.

    Args:
        config_path: Optional explicit path. If None, uses search order.

    Returns:
        Full parsed YAML dict. Returns empty dict if no config found.

    Raises:
        ConfigurationError: If the file is not valid YAML.
    """
    global _cached_config

    if _cached_config is not None and config_path is None:
        return _cached_config

    if config_path:
        p = Path(config_path)
    else:
        p = _find_config_file()

    if p is None or not p.is_file():
        _cached_config = {}
        return _cached_config

    try:
        with open(p, "r", encoding="utf-8") as f:
            _cached_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {p}: {e}")

    return _cached_config


def reload_config():
    """Force reload of config (clears cache)."""
    global _cached_config
    _cached_config = None


def get_full_config() -> Dict[str, Any]:
    """Return the complete parsed config.yaml as a nested dict."""
    return load_config()


def _apply_env_overrides(
    values: Dict[str, Any], mapping: Dict[str, tuple]
) -> Dict[str, Any]:
    for env_var, (key, converter) in mapping.items():
        val = os.environ.get(env_var)
        if val is None:
            continue
        try:
            values[key] = converter(val)
        except (ValueError, TypeError):
            raise ConfigurationError(
                f"Invalid value for {env_var}: {val!r}", config_key=key
            )
    return values


def get_ledger_config(config_path: Optional[str] = None) -> LedgerConfig:
    """
    Build the ledger settings from defaults, config.yaml and environment.

    Raises:
        ConfigurationError: If a value fails validation.
    """
    cfg = load_config(config_path)
    values = dict(cfg.get("ledger") or {})
    values = _apply_env_overrides(values, _LEDGER_ENV_MAPPING)
    try:
        return LedgerConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid ledger configuration: {e}", config_key="ledger")


def get_logging_config(config_path: Optional[str] = None) -> LoggingConfig:
    """
    Build the logging settings from defaults, config.yaml and environment.

    Raises:
        ConfigurationError: If a value fails validation.
    """
    cfg = load_config(config_path)
    values = dict(cfg.get("logging") or {})
    values = _apply_env_overrides(values, _LOGGING_ENV_MAPPING)
    try:
        return LoggingConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid logging configuration: {e}", config_key="logging")


def get_bootstrap_data(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Get the demo network (identities and off-ledger records).

    Returns:
        Dict with 'identities' and 'records' lists (possibly empty).
    """
    cfg = load_config(config_path)
    bootstrap = cfg.get("bootstrap") or {}
    return {
        "identities": list(bootstrap.get("identities") or []),
        "records": list(bootstrap.get("records") or []),
    }
