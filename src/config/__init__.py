"""
Configuration Module for schemabase.

This module provides configuration loading and management for schemabase.
Configuration is loaded from config.yml, and a few schema settings can be
overridden from the environment.

Environment Overrides:
    SCHEMA_DIR            schemas.directory
    DEFAULT_COLLECTION    schemas.default_collection
    REPLACE_CIRCULAR_REF  schemas.replace_circular_ref
    REPLACE_REF           replace every $ref using this policy
                          (sets schemas.replace_all_refs)

Usage:
    >>> from config import load_config, get_schema_settings
    >>> config = load_config()
    >>> settings = get_schema_settings(config)
    >>> settings.default_collection
    'entities'
"""
import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_DIR = "./schemas"
DEFAULT_COLLECTION = "entities"
DEFAULT_DATABASE = "./data/entities.db"
DEFAULT_BASE_URL = "http://localhost:5000"

_DEFAULT_CONFIG: Dict[str, Any] = {
    "schemas": {
        "directory": DEFAULT_SCHEMA_DIR,
        "default_collection": DEFAULT_COLLECTION,
        "replace_circular_ref": "object",
        "replace_all_refs": False,
        "strict_model_names": False,
        "max_workers": 8,
    },
    "storage": {
        "database": DEFAULT_DATABASE,
    },
    "server": {
        "base_url": DEFAULT_BASE_URL,
    },
    "cors": {
        "enabled": False,
        "origins": [],
    },
}


@dataclass(frozen=True)
class SchemaSettings:
    """Settings consumed by schema.SchemaLoader."""

    directory: str = DEFAULT_SCHEMA_DIR
    default_collection: str = DEFAULT_COLLECTION
    replace_circular_ref: str = "object"
    replace_all_refs: bool = False
    strict_model_names: bool = False
    max_workers: int = 8


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from config.yml file.

    Args:
        config_path: Path to config.yml file. If None, looks in current directory
                    and parent directories, then the project root.

    Returns:
        Dictionary containing configuration settings, merged over the defaults

    Example:
        >>> config = load_config()
        >>> config["schemas"]["default_collection"]
        'entities'
    """
    if config_path is None:
        # Try to find config.yml in current directory or parent directories
        current = Path.cwd()
        for parent in [current] + list(current.parents):
            candidate = parent / "config.yml"
            if candidate.exists():
                config_path = str(candidate)
                break

        # If still not found, check the project root (where this file is located)
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            candidate = project_root / "config.yml"
            if candidate.exists():
                config_path = str(candidate)

    if config_path is None:
        logger.warning("config.yml not found, using default configuration")
        return get_default_config()

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f)
            if config is None:
                config = {}
            if not isinstance(config, dict):
                logger.warning("Configuration root must be a mapping, using default configuration")
                return get_default_config()
            logger.info(f"Loaded configuration from {config_path}")
            return _merge(get_default_config(), config)
    except FileNotFoundError:
        logger.warning(f"Configuration file not found: {config_path}")
        return get_default_config()
    except yaml.YAMLError as e:
        logger.error(f"Error parsing configuration file: {e}")
        return get_default_config()


def get_default_config() -> Dict[str, Any]:
    """Return default configuration when config.yml is not available.

    Returns:
        Dictionary with default configuration values
    """
    return copy.deepcopy(_DEFAULT_CONFIG)


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            base[key] = _merge(base[key], value)
        else:
            base[key] = value
    return base


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def get_schema_settings(config: Mapping[str, Any],
                        environ: Optional[Mapping[str, str]] = None) -> SchemaSettings:
    """Build SchemaSettings from config, applying environment overrides.

    Args:
        config: Configuration dictionary from load_config()
        environ: Environment to read overrides from (defaults to os.environ)

    Returns:
        SchemaSettings instance
    """
    env = os.environ if environ is None else environ
    schemas = dict(config.get("schemas") or {})

    directory = env.get("SCHEMA_DIR") or schemas.get("directory") or DEFAULT_SCHEMA_DIR
    default_collection = (env.get("DEFAULT_COLLECTION")
                          or schemas.get("default_collection")
                          or DEFAULT_COLLECTION)
    policy = env.get("REPLACE_CIRCULAR_REF") or schemas.get("replace_circular_ref") or "object"
    replace_all = _as_bool(schemas.get("replace_all_refs", False))

    # REPLACE_REF names the policy to use for every reference
    if env.get("REPLACE_REF"):
        policy = env["REPLACE_REF"]
        replace_all = True

    try:
        max_workers = int(schemas.get("max_workers", 8))
    except (TypeError, ValueError):
        logger.warning(f"Invalid schemas.max_workers {schemas.get('max_workers')!r}; using 8")
        max_workers = 8

    return SchemaSettings(
        directory=str(directory),
        default_collection=str(default_collection),
        replace_circular_ref=str(policy).lower(),
        replace_all_refs=replace_all,
        strict_model_names=_as_bool(schemas.get("strict_model_names", False)),
        max_workers=max_workers,
    )


def get_database_path(config: Mapping[str, Any]) -> str:
    """Return the SQLite database path from config."""
    return str((config.get("storage") or {}).get("database") or DEFAULT_DATABASE)


def get_base_url(config: Mapping[str, Any]) -> str:
    """Return the public base URL used for entity @id values (no trailing slash)."""
    return str((config.get("server") or {}).get("base_url") or DEFAULT_BASE_URL).rstrip("/")
