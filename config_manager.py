"""
Configuration management for the budget tracker.

Loads and saves config.yaml, merging user values over DEFAULT_CONFIG so
every consumer can rely on the documented keys being present.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from aggregation import merge_thresholds
from exceptions import ConfigError, ValidationError
from periods import TimePeriod

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    'currency_symbol': '₹',
    'default_period': TimePeriod.PAST_6_MONTHS.value,
    'budget_thresholds': {
        'yellow': 50.0,
        'orange': 70.0,
        'red': 85.0,
    },
    'user_id': 'local',
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    },
    'database': {
        'data_dir': 'data',
        'path': 'budget.db',
    },
}

CONFIG_FILE = 'config.yaml'


def _merge_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(DEFAULT_CONFIG)
    for key, value in config.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Union[str, Path] = CONFIG_FILE) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file

    Returns:
        Configuration dictionary with defaults for missing values. A
        missing or unreadable file yields the defaults.
    """
    try:
        path = Path(config_path)
        if path.exists():
            with open(path, 'r') as f:
                config = yaml.safe_load(f) or {}
        else:
            logger.info("Config file %s not found; using defaults", path)
            config = {}

        if not isinstance(config, dict):
            raise ConfigError("Configuration root must be a mapping", details={"path": str(path)})

        merged = _merge_defaults(config)
        logger.info("Configuration loaded successfully")
        return merged

    except (OSError, yaml.YAMLError, ConfigError) as e:
        logger.error(f"Error loading configuration: {e}", exc_info=True)
        return copy.deepcopy(DEFAULT_CONFIG)


def save_config(config: Dict[str, Any], config_path: Union[str, Path] = CONFIG_FILE) -> bool:
    """
    Save configuration to a YAML file, preserving keys not in ``config``.

    Returns:
        True if successful, False otherwise
    """
    try:
        path = Path(config_path)

        existing_config = {}
        if path.exists():
            with open(path, 'r') as f:
                existing_config = yaml.safe_load(f) or {}

        existing_config.update(config)

        with open(path, 'w') as f:
            yaml.dump(existing_config, f, default_flow_style=False, allow_unicode=True)

        logger.info("Configuration saved successfully")
        return True

    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error saving configuration: {e}", exc_info=True)
        return False


def get_currency_symbol(config: Optional[Dict[str, Any]] = None) -> str:
    """Currency symbol used when formatting amounts."""
    config = config if config is not None else load_config()
    return str(config.get('currency_symbol', DEFAULT_CONFIG['currency_symbol']))


def get_default_period(config: Optional[Dict[str, Any]] = None) -> TimePeriod:
    """
    Default time period for window reports.

    Raises:
        ConfigError: If the configured period is not recognised
    """
    config = config if config is not None else load_config()
    raw = config.get('default_period', DEFAULT_CONFIG['default_period'])
    try:
        return TimePeriod.parse(raw)
    except ValidationError as exc:
        raise ConfigError(
            "Invalid default_period in configuration",
            details={"default_period": raw},
            original_error=exc
        ) from exc


def get_budget_thresholds(config: Optional[Dict[str, Any]] = None) -> Dict[str, float]:
    """
    Colour band thresholds for percent-used values.

    Raises:
        ConfigError: If the configured thresholds are invalid
    """
    config = config if config is not None else load_config()
    try:
        return merge_thresholds(config.get('budget_thresholds'))
    except ValidationError as exc:
        raise ConfigError(
            "Invalid budget_thresholds in configuration",
            details=exc.details,
            original_error=exc
        ) from exc


def get_user_id(config: Optional[Dict[str, Any]] = None) -> str:
    """User identifier that scopes stored records."""
    config = config if config is not None else load_config()
    return str(config.get('user_id') or DEFAULT_CONFIG['user_id'])
