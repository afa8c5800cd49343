"""
Configuration loading utilities for the form engine.

Loads config.yaml (app, logging, forms and engine timing settings), merges it
over built-in defaults and caches the result. A missing or broken file never
stops the app: defaults are used and the problem is logged.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging
from copy import deepcopy

logger = logging.getLogger(__name__)

CONFIG_FILE = Path("config.yaml")

_config_cache: Optional[Dict[str, Any]] = None


def deep_merge(base_dict: Dict[str, Any], update_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries, with update_dict taking precedence.

    Args:
        base_dict: Base dictionary (defaults)
        update_dict: Dictionary to merge in (user config)

    Returns:
        Merged dictionary
    """
    result = deepcopy(base_dict)

    for key, value in update_dict.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = deepcopy(value)

    return result


def get_default_config() -> Dict[str, Any]:
    """
    Get default configuration.

    Returns:
        Dictionary with default configuration
    """
    return {
        'app': {
            'name': 'Form Engine Demo',
            'version': '1.0.0',
            'debug': False
        },
        'logging': {
            'level': 'INFO'
        },
        'forms': {
            'directory': 'forms',
            'declaration': 'order_form.yaml',
            'data': 'order.json'
        },
        'engine': {
            'debounce_ms': 150,
            'chunk_threshold': 48,
            'first_chunk': 16,
            'chunk_step': 24,
            'focus_max_tries': 120,
            'stable_frames': 2,
            'max_layout_frames': 45
        },
        'ui': {
            'page_title': 'Form Engine',
            'show_error_summary': True
        }
    }


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration, merged over defaults.

    Args:
        config_path: Optional path to config file (defaults to config.yaml)

    Returns:
        Complete configuration dictionary
    """
    if config_path is None:
        config_path = CONFIG_FILE

    default_config = get_default_config()

    if not config_path.exists():
        logger.warning(f"Configuration file not found: {config_path}")
        logger.info("Using default configuration")
        return default_config

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = yaml.safe_load(f)

        if user_config is None:
            logger.warning(f"Configuration file is empty: {config_path}")
            return default_config

        if not isinstance(user_config, dict):
            logger.error(f"Configuration file is not a valid dictionary: {config_path}")
            logger.info("Using default configuration")
            return default_config

        config = deep_merge(default_config, user_config)

        logger.info(f"Successfully loaded configuration from {config_path}")
        return config

    except yaml.YAMLError as e:
        logger.error(f"YAML parsing error in {config_path}: {e}")
        logger.info("Using default configuration")
        return default_config

    except (IOError, OSError) as e:
        logger.error(f"Failed to read configuration file {config_path}: {e}")
        logger.info("Using default configuration")
        return default_config


def get_config() -> Dict[str, Any]:
    """Cached configuration from config.yaml."""
    global _config_cache

    if _config_cache is None:
        _config_cache = load_config()
    return _config_cache


def reload_config() -> Dict[str, Any]:
    """
    Force reload of configuration from file.
    Useful for testing or when configuration changes.
    """
    global _config_cache
    _config_cache = None
    return get_config()


def get_config_value(section: str, key: str, default: Any = None) -> Any:
    """
    Get a specific configuration value.

    Args:
        section: Configuration section (e.g., 'engine', 'logging')
        key: Configuration key within section
        default: Default value if not found

    Returns:
        Configuration value or default
    """
    config = get_config()
    return config.get(section, {}).get(key, default)


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate configuration structure.

    Args:
        config: Configuration dictionary to validate

    Returns:
        True if configuration is valid, False otherwise
    """
    for section in ('app', 'logging', 'forms', 'engine'):
        if section not in config:
            logger.warning(f"Missing required configuration section: {section}")
            return False

    engine = config.get('engine', {})
    for key in ('debounce_ms', 'chunk_threshold', 'first_chunk', 'chunk_step',
                'focus_max_tries', 'stable_frames', 'max_layout_frames'):
        if key not in engine:
            continue
        try:
            value = int(engine[key])
        except (ValueError, TypeError):
            logger.warning(f"engine.{key} must be a valid integer")
            return False
        if value < 0 or (value == 0 and key != 'debounce_ms'):
            logger.warning(f"engine.{key} must be positive")
            return False

    level = str(config.get('logging', {}).get('level', 'INFO')).upper()
    if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        logger.warning(f"Unknown logging level: {level}")
        return False

    return True


def get_engine_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
    """
    Engine timing/chunking settings, falling back to defaults for invalid configs.

    Args:
        config: Complete configuration (defaults to the cached config.yaml)
    """
    config = config if config is not None else get_config()
    defaults = get_default_config()['engine']
    if not validate_config(deep_merge(get_default_config(), config)):
        logger.info("Using default engine settings")
        return dict(defaults)
    merged = deep_merge(defaults, config.get('engine', {}))
    return {key: int(merged[key]) for key in defaults}
