"""YAML configuration for docfetch: ${VAR} substitution, defaults, validation and CLI overrides."""

import copy
import os
import re
from typing import Any, Dict
from urllib.parse import urlparse

import yaml

from logger import LOG_LEVELS

COLLISION_POLICIES = ('suffix', 'overwrite')

DEFAULT_CONFIG: Dict[str, Any] = {
    'connections': {},
    'docs': {
        'root': '.docs',
        'categories': {'reference': 'Reference documentation'},
        'default_category': 'reference',
    },
    'export': {
        'collision_policy': 'suffix',
    },
    'sync': {
        'progress_bars': True,
    },
    'logging': {
        'level': None,
        'file': None,
    },
}


class ConfigurationError(ValueError):
    """Invalid or incomplete configuration."""
    pass


class ConfigLoader:
    """Loads, completes and validates the docfetch configuration."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        Values missing from the file are filled from DEFAULT_CONFIG.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Parsed configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        if not isinstance(config_data, dict):
            raise ConfigurationError("Configuration file must contain a dictionary")

        config_data = cls._substitute_env_vars_recursive(config_data)
        return cls.with_defaults(config_data)

    @classmethod
    def with_defaults(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of config deep-merged over DEFAULT_CONFIG.

        A user supplied docs.categories mapping replaces the default one instead of extending it.
        """
        config = config or {}
        merged = _deep_merge(copy.deepcopy(DEFAULT_CONFIG), copy.deepcopy(config))
        categories = get_nested(config, 'docs.categories')
        if isinstance(categories, dict):
            merged['docs']['categories'] = dict(categories)
            if 'default_category' not in config.get('docs', {}):
                merged['docs']['default_category'] = next(iter(categories), None)
        return merged

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigurationError: If validation fails
        """
        connections = config.get('connections') or {}
        if not isinstance(connections, dict):
            raise ConfigurationError("connections must be a mapping of connection id to settings")

        for connection_id in connections:
            prefix = f'connections.{connection_id}'
            cls._validate_required_field(config, f'{prefix}.base_url')
            cls._validate_url(get_nested(config, f'{prefix}.base_url'), f'{prefix}.base_url')
            cls._validate_required_field(config, f'{prefix}.username')
            cls._validate_required_field(config, f'{prefix}.api_token')

            timeout = get_nested(config, f'{prefix}.timeout', 30)
            if not isinstance(timeout, (int, float)) or timeout <= 0:
                raise ConfigurationError(f"{prefix}.timeout must be a positive number")

            max_retries = get_nested(config, f'{prefix}.max_retries', 3)
            if not isinstance(max_retries, int) or max_retries < 0:
                raise ConfigurationError(f"{prefix}.max_retries must be a non-negative integer")

        cls._validate_required_field(config, 'docs.root')
        root = get_nested(config, 'docs.root')
        if os.path.exists(root) and not os.path.isdir(root):
            raise ConfigurationError(f"docs.root '{root}' is not a directory")

        categories = get_nested(config, 'docs.categories', {})
        if not isinstance(categories, dict) or not categories:
            raise ConfigurationError("docs.categories must be a non-empty mapping")
        for category in categories:
            if not category or '/' in category or '\\' in category or category in ('.', '..'):
                raise ConfigurationError(f"docs.categories contains an invalid directory name: {category!r}")

        default_category = get_nested(config, 'docs.default_category')
        if default_category and default_category not in categories:
            raise ConfigurationError(
                f"docs.default_category '{default_category}' is not one of: {sorted(categories)}"
            )

        collision_policy = get_nested(config, 'export.collision_policy', 'suffix')
        if collision_policy not in COLLISION_POLICIES:
            raise ConfigurationError(f"export.collision_policy must be one of: {list(COLLISION_POLICIES)}")

        progress_bars = get_nested(config, 'sync.progress_bars', True)
        if not isinstance(progress_bars, bool):
            raise ConfigurationError("sync.progress_bars must be a boolean")

        log_level = get_nested(config, 'logging.level')
        if log_level and str(log_level).upper() not in LOG_LEVELS:
            raise ConfigurationError(f"logging.level must be one of: {list(LOG_LEVELS)}")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration with CLI arguments. CLI arguments take precedence.

        Args:
            config: Base configuration dictionary
            args: argparse namespace

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)
        merged.setdefault('docs', {})
        merged.setdefault('logging', {})

        if getattr(args, 'docs_root', None):
            merged['docs']['root'] = args.docs_root

        if getattr(args, 'log_file', None):
            merged['logging']['file'] = args.log_file

        if getattr(args, 'log_level', None):
            merged['logging']['level'] = args.log_level

        if getattr(args, 'no_progress', False):
            merged.setdefault('sync', {})['progress_bars'] = False

        return merged

    @classmethod
    def _substitute_env_vars_recursive(cls, data: Any) -> Any:
        """Apply _substitute_env_vars to every string in nested dicts and lists."""
        if isinstance(data, dict):
            return {key: cls._substitute_env_vars_recursive(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars_recursive(item) for item in data]
        elif isinstance(data, str):
            return cls._substitute_env_vars(data)
        return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Replace ${VAR} with its environment value; unset variables are left as written."""
        def replace_match(match):
            env_value = os.getenv(match.group(1))
            return env_value if env_value is not None else match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config: dict, field: str) -> None:
        """Reject missing, empty or still-unsubstituted values."""
        value = get_nested(config, field)
        if value is None or value == '':
            raise ConfigurationError(f"Missing required configuration: {field}")

        if isinstance(value, str) and '${' in value:
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            var_name = match.group(1) if match else value
            raise ConfigurationError(
                f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                f"Please set the {var_name} environment variable or provide a value in config file."
            )

    @staticmethod
    def _validate_url(url: str, field_name: str) -> None:
        """Require an http(s) URL with a host."""
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https'):
            raise ConfigurationError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ConfigurationError(f"{field_name} missing hostname: {url}")


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "docs.root")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    value = config

    for key in path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


__all__ = ['ConfigLoader', 'ConfigurationError', 'get_nested', 'DEFAULT_CONFIG', 'COLLISION_POLICIES']
