"""
Configuration Manager Module
Handles loading and accessing application configuration from YAML files and environment variables.
"""

import os
import re
from pathlib import Path
from typing import Dict

import yaml
from dotenv import load_dotenv

# Top-level sections read by the application
SECTIONS = ('database', 'sync', 'executor', 'api', 'logging')

EXECUTOR_DEFAULTS = {
    'max_workers': 4,
    'wait_poll_interval': 1.0,
}

API_DEFAULTS = {
    'host': '0.0.0.0',
    'port': 8000,
    'history_default_limit': 50,
    'history_max_limit': 500,
}


class ConfigManager:
    """Manages application configuration from YAML files and environment variables."""

    _instance = None
    _config: Dict = None

    def __new__(cls):
        """Singleton pattern for configuration."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize configuration if not already loaded."""
        if self._config is None:
            self._load_configuration()

    @classmethod
    def reset(cls) -> None:
        """Forget the loaded configuration; the next ConfigManager() reloads it."""
        cls._instance = None

    def _load_configuration(self) -> None:
        """Load all configuration files."""
        # Load environment variables from .env file
        load_dotenv()

        # Determine config directory
        self._config_dir = self._find_config_dir()

        # Load main config
        config_path = self._config_dir / 'config.yaml'
        config = self._load_yaml_with_env(config_path)
        self._validate(config, config_path)
        self._config = config

    def _find_config_dir(self) -> Path:
        """Find the configuration directory."""
        # Check for CONFIG_DIR environment variable
        env_config_dir = os.getenv('CONFIG_DIR')
        if env_config_dir:
            return Path(env_config_dir)

        # Default locations to check
        possible_paths = [
            Path(__file__).parent.parent / 'config',  # Relative to cdc_sync/
            Path.cwd() / 'config',  # Current working directory
            Path('/app/config'),  # Docker container
        ]

        for path in possible_paths:
            if path.exists():
                return path

        raise FileNotFoundError("Configuration directory not found")

    def _load_yaml_with_env(self, file_path: Path) -> Dict:
        """
        Load YAML file with environment variable substitution.

        Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax.
        """
        if not file_path.exists():
            return {}

        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        # Substitute environment variables
        content = self._substitute_env_vars(content)

        return yaml.safe_load(content) or {}

    def _substitute_env_vars(self, content: str) -> str:
        """
        Substitute environment variables in string.

        Supports:
        - ${VAR_NAME} - Required variable
        - ${VAR_NAME:-default} - Variable with default value
        """
        # Pattern for ${VAR:-default} or ${VAR}
        pattern = r'\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}'

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2)

            value = os.getenv(var_name)
            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                return match.group(0)  # Leave unresolved placeholders visible

        return re.sub(pattern, replacer, content)

    @staticmethod
    def _validate(config: Dict, source: Path) -> None:
        """Reject a file whose known sections are not mappings."""
        if not isinstance(config, dict):
            raise ValueError(f"{source}: top level must be a mapping")
        for section in SECTIONS:
            value = config.get(section)
            if value is not None and not isinstance(value, dict):
                raise ValueError(f"{source}: section '{section}' must be a mapping")

    def _section(self, name: str) -> Dict:
        return self._config.get(name) or {}

    # ========================================
    # Configuration Getters
    # ========================================

    def get_database_config(self) -> Dict:
        """Get task store database configuration."""
        return self._section('database')

    def get_sync_config(self) -> Dict:
        """Get DDL generation and pipeline configuration."""
        return self._section('sync')

    def get_executor_config(self) -> Dict:
        """
        Get background executor configuration.

        Returns:
            Section merged over defaults, with ``max_workers`` an int of at
            least 1 and ``wait_poll_interval`` a float
        """
        executor = dict(EXECUTOR_DEFAULTS, **self._section('executor'))
        executor['max_workers'] = max(1, int(executor['max_workers']))
        executor['wait_poll_interval'] = float(executor['wait_poll_interval'])
        return executor

    def get_api_config(self) -> Dict:
        """Get HTTP API configuration merged over defaults."""
        api = dict(API_DEFAULTS, **self._section('api'))
        api['port'] = int(api['port'])
        return api

    def get_logging_config(self) -> Dict:
        """Get logging configuration."""
        return self._section('logging')


# Convenience function
def get_config() -> ConfigManager:
    """Get the singleton configuration manager instance."""
    return ConfigManager()
