"""
Configuration loading and management for AD Bulk Provision.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

from ad_provision.sources import CATEGORY_ORDER

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'directory.bind_password': 'DIRECTORY_BIND_PASSWORD',
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()
        self._resolve_input_paths()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        directory_config = self.config.get('directory') or {}
        for field in ['server_url', 'bind_dn', 'bind_password']:
            if not directory_config.get(field):
                errors.append(f"Missing required directory field: {field}")

        keystore_type = str(directory_config.get('keystore_type', 'PEM')).upper()
        if keystore_type not in ('PEM', 'PKCS12'):
            errors.append(f"Unsupported directory.keystore_type: {keystore_type}")

        inputs_config = self.config.get('inputs') or {}
        if not inputs_config.get('manifest'):
            errors.append("Missing required inputs field: manifest")

        provisioning_config = self.config.get('provisioning') or {}
        categories = provisioning_config.get('categories') or []
        if not isinstance(categories, list):
            errors.append("provisioning.categories must be a list")
        else:
            for category in categories:
                if str(category).lower() not in CATEGORY_ORDER:
                    errors.append(f"Unknown category in provisioning.categories: {category}")

        error_config = self.config.get('error_handling') or {}
        max_errors = error_config.get('max_errors_per_category', 0)
        if not isinstance(max_errors, int) or max_errors < 0:
            errors.append("error_handling.max_errors_per_category must be a non-negative integer")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        directory_defaults = {
            'verify_ssl': True,
            'start_tls': False,
            'keystore_type': 'PEM',
            'connection_timeout': 10,
            'receive_timeout': 10
        }
        directory_config = self.config.setdefault('directory', {})
        for key, value in directory_defaults.items():
            directory_config.setdefault(key, value)

        inputs_defaults = {
            'settings': None,
            'encoding': 'utf-8-sig'
        }
        inputs_config = self.config.setdefault('inputs', {})
        for key, value in inputs_defaults.items():
            inputs_config.setdefault(key, value)

        platform_defaults = {
            'powershell': 'powershell.exe',
            'icacls': 'icacls',
            'command_timeout': 300
        }
        platform_config = self.config.setdefault('platform', {})
        for key, value in platform_defaults.items():
            platform_config.setdefault(key, value)

        provisioning_config = self.config.setdefault('provisioning', {})
        provisioning_config.setdefault('dry_run', False)
        provisioning_config['categories'] = [
            str(category).lower() for category in (provisioning_config.get('categories') or [])
        ]

        report_config = self.config.setdefault('report', {})
        report_config.setdefault('enabled', True)
        report_config.setdefault('path', os.path.join('reports', 'provision_report.csv'))

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'WARNING'
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5,
            'max_errors_per_category': 0
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        notification_defaults = {
            'enable_email': False,
            'email_on_failure': True,
            'email_on_success': False,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config.setdefault('notifications', {})
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)

    def _resolve_input_paths(self):
        """Resolve relative input and report paths against the configuration file's directory."""
        base_dir = os.path.dirname(os.path.abspath(self.config_path))
        targets = [(self.config['inputs'], 'manifest'), (self.config['inputs'], 'settings'),
                   (self.config['report'], 'path')]
        for section, key in targets:
            path = section.get(key)
            if path and not os.path.isabs(path):
                section[key] = os.path.normpath(os.path.join(base_dir, path))


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
