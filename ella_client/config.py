"""
Configuration Management for the ELLA API client.

This module resolves the API base URL, timeouts, credential storage and
logging settings from an INI file, environment variables and explicit
overrides.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List
from configparser import ConfigParser, Error as ConfigParserError

from ella_shared.exceptions import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "http://localhost:8080/api"


class ClientConfiguration:
    """
    Configuration manager for the ELLA API client.

    Supports configuration from:
    1. Overrides, usually command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        config_dir = Path(xdg_config) if xdg_config else Path.home() / '.config'
        return str(config_dir / 'ella-client' / 'client.conf')

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except ConfigParserError as e:
                raise ConfigurationError(
                    f"Failed to parse configuration file {self._config_file}: {e}",
                    error_code=ErrorCode.CONFIG_INVALID_FORMAT,
                    cause=e
                ) from e
        else:
            logger.debug(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file)

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for lists, numbers and booleans
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'ELLA_API_BASE_URL': ('server', 'base_url'),
            'ELLA_TIMEOUT': ('server', 'timeout'),
            'ELLA_REFRESH_TIMEOUT': ('server', 'refresh_timeout'),
            'ELLA_STORAGE_BACKEND': ('auth', 'storage_backend'),
            'ELLA_PREFER_COOKIE': ('auth', 'prefer_cookie'),
            'ELLA_LOG_LEVEL': ('logging', 'level'),
            'ELLA_LOG_FORMAT': ('logging', 'format'),
            'ELLA_LOG_FILE': ('logging', 'file'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var, '').strip()
            if value:
                self._config_data.setdefault(section, {})[key] = self._parse_env_value(value)

        # ELLA_API_URL names the server root; the API lives under /api
        api_url = os.environ.get('ELLA_API_URL', '').strip()
        if api_url:
            self._config_data.setdefault('server', {})['base_url'] = f"{api_url.rstrip('/')}/api"

    def _parse_env_value(self, value: str) -> Any:
        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'
        if value.isdigit():
            return int(value)
        return value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'server': {
                'base_url': DEFAULT_API_BASE_URL,
                'timeout': 30.0,
                'refresh_timeout': 15.0,
                'user_agent': 'EllaClient/1.0'
            },
            'auth': {
                'prefer_cookie': True,
                'storage_backend': 'auto',
                'service_name': 'ella-client',
                'storage_path': None,
                'access_token_key': 'ella:token',
                'refresh_token_key': 'ella:refresh_token',
                'unauthorized_min_interval': 1.0,
                'exempt_paths': [
                    '/auth/login', '/auth/register', '/auth/refresh', '/auth/logout',
                    '/auth/forgot-password', '/auth/reset-password'
                ]
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None,
                'max_size': 10485760,  # 10MB
                'backup_count': 3
            }
        }

        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_config(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            value: Value to set
        """
        if '.' not in key:
            self._config_data[key] = value
            return

        section, config_key = key.split('.', 1)
        self._config_data.setdefault(section, {})[config_key] = value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value
        """
        self._overrides[key] = value

    def get_all_config(self) -> Dict[str, Any]:
        """Get all configuration data."""
        return self._config_data.copy()

    def get_config_file_path(self) -> str:
        """Get configuration file path."""
        return self._config_file

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    def _get_float(self, key: str) -> float:
        value = self.get_config(key)
        try:
            result = float(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid number for {key}: {value!r}", config_key=key, cause=e) from e
        if result <= 0:
            raise ConfigurationError(f"{key} must be positive, got {value!r}", config_key=key)
        return result

    def _get_bool(self, key: str) -> bool:
        value = self.get_config(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ('true', 'yes', 'on', '1', 'false', 'no', 'off', '0'):
            return value.lower() in ('true', 'yes', 'on', '1')
        if isinstance(value, int):
            return bool(value)
        raise ConfigurationError(f"Invalid boolean for {key}: {value!r}", config_key=key)

    # Convenience methods for common configuration values

    def get_api_base_url(self) -> str:
        """Get the API base URL, without a trailing slash."""
        return str(self.get_config('server.base_url', DEFAULT_API_BASE_URL)).rstrip('/')

    def get_server_timeout(self) -> float:
        """Get request timeout in seconds."""
        return self._get_float('server.timeout')

    def get_refresh_timeout(self) -> float:
        """Get session refresh timeout in seconds."""
        return self._get_float('server.refresh_timeout')

    def get_user_agent(self) -> str:
        return str(self.get_config('server.user_agent', 'EllaClient/1.0'))

    def get_prefer_cookie(self) -> bool:
        """Whether the refresh call relies on the HTTP-only refresh cookie."""
        return self._get_bool('auth.prefer_cookie')

    def get_storage_backend(self) -> str:
        return str(self.get_config('auth.storage_backend', 'auto')).lower()

    def get_service_name(self) -> str:
        return str(self.get_config('auth.service_name', 'ella-client'))

    def get_storage_path(self) -> Optional[Path]:
        path = self.get_config('auth.storage_path')
        return Path(path).expanduser() if path else None

    def get_access_token_key(self) -> str:
        return str(self.get_config('auth.access_token_key', 'ella:token'))

    def get_refresh_token_key(self) -> str:
        return str(self.get_config('auth.refresh_token_key', 'ella:refresh_token'))

    def get_unauthorized_min_interval(self) -> float:
        """Get minimum seconds between two unauthenticated notifications."""
        value = self.get_config('auth.unauthorized_min_interval', 1.0)
        try:
            return max(0.0, float(value))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid number for auth.unauthorized_min_interval: {value!r}",
                config_key='auth.unauthorized_min_interval',
                cause=e
            ) from e

    def get_exempt_paths(self) -> List[str]:
        """Get the endpoint paths that never carry the access token."""
        value = self.get_config('auth.exempt_paths')
        if isinstance(value, str):
            value = [part.strip() for part in value.split(',')]
        if not isinstance(value, list):
            raise ConfigurationError(f"Invalid list for auth.exempt_paths: {value!r}", config_key='auth.exempt_paths')
        return [str(path) for path in value if path]

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self.get_config('logging.file')
