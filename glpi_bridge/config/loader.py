"""
Configuration Loader
YAML files (shared common.yaml + script-folder config.yaml) merged with environment variables
No credentials are ever defaulted: missing required values fail fast at startup
"""
import os
from dataclasses import dataclass

import yaml


SHARED_CONFIG_NAME = 'common.yaml'
CONFIG_CANDIDATES = ['config.yaml', 'config.yml']

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    'GLPI_URL': ('glpi', 'url'),
    'GLPI_APP_TOKEN': ('glpi', 'app_token'),
    'GLPI_USER_TOKEN': ('glpi', 'user_token'),
    'GLPI_USERNAME': ('glpi', 'username'),
    'GLPI_PASSWORD': ('glpi', 'password'),
    'GLPI_VERIFY_SSL': ('glpi', 'verify_ssl'),
    'SMARTSHEET_TOKEN': ('smartsheet', 'token'),
    'SMARTSHEET_SHEET_ID': ('smartsheet', 'sheet_id'),
    'SYNC_INTERVAL': ('sync', 'interval_minutes'),
    'SYNC_STATE_FILE': ('sync', 'state_file'),
    'SMTP_PASSWORD': ('smtp', 'password'),
    'LOG_LEVEL': ('logging', 'level'),
}


class ConfigLoader:
    """
    YAML configuration loader.

    Supports:
    - Shared common.yaml (current or parent directory)
    - Script-folder config.yaml / config.yml, or an explicit path
    - Environment variable overrides (highest priority)
    - Validation of the sections a script requires
    """

    def __init__(self, config_path=None, validate=True, required=('glpi',)):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file (auto-detected if None)
            validate: Validate configuration (default: True)
            required: Sections that must be present and complete
        """
        self.config_path = config_path
        self.validate = validate
        self.required = tuple(required or ())

    def load(self):
        """
        Load configuration.

        Order (later wins):
        1. common.yaml (if exists) as base configuration
        2. folder-specific config.yaml (if exists) or the explicit path
        3. environment variables

        Returns:
            dict: Merged configuration dictionary

        Raises:
            FileNotFoundError: If an explicit config path does not exist
            ValueError: If validation fails
        """
        common_config = self._load_common_config()
        folder_config = self._load_folder_config()

        config = self._deep_merge(common_config, folder_config)
        config = self._merge_env_vars(config)
        config = self._coerce_types(config)

        if self.validate:
            self._validate_config(config)

        return config

    def _load_common_config(self):
        """
        Load shared configuration from common.yaml.

        Returns:
            dict: Shared configuration, or empty dict if not found
        """
        for path in (SHARED_CONFIG_NAME, os.path.join('..', SHARED_CONFIG_NAME)):
            if os.path.exists(path):
                with open(path, 'r', encoding='utf-8') as f:
                    return yaml.safe_load(f) or {}
        return {}

    def _load_folder_config(self):
        """
        Load folder-specific configuration.

        Returns:
            dict: Folder configuration (empty if none was found by auto-detection)
        """
        if self.config_path is None:
            self.config_path = self._auto_detect_config()
            if self.config_path is None:
                return {}

        if not self.config_path.endswith(('.yaml', '.yml')):
            raise ValueError(f"Unsupported config format: {self.config_path}")

        return self._load_yaml()

    def _deep_merge(self, base, override):
        """
        Deep merge two dictionaries.

        Args:
            base: Base dictionary
            override: Override dictionary (takes precedence)

        Returns:
            dict: Merged dictionary
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _auto_detect_config(self):
        """Return the first existing config candidate, or None."""
        for candidate in CONFIG_CANDIDATES:
            if os.path.exists(candidate):
                return candidate
        return None

    def _load_yaml(self):
        """
        Load YAML configuration file.

        Raises:
            FileNotFoundError: If config file not found
            ValueError: If the file is empty
        """
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}\n"
                f"Please copy config.yaml.example to config.yaml and update with your settings."
            )

        with open(self.config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)

        if config is None:
            raise ValueError(f"Configuration file is empty: {self.config_path}")

        return config

    def _merge_env_vars(self, config):
        """
        Merge environment variables into configuration.

        Environment variables take precedence over file values.
        See ENV_OVERRIDES for the supported names.
        """
        for env_name, (section, key) in ENV_OVERRIDES.items():
            if env_name in os.environ:
                config.setdefault(section, {})[key] = os.environ[env_name]
        return config

    def _coerce_types(self, config):
        """Normalize values that may arrive as strings from the environment."""
        glpi = config.get('glpi')
        if isinstance(glpi, dict) and isinstance(glpi.get('verify_ssl'), str):
            value = glpi['verify_ssl'].strip()
            if value.lower() in ('0', 'false', 'no'):
                glpi['verify_ssl'] = False
            elif value.lower() in ('1', 'true', 'yes'):
                glpi['verify_ssl'] = True
            # anything else is treated as a CA bundle path

        sync = config.get('sync')
        if isinstance(sync, dict) and isinstance(sync.get('interval_minutes'), str):
            try:
                sync['interval_minutes'] = int(sync['interval_minutes'])
            except ValueError:
                pass  # reported by validation

        return config

    def _validate_config(self, config):
        """
        Validate that required configuration fields exist.

        Raises:
            ValueError: If required fields are missing
        """
        errors = []

        for section in self.required:
            if not isinstance(config.get(section), dict):
                errors.append(f"Missing '{section}' section in config")

        if isinstance(config.get('glpi'), dict):
            glpi = config['glpi']
            if not glpi.get('url'):
                errors.append("Missing 'glpi.url' in config")
            if not glpi.get('app_token'):
                errors.append("Missing 'glpi.app_token' in config")

            has_user_token = glpi.get('user_token')
            has_credentials = glpi.get('username') and glpi.get('password')
            if not has_user_token and not has_credentials:
                errors.append(
                    "Missing GLPI authentication: provide either 'glpi.user_token' "
                    "or both 'glpi.username' and 'glpi.password'"
                )

        if isinstance(config.get('smartsheet'), dict):
            smartsheet = config['smartsheet']
            if not smartsheet.get('token'):
                errors.append("Missing 'smartsheet.token' in config")
            if not smartsheet.get('sheet_id'):
                errors.append("Missing 'smartsheet.sheet_id' in config")

        if isinstance(config.get('sync'), dict):
            interval = config['sync'].get('interval_minutes', 5)
            if not isinstance(interval, int) or isinstance(interval, bool) or interval <= 0:
                errors.append("'sync.interval_minutes' must be a positive integer")

        if errors:
            error_message = "Configuration validation failed:\n" + "\n".join(f"  - {err}" for err in errors)
            raise ValueError(error_message)


def load_config(config_path=None, validate=True, required=('glpi',)):
    """
    Load configuration (convenience function).

    Args:
        config_path: Path to config file (auto-detected if None)
        validate: Validate configuration (default: True)
        required: Sections that must be present

    Returns:
        dict: Merged configuration dictionary
    """
    loader = ConfigLoader(config_path=config_path, validate=validate, required=required)
    return loader.load()


# ===== Typed settings =====

@dataclass
class GlpiSettings:
    url: str
    app_token: str
    user_token: str = None
    username: str = None
    password: str = None
    verify_ssl: object = True

    @classmethod
    def from_config(cls, config):
        glpi = config.get('glpi') or {}
        if not glpi.get('url') or not glpi.get('app_token'):
            raise ValueError("GLPI settings require 'url' and 'app_token'")
        return cls(
            url=glpi['url'],
            app_token=glpi['app_token'],
            user_token=glpi.get('user_token'),
            username=glpi.get('username'),
            password=glpi.get('password'),
            verify_ssl=glpi.get('verify_ssl', True),
        )


@dataclass
class SmartsheetSettings:
    token: str
    sheet_id: str

    @classmethod
    def from_config(cls, config):
        smartsheet = config.get('smartsheet') or {}
        if not smartsheet.get('token') or not smartsheet.get('sheet_id'):
            raise ValueError("Smartsheet settings require 'token' and 'sheet_id'")
        return cls(token=smartsheet['token'], sheet_id=str(smartsheet['sheet_id']))


@dataclass
class SyncSettings:
    interval_minutes: int = 5
    state_file: str = 'sync-state.json'
    external_id_column: str = 'No.Ticket'
    lock_timeout_seconds: int = 3600

    @classmethod
    def from_config(cls, config):
        sync = config.get('sync') or {}
        return cls(
            interval_minutes=int(sync.get('interval_minutes', cls.interval_minutes)),
            state_file=sync.get('state_file', cls.state_file),
            external_id_column=sync.get('external_id_column', cls.external_id_column),
            lock_timeout_seconds=int(sync.get('lock_timeout_seconds', cls.lock_timeout_seconds)),
        )
