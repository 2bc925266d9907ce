"""Settings library for application paths and app-wide configuration.

Provides:
    - ConfigPaths: the on-disk layout (current scope files, shared presets, migration marker
      and the legacy locations older versions wrote to).
    - SettingsAPI: loading, validating, saving and reverting config.json.
    - CONFIG_SCHEMA: typed keys and defaults for the app-wide configuration.
"""

import json
import logging
import os
import pathlib
from typing import Dict, Any, Optional, Union

from PySide6 import QtCore

app_name: str = 'PluginPresets'

DATA_DIR_ENV_KEY: str = 'PLUGINPRESETS_DATA_DIR'

CONFIG_SCHEMA: Dict[str, Dict[str, Any]] = {
    'delay_between_commands': {'type': int, 'default': 100, 'minimum': 0},
    'poll_interval': {'type': int, 'default': 100, 'minimum': 1},
    'confirm_timeout': {'type': int, 'default': 5000, 'minimum': 0},
    'verbose_notifications': {'type': bool, 'default': False},
    'show_notifications': {'type': bool, 'default': True},
    'rollback_enabled': {'type': bool, 'default': True},
    'experimental_persistence': {'type': bool, 'default': False},
    'last_selected_scope_id': {'type': int, 'default': 0, 'minimum': 0},
}


def default_config() -> Dict[str, Any]:
    """Return a fresh copy of the default configuration values."""
    return {k: v['default'] for k, v in CONFIG_SCHEMA.items()}


def _validate_value(key: str, value: Any) -> None:
    """Validate a single configuration value against CONFIG_SCHEMA.

    Args:
        key: Configuration key.
        value: Value to validate.

    Raises:
        KeyError: If key is not defined in the schema.
        TypeError: If value is not of the expected type.
        ValueError: If value is below the allowed minimum.
    """
    if key not in CONFIG_SCHEMA:
        raise KeyError(f'Invalid config key: {key}, must be one of {list(CONFIG_SCHEMA)}')
    specs = CONFIG_SCHEMA[key]
    _type = specs['type']
    # bool is a subclass of int; keep them apart
    if _type is int and isinstance(value, bool):
        raise TypeError(f'Config key "{key}" must be {_type}, got {type(value)}.')
    if not isinstance(value, _type):
        raise TypeError(f'Config key "{key}" must be {_type}, got {type(value)}.')
    if 'minimum' in specs and value < specs['minimum']:
        raise ValueError(f'Config key "{key}" must be >= {specs["minimum"]}, got {value}.')


class ConfigPaths:
    """Manage application file paths and ensure the data directories exist.

    The data directory defaults to the Qt AppDataLocation for the application.
    It can be redirected with the ``PLUGINPRESETS_DATA_DIR`` environment variable
    or the ``root`` argument.
    """

    def __init__(self, root: Optional[Union[str, pathlib.Path]] = None) -> None:
        if root is None and os.environ.get(DATA_DIR_ENV_KEY):
            root = os.environ[DATA_DIR_ENV_KEY]

        if root is None:
            QtCore.QCoreApplication.setApplicationName(app_name)
            QtCore.QCoreApplication.setOrganizationName('')
            logging.debug(f'Setting application name: {app_name}')

            p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
            root = p

        self.data_dir: pathlib.Path = pathlib.Path(root)
        logging.debug(f'Using data directory: {self.data_dir}')

        self.config_path: pathlib.Path = self.data_dir / 'config.json'

        # Current layout
        self.scopes_dir: pathlib.Path = self.data_dir / 'scopes'
        self.global_scope_path: pathlib.Path = self.data_dir / 'global_scope.json'
        self.shared_presets_dir: pathlib.Path = self.data_dir / 'shared' / 'presets'
        self.migration_marker: pathlib.Path = self.data_dir / 'v2_migrated'

        # Per-identity folder layout written by earlier versions
        self.legacy_characters_dir: pathlib.Path = self.data_dir / 'characters'
        self.legacy_characters_file: pathlib.Path = self.data_dir / 'characters.json'
        self.legacy_global_dir: pathlib.Path = self.data_dir / 'global'
        self.legacy_global_file: pathlib.Path = self.data_dir / 'global.json'

        # Flat layout of the very first versions
        self.legacy_presets_dir: pathlib.Path = self.data_dir / 'presets'
        self.legacy_always_on_path: pathlib.Path = self.data_dir / 'always-on.json'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Create the data, scopes and shared presets directories if missing."""
        for d in (self.data_dir, self.scopes_dir, self.shared_presets_dir):
            if not d.exists():
                logging.debug(f'Creating directory: {d}')
                d.mkdir(parents=True, exist_ok=True)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save the app-wide configuration.
    """

    def __init__(self, root: Optional[Union[str, pathlib.Path]] = None) -> None:
        super().__init__(root=root)

        self._signals_blocked: bool = False
        self.config_data: Dict[str, Any] = default_config()
        self.init_data()

    def __getitem__(self, key: str) -> Any:
        """Retrieve a configuration value using dictionary-style access.

        Raises:
            KeyError: If key is not in CONFIG_SCHEMA.
        """
        if key not in CONFIG_SCHEMA:
            raise KeyError(f'Invalid config key: {key}, must be one of {list(CONFIG_SCHEMA)}')
        return self.config_data.get(key, CONFIG_SCHEMA[key]['default'])

    def __setitem__(self, key: str, value: Any) -> None:
        """Assign a configuration value and persist it.

        Values of the wrong type are converted where the conversion is lossless.

        Raises:
            KeyError: If key is not in CONFIG_SCHEMA.
            TypeError, ValueError: If the value cannot be used.
        """
        if key not in CONFIG_SCHEMA:
            raise KeyError(f'Invalid config key: {key}, must be one of {list(CONFIG_SCHEMA)}')

        _type = CONFIG_SCHEMA[key]['type']
        if not isinstance(value, _type) or (_type is int and isinstance(value, bool)):
            logging.warning(f'Config key "{key}" is not of type {_type}, got {type(value)}.')
            if _type == int:
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    logging.error(f'Cannot convert "{value}" to int.')
                    raise
            elif _type == bool:
                value = bool(value)

        _validate_value(key, value)
        self.config_data[key] = value
        self.save()

        if self._signals_blocked:
            return

        from ..ui.actions import signals
        signals.settingChanged.emit(key, value)

    def block_signals(self, v: bool) -> None:
        """Enable or disable emission of settingChanged.

        Args:
            v: True to block signals, False to allow signals to emit.
        """
        self._signals_blocked = v

    def init_data(self) -> None:
        """Load config.json, falling back to defaults when missing or invalid."""
        try:
            self.load_config()
        except FileNotFoundError:
            logging.debug(f'No config found at "{self.config_path}", writing defaults')
            self.config_data = default_config()
            self.save()
        except (ValueError, TypeError, KeyError) as ex:
            logging.error(f'Invalid config at "{self.config_path}", reverting to defaults: {ex}')
            self.config_data = default_config()
            self.save()

    def load_config(self) -> Dict[str, Any]:
        """Load config.json from disk and validate it.

        Unknown keys are dropped and missing keys take their default value.

        Returns:
            The loaded configuration dictionary.

        Raises:
            FileNotFoundError: If config.json is missing.
            ValueError: If the file is not valid JSON or not an object.
            TypeError: If a value has the wrong type.
        """
        logging.debug(f'Loading config from "{self.config_path}"')
        if not self.config_path.exists():
            raise FileNotFoundError(f'Config file not found: {self.config_path}')

        with self.config_path.open('r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError('config.json must contain an object.')

        config = default_config()
        for k, v in data.items():
            if k not in CONFIG_SCHEMA:
                logging.warning(f'Ignoring unknown config key "{k}"')
                continue
            _validate_value(k, v)
            config[k] = v

        self.config_data = config
        return self.config_data

    def save(self) -> None:
        """Persist the configuration to config.json.

        Raises:
            OSError: If the file cannot be written.
        """
        logging.debug(f'Saving config to "{self.config_path}"')
        try:
            with self.config_path.open('w', encoding='utf-8') as f:
                json.dump(self.config_data, f, indent=4, ensure_ascii=False)
        except OSError as ex:
            logging.error(f'Error saving config: {ex}')
            raise

    def revert_to_defaults(self) -> None:
        """Restore every configuration key to its default and save."""
        logging.debug('Reverting config to defaults.')
        self.config_data = default_config()
        self.save()

        if self._signals_blocked:
            return

        from ..ui.actions import signals
        for k, v in self.config_data.items():
            signals.settingChanged.emit(k, v)


settings: SettingsAPI = SettingsAPI()
