"""
Settings Manager Module

Manages output configuration with validation, change callbacks and
persistence to a JSON settings file.
"""

import json
import logging
import threading
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .. import (
    APP_VERSION, DEFAULT_FILENAME_PATTERN, DEFAULT_LOG_LEVEL,
    DEFAULT_TMP_FILE_TTL_SECONDS
)
from .surface_models import OutputFormat

logger = logging.getLogger(__name__)


@dataclass
class OutputConfig:
    """
    Output configuration.

    auto_reduce_colors: reduce to a 255 color palette when the image already
    has fewer than 256 colors. Images with more colors are only reduced when
    the per-call settings force it.
    """
    auto_reduce_colors: bool = False
    prompt_quality: bool = False
    format: str = OutputFormat.PNG.value
    jpeg_quality: int = 80
    filename_pattern: str = DEFAULT_FILENAME_PATTERN
    file_path: str = field(default_factory=lambda: str(Path.home()))
    copy_path_to_clipboard: bool = False
    last_saved_path: Optional[str] = None
    tmp_file_ttl_seconds: int = DEFAULT_TMP_FILE_TTL_SECONDS


@dataclass
class LoggingConfig:
    """Logging configuration."""
    log_level: str = DEFAULT_LOG_LEVEL
    log_dir: Optional[str] = None
    enable_json: bool = True


@dataclass
class ApplicationSettings:
    """Complete application settings."""
    version: str = APP_VERSION

    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Metadata
    last_updated: Optional[str] = None
    update_count: int = 0


class SettingsValidationError(Exception):
    """Exception raised when settings validation fails."""
    pass


def _is_output_format(value: Any) -> bool:
    return value in {fmt.value for fmt in OutputFormat}


class SettingsManager:
    """
    Application settings manager with JSON file persistence.

    Settings are addressed with dot notation keys such as
    'output.jpeg_quality'.
    """

    def __init__(
        self,
        settings_file: Optional[Path] = None,
        validate_on_load: bool = True
    ):
        """
        Initialize SettingsManager.

        Args:
            settings_file: JSON file to load from and save to, None keeps
                settings in memory only
            validate_on_load: Whether to validate settings when loading
        """
        self.settings_file = Path(settings_file) if settings_file else None
        self.validate_on_load = validate_on_load

        self._settings: Optional[ApplicationSettings] = None
        self._settings_lock = threading.RLock()

        self._validation_rules = self._setup_validation_rules()
        self._change_callbacks: List[Callable] = []

        logger.info("SettingsManager initialized")

    def _setup_validation_rules(self) -> Dict[str, Callable]:
        """Set up validation rules for settings."""
        return {
            'output.jpeg_quality': lambda x: 0 <= x <= 100,
            'output.format': _is_output_format,
            'output.tmp_file_ttl_seconds': lambda x: x >= 60,
            'output.filename_pattern': lambda x: isinstance(x, str),
            'logging.log_level': lambda x: x.upper() in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        }

    @property
    def output(self) -> OutputConfig:
        """Shortcut to the output section of the loaded settings."""
        return self.load_settings().output

    def load_settings(self) -> ApplicationSettings:
        """
        Load settings from the settings file.

        Returns:
            ApplicationSettings instance
        """
        with self._settings_lock:
            if self._settings is not None:
                return self._settings

            settings_dict = {}
            if self.settings_file and self.settings_file.exists():
                try:
                    with open(self.settings_file, 'r', encoding='utf-8') as f:
                        data = json.load(f)
                    settings_dict = self._flatten_dict(data)
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning("Could not read settings file %s: %s", self.settings_file, e)

            self._settings = self._merge_with_defaults(settings_dict)

            if self.validate_on_load:
                self.validate_settings()

            logger.info("Settings loaded successfully")
            return self._settings

    def _merge_with_defaults(self, overrides: Dict[str, Any]) -> ApplicationSettings:
        """Merge override values with default settings."""
        settings = ApplicationSettings()
        for key, value in overrides.items():
            self._set_nested_value(settings, key, value)
        return settings

    def _set_nested_value(self, obj: Any, key: str, value: Any) -> None:
        """Set value using dot notation key."""
        parts = key.split('.')
        current = obj

        for part in parts[:-1]:
            if hasattr(current, part):
                current = getattr(current, part)
            else:
                logger.warning("Invalid settings key: %s", key)
                return

        final_key = parts[-1]
        if hasattr(current, final_key):
            setattr(current, final_key, value)
        else:
            logger.warning("Invalid settings key: %s", key)

    def _get_nested_value(self, obj: Any, key: str) -> Any:
        """Get value using dot notation key."""
        current = obj
        for part in key.split('.'):
            if hasattr(current, part):
                current = getattr(current, part)
            else:
                return None
        return current

    @staticmethod
    def _flatten_dict(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
        flat = {}
        for key, value in data.items():
            full_key = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict):
                flat.update(SettingsManager._flatten_dict(value, full_key))
            else:
                flat[full_key] = value
        return flat

    def _flatten_settings(self, settings: ApplicationSettings) -> Dict[str, Any]:
        """Flatten settings object to dot-notation dictionary."""
        return self._flatten_dict(asdict(settings))

    def save_settings(self, settings: Optional[ApplicationSettings] = None) -> None:
        """
        Save settings to the settings file.

        Args:
            settings: Settings to save (uses current if None)
        """
        with self._settings_lock:
            if settings is None:
                settings = self._settings
            if settings is None:
                raise ValueError("No settings to save")

            settings.last_updated = datetime.now().isoformat()
            settings.update_count += 1

            if self.settings_file:
                self.settings_file.parent.mkdir(parents=True, exist_ok=True)
                with open(self.settings_file, 'w', encoding='utf-8') as f:
                    json.dump(asdict(settings), f, indent=2)
            else:
                logger.debug("No settings file configured, settings kept in memory")

            self._settings = settings

        self._notify_changes()
        logger.info("Settings saved successfully")

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get a specific setting value.

        Args:
            key: Setting key in dot notation
            default: Default value if not found

        Returns:
            Setting value or default
        """
        value = self._get_nested_value(self.load_settings(), key)
        return value if value is not None else default

    def update_setting(self, key: str, value: Any) -> bool:
        """
        Update a specific setting in memory.

        Args:
            key: Setting key in dot notation
            value: New value

        Returns:
            True if updated successfully
        """
        if not self.validate_setting(key, value):
            logger.warning("Rejected invalid value for '%s': %s", key, value)
            return False

        with self._settings_lock:
            settings = self.load_settings()
            self._set_nested_value(settings, key, value)
            settings.last_updated = datetime.now().isoformat()
            settings.update_count += 1

        self._notify_changes()
        logger.info("Setting updated: %s = %s", key, value)
        return True

    def validate_setting(self, key: str, value: Any) -> bool:
        """
        Validate a specific setting value.

        Returns:
            True if valid
        """
        if key in self._validation_rules:
            try:
                return bool(self._validation_rules[key](value))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("Validation error for '%s': %s", key, e)
                return False
        return True

    def validate_settings(self) -> None:
        """
        Validate all current settings.

        Raises:
            SettingsValidationError: If validation fails
        """
        if self._settings is None:
            return

        errors = [
            f"Invalid value for '{key}': {value}"
            for key, value in self._flatten_settings(self._settings).items()
            if not self.validate_setting(key, value)
        ]
        if errors:
            raise SettingsValidationError(f"Settings validation failed: {'; '.join(errors)}")

    def reset_to_defaults(self) -> None:
        """Reset all settings to defaults and save them."""
        self.save_settings(ApplicationSettings())
        logger.info("All settings reset to defaults")

    def export_settings(self) -> Dict[str, Any]:
        """Export settings as dictionary."""
        return asdict(self.load_settings())

    def import_settings(self, data: Dict[str, Any], validate: bool = True) -> bool:
        """
        Import settings from dictionary.

        Args:
            data: Settings data
            validate: Whether to validate imported settings

        Returns:
            True if imported successfully
        """
        new_settings = self._merge_with_defaults(self._flatten_dict(data))

        if validate:
            with self._settings_lock:
                old_settings = self._settings
                self._settings = new_settings
                try:
                    self.validate_settings()
                except SettingsValidationError as e:
                    self._settings = old_settings
                    logger.error("Failed to import settings: %s", e)
                    return False

        self.save_settings(new_settings)
        logger.info("Settings imported successfully")
        return True

    def add_change_callback(self, callback: Callable) -> None:
        """Add callback for settings changes."""
        self._change_callbacks.append(callback)

    def remove_change_callback(self, callback: Callable) -> bool:
        """
        Remove settings change callback.

        Returns:
            True if removed
        """
        try:
            self._change_callbacks.remove(callback)
            return True
        except ValueError:
            return False

    def _notify_changes(self) -> None:
        """Notify all change callbacks."""
        for callback in self._change_callbacks:
            try:
                callback(self._settings)
            except Exception as e:
                logger.error("Error in settings change callback: %s", e)

    def __str__(self) -> str:
        if self._settings is None:
            return "SettingsManager(not loaded)"
        return f"SettingsManager(version={self._settings.version}, updates={self._settings.update_count})"
