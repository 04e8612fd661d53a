"""
Configuration manager for export settings.

Loads export configuration from YAML files, validates settings,
and provides environment variable substitution.
"""

import os
import re
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .core.date_range import DateRange
from .errors import ConfigurationError
from .utils.files import strip_file_extension, strip_illegal_chars

ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::([^}]*))?\}')


class ExportConfiguration(BaseModel):
    """Validated export configuration."""

    export_dir: Optional[Path] = None
    export_filename: Optional[str] = None
    pem_file: Optional[Path] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    overwrite_files: bool = False
    export_media: bool = True
    split_select_multiples: bool = False
    include_geojson_export: bool = False
    remove_group_names: bool = False
    smart_append: bool = False
    max_workers: Optional[int] = Field(None, ge=1)
    state_db_path: Optional[Path] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_date_range(self) -> "ExportConfiguration":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date can't be before start_date")
        return self

    @property
    def date_range(self) -> DateRange:
        return DateRange(self.start_date, self.end_date)

    @property
    def export_media_path(self) -> Path:
        return self._require_export_dir() / "media"

    def errors_dir(self, form_name: str) -> Path:
        return self._require_export_dir() / f"{strip_illegal_chars(form_name)} - errors"

    def audit_path(self, form_name: str) -> Path:
        return self._require_export_dir() / f"{form_name} - audit.csv"

    def filename_base(self, form_name: str) -> str:
        """Base name of every output file: the export filename without extension, or the form name."""
        if self.export_filename:
            return strip_illegal_chars(strip_file_extension(self.export_filename))
        return strip_illegal_chars(form_name)

    def validate_for(self, is_encrypted: bool) -> None:
        """Check the configuration can export a form.

        Args:
            is_encrypted: Whether the form's submissions are encrypted

        Raises:
            ConfigurationError: If the export dir or a needed private key is missing
        """
        if self.export_dir is None:
            raise ConfigurationError("Export directory is required")
        if self.export_dir.exists() and not self.export_dir.is_dir():
            raise ConfigurationError(f"Export directory {self.export_dir} is not a directory")
        if is_encrypted and self.pem_file is None:
            raise ConfigurationError("A PEM file is required to export encrypted forms")
        if self.pem_file is not None and not self.pem_file.exists():
            raise ConfigurationError(f"PEM file not found: {self.pem_file}")

    def with_overrides(self, **overrides: Any) -> "ExportConfiguration":
        """Return a copy with the given non-None values replaced (and re-validated)."""
        values = self.model_dump()
        values.update({key: value for key, value in overrides.items() if value is not None})
        try:
            return ExportConfiguration(**values)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

    def _require_export_dir(self) -> Path:
        if self.export_dir is None:
            raise ConfigurationError("Export directory is required")
        return self.export_dir


class ConfigManager:
    """Manages export configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration YAML file (optional)
        """
        self.config_path = config_path
        self._config: Optional[Dict[str, Any]] = None

    def load(self, config_path: Optional[Path] = None) -> ExportConfiguration:
        """Load and validate configuration from YAML file.

        Args:
            config_path: Path to configuration file (overrides init path)

        Returns:
            ExportConfiguration with validated settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If configuration is malformed
            ConfigurationError: If a setting has an invalid value
        """
        path = config_path or self.config_path
        if path is None:
            raise ValueError("No configuration path provided")

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}

        config = self._substitute_env_vars(config)
        self._validate_config(config)
        self._config = config

        return self._create_export_config(config)

    def _substitute_env_vars(self, config: Any) -> Any:
        """Recursively substitute ${VAR_NAME} or ${VAR_NAME:default} references."""
        if isinstance(config, dict):
            return {key: self._substitute_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return ENV_VAR_PATTERN.sub(
                lambda match: os.environ.get(match.group(1), match.group(2) or ""),
                config,
            )
        return config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """Validate configuration structure.

        Raises:
            ValueError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ValueError("Configuration must be a mapping")

        if "export" not in config:
            raise ValueError("Configuration missing required field: export")

        if not isinstance(config["export"], dict):
            raise ValueError("Export configuration must be a dictionary")

        state = config.get("state", {})
        if not isinstance(state, dict):
            raise ValueError("State configuration must be a dictionary")

    def _create_export_config(self, config: Dict[str, Any]) -> ExportConfiguration:
        values = {key: value for key, value in config["export"].items() if value not in (None, "")}
        db_path = config.get("state", {}).get("db_path")
        if db_path:
            values["state_db_path"] = Path(db_path).expanduser()
        for key in ("export_dir", "pem_file"):
            if key in values:
                values[key] = Path(values[key]).expanduser()
        try:
            return ExportConfiguration(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid export configuration: {e}") from e

    def save_example_config(self, output_path: Path) -> None:
        """Save an example configuration file.

        Args:
            output_path: Path where to save example config
        """
        example_config = {
            "export": {
                "export_dir": "${EXPORT_DIR:exports}",
                "export_filename": None,
                "pem_file": "${EXPORT_PEM_FILE:}",
                "start_date": None,
                "end_date": None,
                "overwrite_files": False,
                "export_media": True,
                "split_select_multiples": False,
                "include_geojson_export": False,
                "remove_group_names": False,
                "smart_append": False,
                "max_workers": 4,
            },
            "state": {
                "db_path": "${HOME}/.submission_export/state.db",
            },
        }

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            yaml.safe_dump(example_config, f, default_flow_style=False, sort_keys=False)
