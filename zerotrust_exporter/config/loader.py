"""Configuration loader with YAML parsing and environment variable substitution."""

import yaml
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..errors import ConfigError
from .models import ExporterConfig
from .settings import Settings


class ConfigLoader:
    """Load, merge and validate exporter configuration."""

    @staticmethod
    def load_from_file(config_path: str) -> Dict[str, Any]:
        """
        Load raw configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            dict: Raw configuration, not yet validated

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        return ConfigLoader._substitute_env_vars(raw_config)

    @staticmethod
    def build(
        config_path: Optional[str] = None,
        cli_overrides: Optional[Dict[str, Any]] = None
    ) -> ExporterConfig:
        """
        Build the validated configuration.

        Precedence: CLI flags > environment variables > YAML file > defaults.

        Args:
            config_path: Optional YAML file
            cli_overrides: Nested dict of values given on the command line

        Returns:
            ExporterConfig: Validated configuration object

        Raises:
            ConfigError: If a source cannot be read or validation fails
        """
        raw: Dict[str, Any] = {}
        try:
            if config_path:
                raw = ConfigLoader.load_from_file(config_path)
            raw = ConfigLoader._merge(raw, Settings.overrides())
        except (OSError, yaml.YAMLError, ValueError) as e:
            raise ConfigError(str(e)) from e

        raw = ConfigLoader._merge(raw, cli_overrides or {})
        raw.setdefault('cloudflare', {})

        try:
            return ExporterConfig(**raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @staticmethod
    def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override into a copy of base; None values are skipped."""
        merged = dict(base)
        for key, value in override.items():
            if value is None:
                continue
            if isinstance(value, dict):
                current = merged.get(key)
                merged[key] = ConfigLoader._merge(current if isinstance(current, dict) else {}, value)
            else:
                merged[key] = value
        return merged

    @staticmethod
    def _substitute_env_vars(obj: Any) -> Any:
        """
        Recursively substitute ${ENV_VAR} placeholders with environment values.

        Args:
            obj: Object to process (str, dict, list, or primitive)

        Returns:
            Object with environment variables substituted
        """
        if isinstance(obj, str):
            pattern = r'\$\{(\w+)\}'
            return re.sub(pattern, lambda m: os.getenv(m.group(1), ''), obj)

        elif isinstance(obj, dict):
            return {k: ConfigLoader._substitute_env_vars(v) for k, v in obj.items()}

        elif isinstance(obj, list):
            return [ConfigLoader._substitute_env_vars(item) for item in obj]

        return obj
