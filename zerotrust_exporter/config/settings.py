"""Environment settings and validation."""

import os
from typing import Any, Dict, Optional


_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


class Settings:
    """Application settings from environment variables."""

    # Environment variable -> (section, field) in ExporterConfig
    ENV_MAPPING = {
        "API_KEY": ("cloudflare", "api_key"),
        "ACCOUNT_ID": ("cloudflare", "account_id"),
        "DEVICES": ("collectors", "devices"),
        "USERS": ("collectors", "users"),
        "TUNNELS": ("collectors", "tunnels"),
        "DEX": ("collectors", "dex"),
        "INTERFACE": ("server", "interface"),
        "PORT": ("server", "port"),
        "SCRAPE_TIMEOUT": ("scrape", "timeout_seconds"),
        "DEBUG": (None, "debug"),
        "LOG_LEVEL": (None, "log_level"),
    }

    BOOLEAN_VARS = ("DEVICES", "USERS", "TUNNELS", "DEX", "DEBUG")

    @staticmethod
    def get(key: str, default: Optional[str] = None, required: bool = False) -> str:
        """
        Get environment variable value.

        Args:
            key: Environment variable name
            default: Default value if not set
            required: Whether the variable is required

        Returns:
            str: Environment variable value

        Raises:
            ValueError: If required variable is not set
        """
        value = os.getenv(key, default)
        if required and not value:
            raise ValueError(f"Required environment variable not set: {key}")
        return value or ""

    @staticmethod
    def get_bool(key: str, default: bool = False) -> bool:
        """
        Parse a boolean environment variable.

        Raises:
            ValueError: If the value is not a recognised boolean
        """
        raw = os.getenv(key)
        if raw is None:
            return default
        value = raw.strip().lower()
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        raise ValueError(f"Invalid boolean for {key}: {raw!r}")

    @classmethod
    def overrides(cls) -> Dict[str, Any]:
        """
        Collect configuration overrides from set environment variables.

        Returns:
            dict: Nested dict shaped like ExporterConfig, only set keys included
        """
        result: Dict[str, Any] = {}
        for var, (section, name) in cls.ENV_MAPPING.items():
            if os.getenv(var) is None:
                continue
            value: Any = cls.get_bool(var) if var in cls.BOOLEAN_VARS else cls.get(var)
            target = result if section is None else result.setdefault(section, {})
            target[name] = value
        return result
