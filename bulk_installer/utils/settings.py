#!/usr/bin/env python3
"""
Settings Management for the Bulk Plugin Installer

Reads and validates the user-adjustable options kept in the config store.
"""

from typing import Any, Dict, List, Tuple

DEFAULT_RETENTION_HOURS = 24


class SettingsManager:
    """Typed access to persisted installer options with defaults."""

    DEFAULTS = {
        "bpi_auto_activate": False,
        "bpi_max_plugins": 20,
        "bpi_rollback_retention": DEFAULT_RETENTION_HOURS,
    }

    # key -> (min, max)
    INT_RANGES = {
        "bpi_max_plugins": (1, 100),
        "bpi_rollback_retention": (1, 720),
    }

    def __init__(self, config_store, logger=None):
        self.config_store = config_store
        self.logger = logger

    def get_option(self, key: str) -> Any:
        if key not in self.DEFAULTS:
            raise KeyError(f"Unknown setting: {key}")
        return self.config_store.get(key, self.DEFAULTS[key])

    def get_all(self) -> Dict[str, Any]:
        return {key: self.get_option(key) for key in self.DEFAULTS}

    def get_auto_activate(self) -> bool:
        return bool(self.get_option("bpi_auto_activate"))

    def get_max_plugins(self) -> int:
        try:
            value = int(self.get_option("bpi_max_plugins"))
        except (TypeError, ValueError):
            return self.DEFAULTS["bpi_max_plugins"]
        return value if value >= 1 else self.DEFAULTS["bpi_max_plugins"]

    def get_retention_hours(self) -> int:
        """Configured retention window; 24 hours when the stored value is unusable."""
        try:
            hours = int(self.get_option("bpi_rollback_retention"))
        except (TypeError, ValueError):
            return DEFAULT_RETENTION_HOURS
        return hours if hours >= 1 else DEFAULT_RETENTION_HOURS

    def sanitize_settings(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        """Validate submitted settings. Out-of-range values fall back to the current value."""
        sanitized = {}
        errors = []

        if "bpi_auto_activate" in data:
            value = data["bpi_auto_activate"]
            if isinstance(value, str):
                value = value.strip().lower() in ("1", "true", "yes", "on")
            sanitized["bpi_auto_activate"] = bool(value)

        for key, (minimum, maximum) in self.INT_RANGES.items():
            if key not in data:
                continue
            try:
                value = int(data[key])
            except (TypeError, ValueError):
                errors.append(f"{key} must be a whole number.")
                continue
            if value < minimum or value > maximum:
                errors.append(f"{key} must be between {minimum} and {maximum}.")
                continue
            sanitized[key] = value

        unknown = sorted(set(data) - set(self.DEFAULTS))
        for key in unknown:
            errors.append(f"Unknown setting: {key}")

        return sanitized, errors

    def update_settings(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        """Persist the valid subset of data and return (current settings, errors)."""
        sanitized, errors = self.sanitize_settings(data)
        for key, value in sanitized.items():
            self.config_store.set(key, value)
        if self.logger and sanitized:
            self.logger.info(f"Updated settings: {', '.join(sorted(sanitized))}")
        return self.get_all(), errors
