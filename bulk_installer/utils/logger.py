"""
Bulk Installer Activity Log

A JSON log of plugin operations. Every processed plugin and every batch
rollback appends one entry; entries are read back newest first for the
CLI and the admin API.

Writes are fire-and-forget: a failing write is reported on the console
logger and never reaches the caller.
"""

import json
import logging
import os
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional

LOGGER_NAME = "bulk_installer"
LOG_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"


def setup_logger(name: str = LOGGER_NAME, debug: bool = False) -> logging.Logger:
    """Set up the console logger shared by the installer components."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    return logger


class ActivityLog:
    """JSON-file log sink for plugin operations."""

    LOG_FIELDS = ("batch_id", "plugin_slug", "plugin_name", "from_version",
                  "to_version", "status", "message")

    def __init__(self, log_file: str, console_logger: Optional[logging.Logger] = None,
                 max_entries: int = 1000):
        self.log_file = log_file
        self.console_logger = console_logger or logging.getLogger(LOGGER_NAME)
        self.max_entries = max_entries
        self.lock = Lock()

        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

    def _empty_structure(self) -> Dict[str, Any]:
        return {"last_updated": None, "entries": []}

    def _load_log_data(self) -> Dict[str, Any]:
        """Load current log data, reinitialising a missing or corrupt file."""
        try:
            with open(self.log_file, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, FileNotFoundError, UnicodeDecodeError):
            return self._empty_structure()

        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            return self._empty_structure()
        return data

    def _save_log_data(self, data: Dict[str, Any]) -> None:
        with open(self.log_file, "w") as f:
            json.dump(data, f, indent=2)

    def append(self, action: str, details: Dict[str, Any]) -> None:
        """Record one operation. Never raises."""
        entry = {
            "timestamp": datetime.now().isoformat(),
            "action": action,
        }
        for key in self.LOG_FIELDS:
            value = details.get(key)
            entry[key] = "" if value is None else str(value)
        entry["is_dry_run"] = bool(details.get("is_dry_run", False))

        try:
            with self.lock:
                data = self._load_log_data()
                data["entries"].append(entry)
                if self.max_entries and len(data["entries"]) > self.max_entries:
                    data["entries"] = data["entries"][-self.max_entries:]
                data["last_updated"] = entry["timestamp"]
                self._save_log_data(data)
        except (OSError, TypeError, ValueError) as e:
            self.console_logger.error(f"Failed to write activity log entry: {str(e)}")

    def get_entries(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Return entries newest first."""
        limit = max(0, int(limit))
        offset = max(0, int(offset))
        with self.lock:
            entries = list(reversed(self._load_log_data()["entries"]))
        return entries[offset:offset + limit]

    def clear(self) -> None:
        with self.lock:
            self._save_log_data(self._empty_structure())
