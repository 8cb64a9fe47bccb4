#!/usr/bin/env python3
"""
Persistent JSON Stores for the Bulk Plugin Installer

Two small file-backed stores:
- JsonKeyValueStore: keyed values with a time-to-live (batch manifests)
- JsonConfigStore: plain keyed options (active batch index, settings, activation state)

Both guard read-modify-write cycles with a lock and reinitialise a missing or
corrupted file instead of failing.
"""

import json
import math
import os
import time
from threading import Lock
from typing import Any, Callable, Dict, Optional


class _JsonFile:
    """Lock-guarded JSON document on disk."""

    def __init__(self, path: str):
        self.path = path
        self.lock = Lock()

        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            # Corrupted file: start over rather than block every caller
            return {}

    def save(self, data: Dict[str, Any]) -> None:
        temp_path = f"{self.path}.tmp"
        with open(temp_path, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(temp_path, self.path)


def _is_expired(record: Any, now: float) -> bool:
    """Whether a stored record is past its expiry. Malformed records count as expired."""
    if not isinstance(record, dict) or "value" not in record:
        return True

    expires_at = record.get("expires_at")
    if expires_at is None:
        return False
    try:
        expiry = float(expires_at)
    except (TypeError, ValueError):
        return True
    return math.isnan(expiry) or now >= expiry


class JsonKeyValueStore:
    """Keyed store whose entries expire after a number of seconds."""

    def __init__(self, path: str, clock: Callable[[], float] = time.time):
        self._file = _JsonFile(path)
        self.clock = clock

    @property
    def path(self) -> str:
        return self._file.path

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store value under key. A ttl of None or 0 keeps it until deleted."""
        expires_at = self.clock() + ttl_seconds if ttl_seconds else None
        with self._file.lock:
            data = self._file.load()
            data[key] = {"value": value, "expires_at": expires_at}
            self._file.save(data)

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when absent or expired."""
        with self._file.lock:
            data = self._file.load()
            if key not in data:
                return None

            record = data[key]
            if _is_expired(record, self.clock()):
                del data[key]
                self._file.save(data)
                return None

            return record["value"]

    def delete(self, key: str) -> None:
        with self._file.lock:
            data = self._file.load()
            if key in data:
                del data[key]
                self._file.save(data)

    def purge_expired(self) -> int:
        """Drop every expired record and return how many were removed."""
        with self._file.lock:
            data = self._file.load()
            now = self.clock()
            expired = [key for key, record in data.items() if _is_expired(record, now)]
            for key in expired:
                del data[key]
            if expired:
                self._file.save(data)
            return len(expired)


class JsonConfigStore:
    """Keyed option store without expiry."""

    def __init__(self, path: str):
        self._file = _JsonFile(path)

    @property
    def path(self) -> str:
        return self._file.path

    def get(self, key: str, default: Any = None) -> Any:
        with self._file.lock:
            return self._file.load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._file.lock:
            data = self._file.load()
            data[key] = value
            self._file.save(data)

    def delete(self, key: str) -> None:
        with self._file.lock:
            data = self._file.load()
            if key in data:
                del data[key]
                self._file.save(data)

    def all(self) -> Dict[str, Any]:
        with self._file.lock:
            return self._file.load()
