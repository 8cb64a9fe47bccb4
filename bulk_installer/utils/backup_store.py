#!/usr/bin/env python3
"""
Backup Store Utility for the Bulk Plugin Installer

Copies a plugin directory to an isolated backup location before it is
updated, and restores or discards that copy afterwards. Knows nothing about
batches or plugins beyond a directory path.

Backups are named {source_dir_name}_{unix_time}_{random_suffix} under a
dedicated backups root which is created on demand.
"""

import os
import shutil
import secrets
import string
import time
from enum import Enum
from typing import Callable, List, Optional, Tuple


class BackupErrorCode(Enum):
    """Failure kinds raised by the backup store."""
    SOURCE_MISSING = "backup_source_missing"
    DIR_CREATE_FAILED = "backup_dir_failed"
    COPY_FAILED = "backup_copy_failed"
    BACKUP_MISSING = "restore_backup_missing"
    DELETE_FAILED = "restore_delete_failed"
    RESTORE_COPY_FAILED = "restore_copy_failed"


class BackupError(Exception):
    """Raised when a backup cannot be created or restored."""

    def __init__(self, code: BackupErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


SUFFIX_ALPHABET = string.ascii_letters + string.digits
SUFFIX_LENGTH = 6


class BackupStore:
    """Creates, restores and discards directory backups."""

    def __init__(self, logger, backup_root: str, clock: Callable[[], float] = time.time):
        self.logger = logger
        self.backup_root = backup_root
        self.clock = clock

    @staticmethod
    def _normalize(path: str) -> str:
        return os.path.normpath(path.rstrip("/\\")) if path else path

    def _new_backup_path(self, source_dir: str) -> str:
        suffix = "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
        dir_name = os.path.basename(source_dir)
        return os.path.join(self.backup_root, f"{dir_name}_{int(self.clock())}_{suffix}")

    def create_backup(self, source_dir: str) -> str:
        """Copy source_dir into a fresh backup location and return its path."""
        source_dir = self._normalize(source_dir)

        if not os.path.isdir(source_dir):
            raise BackupError(
                BackupErrorCode.SOURCE_MISSING,
                f'Cannot create backup: source directory "{source_dir}" does not exist.'
            )

        try:
            os.makedirs(self.backup_root, exist_ok=True)
        except OSError as e:
            self.logger.error(f"Failed to create backup root {self.backup_root}: {str(e)}")
            raise BackupError(BackupErrorCode.DIR_CREATE_FAILED, "Cannot create backup directory.")

        backup_path = self._new_backup_path(source_dir)
        while os.path.exists(backup_path):
            backup_path = self._new_backup_path(source_dir)

        try:
            shutil.copytree(source_dir, backup_path, symlinks=True)
        except (OSError, shutil.Error) as e:
            # A partial copy may be left on disk; it is never handed back as valid.
            self.logger.error(f"Backup copy failed for {source_dir}: {str(e)}")
            raise BackupError(
                BackupErrorCode.COPY_FAILED,
                f'Failed to create backup of "{os.path.basename(source_dir)}".'
            )

        self.logger.debug(f"Created backup: {source_dir} -> {backup_path}")
        return backup_path

    def restore_backup(self, backup_path: str, target_dir: str) -> None:
        """Replace target_dir with the contents of backup_path.

        The current target is removed first. If that removal fails the restore
        stops there and the backup is left untouched.
        """
        backup_path = self._normalize(backup_path)
        target_dir = self._normalize(target_dir)

        if not backup_path or not os.path.isdir(backup_path):
            raise BackupError(
                BackupErrorCode.BACKUP_MISSING,
                f'Cannot restore: backup directory "{backup_path}" does not exist.'
            )

        if os.path.lexists(target_dir):
            try:
                self._delete_path(target_dir)
            except OSError as e:
                self.logger.error(f"Failed to remove {target_dir} before restore: {str(e)}")
                raise BackupError(
                    BackupErrorCode.DELETE_FAILED,
                    f'Failed to remove current plugin directory "{target_dir}" during restore.'
                )

        try:
            shutil.copytree(backup_path, target_dir, symlinks=True)
        except (OSError, shutil.Error) as e:
            self.logger.error(f"Failed to copy {backup_path} -> {target_dir}: {str(e)}")
            raise BackupError(BackupErrorCode.RESTORE_COPY_FAILED, "Failed to restore plugin from backup.")

        self.logger.debug(f"Restored backup: {backup_path} -> {target_dir}")

    def cleanup_backup(self, backup_path: Optional[str]) -> bool:
        """Delete a backup. Best effort; an already absent backup is not an error.

        Only direct children of the backups root are ever deleted.
        """
        backup_path = self._normalize(backup_path)
        if backup_path and not self._in_backup_root(backup_path):
            self.logger.warning(f"Not removing {backup_path}: outside backup root {self.backup_root}")
            return False
        return self._remove_quietly(backup_path, "backup")

    def remove_partial_install(self, target_dir: str) -> bool:
        """Delete a plugin directory left behind by a failed or rolled back install."""
        return self._remove_quietly(self._normalize(target_dir), "plugin directory")

    def list_backups(self) -> List[Tuple[str, int]]:
        """(path, creation unix time) for every backup under the backups root.

        Entries whose name does not follow the backup naming scheme are ignored.
        """
        if not os.path.isdir(self.backup_root):
            return []

        backups = []
        for name in sorted(os.listdir(self.backup_root)):
            parts = name.rsplit("_", 2)
            if len(parts) != 3 or not parts[1].isdigit() or len(parts[2]) != SUFFIX_LENGTH:
                continue
            backups.append((os.path.join(self.backup_root, name), int(parts[1])))
        return backups

    def _in_backup_root(self, path: str) -> bool:
        parent = os.path.dirname(os.path.abspath(path))
        return os.path.realpath(parent) == os.path.realpath(self.backup_root)

    def _remove_quietly(self, path: Optional[str], label: str) -> bool:
        if not path or not os.path.lexists(path):
            return True

        try:
            self._delete_path(path)
            self.logger.debug(f"Removed {label}: {path}")
            return True
        except OSError as e:
            self.logger.warning(f"Could not remove {label} {path}: {str(e)}")
            return False

    @staticmethod
    def _delete_path(path: str) -> None:
        if os.path.islink(path) or os.path.isfile(path):
            os.remove(path)
        else:
            shutil.rmtree(path)
