#!/usr/bin/env python3
"""
Batch Manifest Store for the Bulk Plugin Installer

Keeps a durable manifest per completed batch so the batch can be undone
after the process that ran it is gone:

- manifests live in the key/value store under "bpi_batch_<id>" with a TTL
  equal to the rollback retention window
- the ids believed to be live are kept in the config store under
  "bpi_active_batches"; ids whose manifest has disappeared are dropped
  lazily by readers and by cleanup_expired()

Rolling a batch back restores every successfully updated plugin from its
backup and removes every newly installed plugin, continuing past
individual failures.

Locking is per process: the index is only rewritten under a lock, and a
batch being rolled back is skipped by a concurrent cleanup_expired(). Two
processes working on the same state directory are not coordinated.
"""

import os
import time
from threading import Lock
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from .backup_store import BackupError
from .models import (
    BatchManifest, ManifestEntry, RollbackItem, RollbackResult, TaskAction, TaskStatus,
)


class BatchManifestStore:
    """Records, lists, rolls back and prunes batch manifests."""

    MANIFEST_KEY_PREFIX = "bpi_batch_"
    ACTIVE_BATCHES_KEY = "bpi_active_batches"
    MSG_ROLLBACK_SUCCESS = "Batch rollback completed successfully."
    MSG_MANIFEST_NOT_FOUND = "Batch manifest not found."

    def __init__(self, logger, kv_store, config_store, settings, backup_store, host, activity_log,
                 clock: Callable[[], float] = time.time):
        self.logger = logger
        self.kv_store = kv_store
        self.config_store = config_store
        self.settings = settings
        self.backup_store = backup_store
        self.host = host
        self.activity_log = activity_log
        self.clock = clock

        self._index_lock = Lock()
        self._batch_locks: Dict[str, Lock] = {}

    def _manifest_key(self, batch_id: str) -> str:
        return f"{self.MANIFEST_KEY_PREFIX}{batch_id}"

    def _batch_lock(self, batch_id: str) -> Lock:
        with self._index_lock:
            return self._batch_locks.setdefault(batch_id, Lock())

    # ------------------------------------------------------------------
    # Active batch index
    # ------------------------------------------------------------------

    def get_active_batch_ids(self) -> List[str]:
        active = self.config_store.get(self.ACTIVE_BATCHES_KEY, [])
        if not isinstance(active, list):
            return []
        return [batch_id for batch_id in active if isinstance(batch_id, str)]

    def batch_exists(self, batch_id: str) -> bool:
        """True when batch_id is indexed or still has a stored manifest."""
        return (batch_id in self.get_active_batch_ids()
                or self.kv_store.get(self._manifest_key(batch_id)) is not None)

    def _free_batch_id(self, batch_id: str) -> str:
        candidate = batch_id
        sequence = 0
        while self.batch_exists(candidate):
            sequence += 1
            candidate = f"{batch_id}_{sequence}"
        return candidate

    def _remove_batch_ids(self, batch_ids: Set[str]) -> None:
        with self._index_lock:
            active = self.get_active_batch_ids()
            surviving = [batch_id for batch_id in active if batch_id not in batch_ids]
            if surviving != active:
                self.config_store.set(self.ACTIVE_BATCHES_KEY, surviving)
            for batch_id in batch_ids:
                self._batch_locks.pop(batch_id, None)

    # ------------------------------------------------------------------
    # Recording and lookup
    # ------------------------------------------------------------------

    def record_batch(self, batch_id: str, manifest: BatchManifest, actor_id: Optional[str] = None) -> BatchManifest:
        """Persist a manifest for the retention window and index its id.

        An id that is already taken gets a numeric suffix, so an existing
        manifest is never overwritten. The returned manifest carries the id
        actually used.
        """
        retention_hours = self.settings.get_retention_hours()
        expiration = retention_hours * 3600
        now = self.clock()

        with self._index_lock:
            recorded_id = self._free_batch_id(batch_id)
            if recorded_id != batch_id:
                self.logger.warning(f"Batch id {batch_id} is already recorded, using {recorded_id}")

            manifest.batch_id = recorded_id
            manifest.expires_at = now + expiration
            if not manifest.timestamp:
                manifest.timestamp = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            if manifest.user_id is None:
                manifest.user_id = actor_id if actor_id is not None else "0"

            self.kv_store.set(self._manifest_key(recorded_id), manifest.to_dict(), expiration)
            active = self.get_active_batch_ids()
            active.append(recorded_id)
            self.config_store.set(self.ACTIVE_BATCHES_KEY, active)

        self.logger.info(f"Recorded batch {recorded_id} ({len(manifest.plugins)} plugin(s)), "
                         f"rollback available for {retention_hours}h")
        return manifest

    def get_batch_manifest(self, batch_id: str) -> Optional[BatchManifest]:
        """The manifest for batch_id, or None when absent or malformed."""
        if not batch_id:
            return None

        raw = self.kv_store.get(self._manifest_key(batch_id))
        if not isinstance(raw, dict):
            return None

        try:
            return BatchManifest.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning(f"Ignoring malformed manifest for batch {batch_id}: {str(e)}")
            return None

    def get_active_batches(self) -> List[BatchManifest]:
        """Manifests for every indexed id that still resolves."""
        batches = []
        for batch_id in self.get_active_batch_ids():
            manifest = self.get_batch_manifest(batch_id)
            if manifest is not None:
                batches.append(manifest)
        return batches

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def rollback_batch(self, batch_id: str) -> RollbackResult:
        """Undo a recorded batch. Terminal: the manifest and index entry are removed."""
        with self._batch_lock(batch_id):
            return self._rollback_locked(batch_id)

    def _rollback_locked(self, batch_id: str) -> RollbackResult:
        manifest = self.get_batch_manifest(batch_id)
        if manifest is None:
            self.logger.warning(f"Rollback requested for unknown batch {batch_id}")
            self._remove_batch_ids({batch_id})
            return RollbackResult(success=False, failures=[self.MSG_MANIFEST_NOT_FOUND], results=[])

        self.logger.info(f"Rolling back batch {batch_id} ({len(manifest.plugins)} plugin(s))")

        results: List[RollbackItem] = []
        failures: List[str] = []
        for entry in manifest.plugins:
            self._rollback_entry(entry, results, failures)

        if failures:
            message = f"Batch rollback completed with errors: {'; '.join(failures)}"
            self.logger.warning(message)
        else:
            message = self.MSG_ROLLBACK_SUCCESS
            self.logger.info(f"Batch {batch_id} rolled back")

        self.activity_log.append("batch_rollback", {
            "batch_id": batch_id,
            "plugin_slug": "",
            "plugin_name": "",
            "status": "success" if not failures else "partial",
            "message": message,
        })

        self.kv_store.delete(self._manifest_key(batch_id))
        self._remove_batch_ids({batch_id})

        return RollbackResult(success=not failures, failures=failures, results=results)

    def _rollback_entry(self, entry: ManifestEntry, results: List[RollbackItem], failures: List[str]) -> None:
        if entry.status is TaskStatus.FAILED:
            results.append(RollbackItem(
                slug=entry.slug,
                action="skipped",
                status="skipped",
                message="Plugin was not successfully processed; skipping rollback.",
            ))
            return

        try:
            plugin_dir = self.host.plugin_dir(entry.slug)
        except ValueError as e:
            self.logger.error(f"Refusing to roll back {entry.slug!r}: {str(e)}")
            failures.append(f'Refusing to roll back "{entry.slug}": {str(e)}')
            results.append(RollbackItem(
                slug=entry.slug,
                action="restore" if entry.action is TaskAction.UPDATE else "remove",
                status="failed",
                message=str(e),
            ))
            return

        if entry.action is TaskAction.UPDATE:
            self._rollback_update(entry, plugin_dir, results, failures)
        elif entry.action is TaskAction.INSTALL:
            self.backup_store.remove_partial_install(plugin_dir)
            results.append(RollbackItem(
                slug=entry.slug,
                action="remove",
                status="success",
                message=f'Removed newly installed "{entry.slug}".',
            ))

    def _rollback_update(self, entry: ManifestEntry, plugin_dir: str,
                         results: List[RollbackItem], failures: List[str]) -> None:
        if not entry.backup_path:
            failures.append(f'No backup path for "{entry.slug}".')
            results.append(RollbackItem(
                slug=entry.slug, action="restore", status="failed", message="No backup path available.",
            ))
            return

        try:
            self.backup_store.restore_backup(entry.backup_path, plugin_dir)
        except BackupError as e:
            failures.append(f'Failed to restore "{entry.slug}": {e.message}')
            results.append(RollbackItem(slug=entry.slug, action="restore", status="failed", message=e.message))
            return

        self.backup_store.cleanup_backup(entry.backup_path)
        results.append(RollbackItem(
            slug=entry.slug,
            action="restore",
            status="success",
            message=f'Restored "{entry.slug}" to previous version.',
        ))

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def cleanup_expired(self) -> List[str]:
        """Prune expired batches and their backups. Returns the ids dropped from the index."""
        now = self.clock()
        still_active = []
        dropped = []

        for batch_id in self.get_active_batch_ids():
            lock = self._batch_lock(batch_id)
            if not lock.acquire(blocking=False):
                # Being rolled back right now
                still_active.append(batch_id)
                continue

            try:
                manifest = self.get_batch_manifest(batch_id)

                if manifest is None:
                    # Storage TTL already expired it
                    dropped.append(batch_id)
                elif manifest.expires_at is not None and now > manifest.expires_at:
                    for entry in manifest.plugins:
                        if entry.backup_path:
                            self.backup_store.cleanup_backup(entry.backup_path)
                    self.kv_store.delete(self._manifest_key(batch_id))
                    dropped.append(batch_id)
                else:
                    still_active.append(batch_id)
            finally:
                lock.release()

        self._remove_batch_ids(set(dropped))

        orphaned = self._prune_orphaned_backups(still_active, now)
        if dropped or orphaned:
            self.logger.info(f"Expired {len(dropped)} batch(es), removed {orphaned} orphaned backup(s)")
        return dropped

    def _prune_orphaned_backups(self, active_ids: List[str], now: float) -> int:
        """Delete retained backups older than the retention window that no live manifest references.

        Covers batches whose manifest expired in storage before it could be
        swept, which leaves no record of their backup paths.
        """
        referenced: Set[str] = set()
        for batch_id in active_ids:
            manifest = self.get_batch_manifest(batch_id)
            if manifest is None:
                continue
            for entry in manifest.plugins:
                if entry.backup_path:
                    referenced.add(os.path.normpath(entry.backup_path))

        cutoff = now - self.settings.get_retention_hours() * 3600
        removed = 0
        for backup_path, created_at in self.backup_store.list_backups():
            if os.path.normpath(backup_path) in referenced or created_at > cutoff:
                continue
            if self.backup_store.cleanup_backup(backup_path):
                removed += 1
        return removed
