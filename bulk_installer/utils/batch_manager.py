#!/usr/bin/env python3
"""
Batch Manager Utility for the Bulk Plugin Installer

Runs the plugin processor over an ordered list of tasks under one batch id.
Tasks are processed strictly one after another and a failing task never
stops the ones after it. Real (non dry-run) batches are recorded in the
batch manifest store so the whole batch can be rolled back later.
"""

import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .models import (
    BatchManifest, BatchSummary, ManifestEntry, PluginTask, ProcessingResult, TaskAction,
)


class BatchManager:
    """Sequential batch orchestrator."""

    BATCH_PREFIX = "bpi"

    def __init__(self, logger, processor, manifest_store=None, actor_id: str = "0",
                 clock: Callable[[], float] = time.time):
        self.logger = logger
        self.processor = processor
        self.manifest_store = manifest_store
        self.actor_id = str(actor_id)
        self.clock = clock

        self.batch_id: str = ""
        self.tasks: List[PluginTask] = []
        self.results: List[ProcessingResult] = []
        self.is_dry_run = False
        self.batch_start_time: Optional[datetime] = None
        self.batch_end_time: Optional[datetime] = None
        self._last_base_id = ""
        self._sequence = 0

    def _generate_batch_id(self) -> str:
        base_id = f"{self.BATCH_PREFIX}_{int(self.clock())}_{self.actor_id}"
        if base_id != self._last_base_id:
            self._last_base_id = base_id
            self._sequence = 0

        candidate = base_id if self._sequence == 0 else f"{base_id}_{self._sequence}"
        # Another installer sharing the same state may have used this id already
        while self.manifest_store is not None and self.manifest_store.batch_exists(candidate):
            self._sequence += 1
            candidate = f"{base_id}_{self._sequence}"

        self._sequence += 1
        return candidate

    def process_batch(self, tasks: List[PluginTask], dry_run: bool = False,
                      actor_id: Optional[str] = None) -> List[ProcessingResult]:
        """Process every task in order and return one result per task."""
        if actor_id is not None:
            self.actor_id = str(actor_id)
        self.batch_id = self._generate_batch_id()
        self.tasks = list(tasks)
        self.results = []
        self.is_dry_run = dry_run
        self.batch_start_time = datetime.now()
        self.batch_end_time = None

        mode = "dry run" if dry_run else "batch"
        self.logger.info(f"Starting {mode} {self.batch_id} with {len(self.tasks)} plugin(s)")

        for position, task in enumerate(self.tasks, start=1):
            self.logger.info(f"[{position}/{len(self.tasks)}] {task.action.value} {task.slug}")
            result = self.processor.process_task(task, dry_run=dry_run, batch_id=self.batch_id)
            self.results.append(result)
            self.logger.info(f"[{position}/{len(self.tasks)}] {task.slug}: {result.status.value}")

        self.batch_end_time = datetime.now()
        summary = self.get_batch_summary()
        self.logger.info(
            f"Finished {mode} {self.batch_id}: {summary.installed} installed, {summary.updated} updated, "
            f"{summary.failed} failed ({summary.rolled_back} rolled back), {summary.incompatible} incompatible"
        )

        if not dry_run and self.manifest_store is not None:
            recorded = self.manifest_store.record_batch(self.batch_id, self.build_manifest())
            self.batch_id = recorded.batch_id

        return list(self.results)

    def get_batch_summary(self) -> BatchSummary:
        """Counts over the most recent batch."""
        return BatchSummary.from_results(self.results)

    def get_batch_duration(self) -> Optional[float]:
        if not self.batch_start_time:
            return None
        end_time = self.batch_end_time or datetime.now()
        return (end_time - self.batch_start_time).total_seconds()

    def build_manifest(self) -> BatchManifest:
        """Manifest draft for the most recent batch; expiry is filled in by the store."""
        entries = []
        for task, result in zip(self.tasks, self.results):
            entries.append(ManifestEntry(
                slug=result.slug,
                action=result.action,
                status=result.status,
                backup_path=result.backup_path if result.action is TaskAction.UPDATE else None,
                plugin_name=result.display_name,
                from_version=task.installed_version or "",
                to_version=task.plugin_version or "",
                activated=result.activated,
            ))

        return BatchManifest(
            batch_id=self.batch_id,
            plugins=entries,
            summary=self.get_batch_summary().to_dict(),
            timestamp=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            user_id=self.actor_id,
        )
