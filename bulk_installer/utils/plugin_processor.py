#!/usr/bin/env python3
"""
Plugin Task Processor for the Bulk Plugin Installer

Drives one install or update task to a terminal state:

    pending -> installing -> success | failed     (real run)
    pending -> success | incompatible             (dry run)

Updates are backed up first; a failed update is restored from that backup
and a failed fresh install has its partial directory removed. Activation
runs only after a successful install/update and never downgrades the
result. Each task writes exactly one activity log entry when it finishes.
"""

import os
from typing import Optional

from .backup_store import BackupError
from .models import PluginTask, ProcessingResult, TaskAction, TaskStatus
from .plugin_host import InstallOutcome


class PluginProcessor:
    """Processes a single plugin task against the installer and backup store."""

    def __init__(self, logger, installer, host, backup_store, activity_log, settings,
                 compatibility_checker=None, retain_backups: bool = False):
        self.logger = logger
        self.installer = installer
        self.host = host
        self.backup_store = backup_store
        self.activity_log = activity_log
        self.settings = settings
        self.compatibility_checker = compatibility_checker
        # Keep successful update backups so a recorded batch can be rolled back later
        self.retain_backups = retain_backups

    def process_task(self, task: PluginTask, dry_run: bool = False, batch_id: str = "") -> ProcessingResult:
        result = ProcessingResult(
            slug=task.slug,
            display_name=task.display_name,
            action=task.action,
            is_dry_run=dry_run,
        )

        if dry_run:
            self._simulate(task, result)
        else:
            self._execute(task, result)

        if not result.status.is_terminal:
            raise RuntimeError(f"Task {task.slug} finished in non-terminal state {result.status.value}")

        self._log_operation(task, result, batch_id)
        return result

    def should_activate(self, task: PluginTask) -> bool:
        """Per-task flag wins; otherwise the global auto-activate setting applies."""
        if task.activate is not None:
            return task.activate
        return self.settings.get_auto_activate()

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def _simulate(self, task: PluginTask, result: ProcessingResult) -> None:
        name = task.display_name
        issues = self.compatibility_checker.check_task(task) if self.compatibility_checker else []

        if issues:
            result.compatibility_issues = issues
            result.transition(TaskStatus.INCOMPATIBLE)
            result.messages.append(f'Skipped "{name}" due to compatibility issues.')
            result.messages.extend(issues)
            result.messages.append("No changes were made.")
            return

        result.transition(TaskStatus.SUCCESS)
        result.messages.append(f'Dry run: would {task.action.value} "{name}".')
        if self.should_activate(task):
            result.messages.append(f'Would activate "{name}" after installation.')
        result.messages.append("No changes were made.")

    # ------------------------------------------------------------------
    # Real run
    # ------------------------------------------------------------------

    def _execute(self, task: PluginTask, result: ProcessingResult) -> None:
        name = task.display_name
        plugin_dir = self.host.plugin_dir(task.slug)
        result.transition(TaskStatus.INSTALLING)

        backup_path = None
        if task.action is TaskAction.UPDATE:
            try:
                backup_path = self.backup_store.create_backup(plugin_dir)
            except BackupError as e:
                self.logger.error(f"Backup failed for {task.slug}: {e.message}")
                result.transition(TaskStatus.FAILED)
                result.messages.append(f'Failed to create backup for "{name}": {e.message}')
                return

        existed_before = os.path.exists(plugin_dir)
        outcome = self._run_installer(task)

        if not outcome.success:
            self._handle_install_failure(task, result, backup_path, existed_before, outcome.reason)
            return

        if backup_path:
            if self.retain_backups:
                result.backup_path = backup_path
            else:
                self.backup_store.cleanup_backup(backup_path)

        result.transition(TaskStatus.SUCCESS)
        verb = "updated" if task.action is TaskAction.UPDATE else "installed"
        result.messages.append(f'Successfully {verb} "{name}".')
        self.logger.info(f"Successfully {verb} {task.slug}")

        self._handle_activation(task, result)

    def _run_installer(self, task: PluginTask) -> InstallOutcome:
        try:
            if task.action is TaskAction.UPDATE:
                outcome = self.installer.update(task.target_identity, task.package_path)
            else:
                outcome = self.installer.install(task.package_path, task.target_identity)
        except Exception as e:
            self.logger.error(f"Installer raised for {task.slug}: {str(e)}")
            return InstallOutcome.failed(str(e))

        if not isinstance(outcome, InstallOutcome):
            return InstallOutcome.failed("Plugin installation returned an unexpected result.")
        return outcome

    def _handle_install_failure(self, task: PluginTask, result: ProcessingResult,
                                backup_path: Optional[str], existed_before: bool,
                                reason: Optional[str]) -> None:
        name = task.display_name
        plugin_dir = self.host.plugin_dir(task.slug)

        result.transition(TaskStatus.FAILED)
        result.messages.append(f'Failed to {task.action.value} "{name}": {reason}')
        self.logger.error(f"Failed to {task.action.value} {task.slug}: {reason}")

        if backup_path:
            try:
                self.backup_store.restore_backup(backup_path, plugin_dir)
            except BackupError as e:
                result.rolled_back = False
                result.messages.append(
                    f'Rollback of "{name}" failed: {e.message} Backup kept at {backup_path}.'
                )
                self.logger.error(f"Rollback failed for {task.slug}; backup kept at {backup_path}")
                return

            result.rolled_back = True
            result.messages.append(f'Restored "{name}" to the previous version.')
            self.backup_store.cleanup_backup(backup_path)
        elif existed_before:
            # The directory was not written by this install; leave it alone
            self.logger.warning(f"Not removing pre-existing directory {plugin_dir} after failed install")
        else:
            self.backup_store.remove_partial_install(plugin_dir)

    def _handle_activation(self, task: PluginTask, result: ProcessingResult) -> None:
        name = task.display_name

        if task.action is TaskAction.UPDATE and self.host.is_active(task.target_identity):
            result.activated = True
            return

        if not self.should_activate(task):
            return

        try:
            error = self.host.activate(task.target_identity, task.network_activate)
        except Exception as e:
            error = str(e)

        if error:
            result.messages.append(f'"{name}" could not be activated: {error}')
            self.logger.warning(f"Activation failed for {task.slug}: {error}")
        else:
            result.activated = True
            result.messages.append(f'Activated "{name}".')

    def _log_operation(self, task: PluginTask, result: ProcessingResult, batch_id: str) -> None:
        self.activity_log.append(task.action.value, {
            "batch_id": batch_id,
            "plugin_slug": task.slug,
            "plugin_name": task.display_name,
            "from_version": task.installed_version or "",
            "to_version": task.plugin_version or "",
            "status": result.status.value,
            "message": " ".join(result.messages),
            "is_dry_run": result.is_dry_run,
        })
