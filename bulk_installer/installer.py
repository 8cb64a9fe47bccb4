#!/usr/bin/env python3
"""
Bulk Plugin Installer

Installs and updates a batch of plugins in one run with per-plugin recovery:
updates are backed up first and restored when they fail, failed fresh
installs are cleaned up, and every real batch is recorded so it can be
rolled back as a whole until its retention window ends.
"""

import os
import sys
import json
import time
import logging
import argparse
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from .utils import (
    ActivityLog, BackupStore, BatchManager, BatchManifestStore, CompatibilityChecker,
    JsonConfigStore, JsonKeyValueStore, PackageInstaller, PluginHost, PluginProcessor,
    PluginTask, SettingsManager, setup_logger
)

# Constants
DEFAULT_PLUGINS_DIR = os.environ.get("BPI_PLUGINS_DIR", "/var/lib/bulk-installer/plugins")
DEFAULT_BACKUP_DIR = os.environ.get("BPI_BACKUP_DIR", "/var/lib/bulk-installer/backups")
DEFAULT_STATE_DIR = os.environ.get("BPI_STATE_DIR", "/var/lib/bulk-installer/state")
DEFAULT_HOST_VERSION = os.environ.get("BPI_HOST_VERSION", "1.0.0")
MANIFESTS_FILE = "manifests.json"
OPTIONS_FILE = "options.json"
ACTIVITY_LOG_FILE = "activity_log.json"


def load_tasks(payload: Any) -> List[PluginTask]:
    """Parse a task list from decoded JSON: a list of task objects or {"plugins": [...]}."""
    if isinstance(payload, dict):
        payload = payload.get("plugins")
    if not isinstance(payload, list):
        raise ValueError("Expected a list of plugin tasks")
    return [PluginTask.from_dict(item) for item in payload]


class BulkInstaller:
    """Wires the batch components together from a set of directories."""

    def __init__(self, plugins_dir: str = DEFAULT_PLUGINS_DIR, backup_dir: str = DEFAULT_BACKUP_DIR,
                 state_dir: str = DEFAULT_STATE_DIR, activity_log_path: Optional[str] = None,
                 host_version: str = DEFAULT_HOST_VERSION, actor_id: str = "0",
                 logger: Optional[logging.Logger] = None, clock: Callable[[], float] = time.time,
                 installer=None):
        self.logger = logger or setup_logger()
        self.plugins_dir = plugins_dir
        self.state_dir = state_dir

        # Persistence
        self.config_store = JsonConfigStore(os.path.join(state_dir, OPTIONS_FILE))
        self.kv_store = JsonKeyValueStore(os.path.join(state_dir, MANIFESTS_FILE), clock)
        self.settings = SettingsManager(self.config_store, self.logger)
        self.activity_log = ActivityLog(
            activity_log_path or os.path.join(state_dir, ACTIVITY_LOG_FILE), self.logger
        )

        # Host collaborators
        self.backup_store = BackupStore(self.logger, backup_dir, clock)
        self.host = PluginHost(self.logger, plugins_dir, self.config_store)
        self.package_installer = installer or PackageInstaller(self.logger, plugins_dir)
        self.compatibility_checker = CompatibilityChecker(host_version)

        # Batch processing
        self.manifest_store = BatchManifestStore(
            self.logger, self.kv_store, self.config_store, self.settings,
            self.backup_store, self.host, self.activity_log, clock
        )
        self.processor = PluginProcessor(
            self.logger, self.package_installer, self.host, self.backup_store,
            self.activity_log, self.settings, self.compatibility_checker,
            retain_backups=True
        )
        self.batch_manager = BatchManager(self.logger, self.processor, self.manifest_store, actor_id, clock)
        # One batch at a time; the batch manager keeps the running batch on the instance
        self._batch_lock = Lock()

    @classmethod
    def from_config(cls, config: Dict[str, Any], logger: Optional[logging.Logger] = None) -> "BulkInstaller":
        """Build an installer from a Flask-style config mapping."""
        return cls(
            plugins_dir=config.get("PLUGINS_DIR", DEFAULT_PLUGINS_DIR),
            backup_dir=config.get("BACKUP_DIR", DEFAULT_BACKUP_DIR),
            state_dir=config.get("STATE_DIR", DEFAULT_STATE_DIR),
            activity_log_path=config.get("ACTIVITY_LOG_PATH"),
            host_version=config.get("HOST_VERSION", DEFAULT_HOST_VERSION),
            logger=logger,
        )

    def run_batch(self, tasks: List[PluginTask], dry_run: bool = False,
                  actor_id: Optional[str] = None) -> Dict[str, Any]:
        """Process a batch and return {batch_id, results, summary}.

        Raises ValueError for an empty batch or one larger than bpi_max_plugins.
        """
        if not tasks:
            raise ValueError("No plugins specified.")

        max_plugins = self.settings.get_max_plugins()
        if len(tasks) > max_plugins:
            raise ValueError(f"Too many plugins: {len(tasks)} requested, the maximum is {max_plugins}.")

        conflicts = self.compatibility_checker.check_slug_conflicts(tasks)
        for slug, message in conflicts.items():
            self.logger.warning(f"Slug conflict for {slug}: {message}")

        with self._batch_lock:
            results = self.batch_manager.process_batch(tasks, dry_run=dry_run, actor_id=actor_id)
            response = {
                "batch_id": self.batch_manager.batch_id,
                "results": [result.to_dict() for result in results],
                "summary": self.batch_manager.get_batch_summary().to_dict(),
            }

        if conflicts:
            response["warnings"] = list(conflicts.values())
        if dry_run:
            response["is_dry_run"] = True
            response["message"] = "Dry run complete. No changes were made."
        return response

    def rollback_batch(self, batch_id: str) -> Dict[str, Any]:
        return self.manifest_store.rollback_batch(batch_id).to_dict()

    def list_batches(self) -> List[Dict[str, Any]]:
        """Active batches, newest first."""
        batches = [manifest.to_dict() for manifest in self.manifest_store.get_active_batches()]
        return sorted(batches, key=lambda batch: batch.get("expires_at") or 0, reverse=True)

    def cleanup_expired(self) -> List[str]:
        expired = self.manifest_store.cleanup_expired()
        self.kv_store.purge_expired()
        return expired

    def get_log(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        return self.activity_log.get_entries(limit, offset)

    def clear_log(self) -> None:
        self.activity_log.clear()
        self.logger.info("Activity log cleared")

    def get_settings(self) -> Dict[str, Any]:
        return self.settings.get_all()

    def update_settings(self, data: Dict[str, Any]) -> Dict[str, Any]:
        settings, errors = self.settings.update_settings(data)
        return {"settings": settings, "errors": errors}


def _print_results(response: Dict[str, Any]) -> None:
    header = "DRY RUN" if response.get("is_dry_run") else "BATCH"
    print(f"=== {header} {response['batch_id']} ===")
    for warning in response.get("warnings", []):
        print(f"  [WARNING] {warning}")
    for result in response["results"]:
        print(f"  [{result['status'].upper()}] {result['plugin_name']} ({result['action']})")
        for message in result["messages"]:
            print(f"     {message}")

    summary = response["summary"]
    print()
    print(f"Total: {summary['total']}  Installed: {summary['installed']}  Updated: {summary['updated']}  "
          f"Failed: {summary['failed']}  Rolled back: {summary['rolled_back']}  "
          f"Incompatible: {summary['incompatible']}")
    if not response.get("is_dry_run"):
        print(f"Roll back this batch with: bulk-installer rollback {response['batch_id']}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI interface."""
    parser = argparse.ArgumentParser(
        description="Bulk Plugin Installer - install and update plugins in batches with rollback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES:
  # Preview a batch without changing anything
  bulk-installer process plugins.json --dry-run

  # Install/update every plugin listed in plugins.json
  bulk-installer process plugins.json

  # List batches that can still be rolled back
  bulk-installer batches

  # Undo a whole batch
  bulk-installer rollback bpi_1760000000_0

  # Drop expired batches and their backups
  bulk-installer cleanup

  # Show the 20 most recent activity log entries
  bulk-installer log --limit 20
        """
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--plugins-dir", default=DEFAULT_PLUGINS_DIR, help="Directory plugins are installed into")
    parser.add_argument("--backup-dir", default=DEFAULT_BACKUP_DIR, help="Directory update backups are kept in")
    parser.add_argument("--state-dir", default=DEFAULT_STATE_DIR, help="Directory for manifests, options and logs")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    process_parser = subparsers.add_parser("process", help="Install/update the plugins listed in a JSON file")
    process_parser.add_argument("task_file", help="JSON file with a list of plugin tasks")
    process_parser.add_argument("--dry-run", action="store_true", help="Simulate the batch without changes")

    rollback_parser = subparsers.add_parser("rollback", help="Roll back a recorded batch")
    rollback_parser.add_argument("batch_id", help="Batch id printed by the process command")

    subparsers.add_parser("batches", help="List batches that can still be rolled back")
    subparsers.add_parser("cleanup", help="Remove expired batches and their backups")

    log_parser = subparsers.add_parser("log", help="Show recent activity log entries")
    log_parser.add_argument("--limit", type=int, default=50, help="Number of entries to show")
    log_parser.add_argument("--offset", type=int, default=0, help="Number of newest entries to skip")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logger = setup_logger(debug=args.debug)
    installer = BulkInstaller(
        plugins_dir=args.plugins_dir,
        backup_dir=args.backup_dir,
        state_dir=args.state_dir,
        logger=logger,
    )

    try:
        if args.command == "process":
            try:
                with open(args.task_file, "r") as f:
                    tasks = load_tasks(json.load(f))
            except (OSError, json.JSONDecodeError, ValueError) as e:
                print(f"Error: Cannot read task file {args.task_file}: {e}")
                return 1

            try:
                response = installer.run_batch(tasks, dry_run=args.dry_run)
            except ValueError as e:
                print(f"Error: {e}")
                return 1

            _print_results(response)
            return 0 if response["summary"]["failed"] == 0 else 1

        elif args.command == "rollback":
            result = installer.rollback_batch(args.batch_id)
            for item in result["results"]:
                print(f"  [{item['status'].upper()}] {item['slug']}: {item['message']}")
            for failure in result["failures"]:
                print(f"  [ERROR] {failure}")
            print("Batch rollback completed successfully." if result["success"]
                  else "Batch rollback completed with errors.")
            return 0 if result["success"] else 1

        elif args.command == "batches":
            batches = installer.list_batches()
            if not batches:
                print("No batches available for rollback")
                return 0
            print("=== ACTIVE BATCHES ===")
            for batch in batches:
                summary = batch.get("summary", {})
                print(f"  {batch['batch_id']}  ({batch.get('timestamp') or 'unknown time'})")
                print(f"     Plugins: {len(batch['plugins'])}  Installed: {summary.get('installed', 0)}  "
                      f"Updated: {summary.get('updated', 0)}  Failed: {summary.get('failed', 0)}")
            return 0

        elif args.command == "cleanup":
            expired = installer.cleanup_expired()
            print(f"Removed {len(expired)} expired batch(es)")
            return 0

        elif args.command == "log":
            entries = installer.get_log(limit=args.limit, offset=args.offset)
            if not entries:
                print("Activity log is empty")
                return 0
            for entry in entries:
                prefix = "[DRY RUN] " if entry.get("is_dry_run") else ""
                target = entry.get("plugin_name") or entry.get("batch_id")
                print(f"{entry['timestamp']}  {prefix}{entry['action']} {target}: {entry['status']}")
                if entry.get("message"):
                    print(f"     {entry['message']}")
            return 0

    except Exception as e:
        print(f"Fatal error: {e}")
        if args.debug:
            import traceback
            traceback.print_exc()
        return 1

    return 1


if __name__ == "__main__":
    sys.exit(main())
