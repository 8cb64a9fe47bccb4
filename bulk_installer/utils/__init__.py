"""
Bulk Installer Utilities Package

This package contains the building blocks of the bulk plugin installer:
- models: tasks, results, manifests and rollback records
- backup_store: directory backups with restore and cleanup
- plugin_host: plugin directories, activation state and package installation
- plugin_processor: drives one task to a terminal state
- batch_manager: sequential batch orchestration
- batch_manifest_store: durable batch manifests, batch rollback and expiry
- storage: JSON file stores (key/value with TTL, plain options)
- settings: validated user settings
- version_checker: version parsing and compatibility checks
- logger: console logger setup and the JSON activity log
"""

from .models import (
    PluginTask, ProcessingResult, BatchSummary, ManifestEntry, BatchManifest,
    RollbackItem, RollbackResult, TaskAction, TaskStatus,
)
from .backup_store import BackupStore, BackupError, BackupErrorCode
from .plugin_host import PluginHost, PackageInstaller, InstallOutcome
from .plugin_processor import PluginProcessor
from .batch_manager import BatchManager
from .batch_manifest_store import BatchManifestStore
from .storage import JsonKeyValueStore, JsonConfigStore
from .settings import SettingsManager
from .version_checker import CompatibilityChecker, SemanticVersion, parse_version
from .logger import ActivityLog, setup_logger

__all__ = [
    # Models
    'PluginTask',
    'ProcessingResult',
    'BatchSummary',
    'ManifestEntry',
    'BatchManifest',
    'RollbackItem',
    'RollbackResult',
    'TaskAction',
    'TaskStatus',

    # Backups
    'BackupStore',
    'BackupError',
    'BackupErrorCode',

    # Host collaborators
    'PluginHost',
    'PackageInstaller',
    'InstallOutcome',

    # Processing
    'PluginProcessor',
    'BatchManager',
    'BatchManifestStore',

    # Persistence and settings
    'JsonKeyValueStore',
    'JsonConfigStore',
    'SettingsManager',

    # Compatibility
    'CompatibilityChecker',
    'SemanticVersion',
    'parse_version',

    # Logging
    'ActivityLog',
    'setup_logger',
]
