#!/usr/bin/env python3
"""
Data Models for the Bulk Plugin Installer

Explicit records for everything that flows through a batch:
- PluginTask: one requested install or update (input, immutable)
- ProcessingResult: per-task outcome produced by the processor
- ManifestEntry / BatchManifest: the durable record used for batch rollback
- RollbackItem / RollbackResult: outcome of rolling a batch back
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TaskAction(Enum):
    """Requested operation for a plugin."""
    INSTALL = "install"
    UPDATE = "update"


class TaskStatus(Enum):
    """Processing states of a single task."""
    PENDING = "pending"
    INSTALLING = "installing"
    SUCCESS = "success"
    FAILED = "failed"
    INCOMPATIBLE = "incompatible"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.SUCCESS, TaskStatus.FAILED, TaskStatus.INCOMPATIBLE})

# Allowed transitions of the per-task state machine
TASK_TRANSITIONS = {
    TaskStatus.PENDING: frozenset({TaskStatus.INSTALLING, TaskStatus.SUCCESS, TaskStatus.FAILED,
                                   TaskStatus.INCOMPATIBLE}),
    TaskStatus.INSTALLING: frozenset({TaskStatus.SUCCESS, TaskStatus.FAILED}),
    TaskStatus.SUCCESS: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.INCOMPATIBLE: frozenset(),
}


def identity_parts(target_identity: str) -> List[str]:
    """Path components of a target identity such as "hello/hello.py"."""
    return [part for part in target_identity.replace("\\", "/").split("/") if part]


def is_safe_slug(slug: str) -> bool:
    """A slug must name exactly one directory directly below the plugins root."""
    return bool(slug) and slug not in (".", "..") and not any(char in slug for char in "/\\\0")


def _optional_bool(value: Any) -> Optional[bool]:
    """Interpret a tri-state flag coming from JSON or form input."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class PluginTask:
    """Input descriptor for one plugin install or update."""
    slug: str
    action: TaskAction
    package_path: str = ""
    target_identity: str = ""
    installed_version: Optional[str] = None
    plugin_name: Optional[str] = None
    plugin_version: Optional[str] = None
    activate: Optional[bool] = None  # None inherits the global auto-activate setting
    network_activate: bool = False
    requires_python: Optional[str] = None
    requires_host: Optional[str] = None

    def __post_init__(self):
        if not self.slug:
            raise ValueError("Plugin task requires a slug")
        if not is_safe_slug(self.slug):
            raise ValueError(f'Invalid plugin slug: "{self.slug}"')
        if not self.target_identity:
            object.__setattr__(self, "target_identity", f"{self.slug}/{self.slug}.py")

        # The processor backs up and rolls back <root>/<slug>; the installer writes
        # to the first component of the identity. Both must be the same directory.
        parts = identity_parts(self.target_identity)
        if len(parts) < 2 or parts[0] != self.slug or any(part in (".", "..") for part in parts):
            raise ValueError(f'Target identity "{self.target_identity}" does not belong to plugin "{self.slug}"')

    @property
    def display_name(self) -> str:
        return self.plugin_name or self.slug

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PluginTask":
        """Build a task from a JSON payload (CLI task file or HTTP body)."""
        if not isinstance(data, dict):
            raise ValueError(f"Plugin task must be an object, got {type(data).__name__}")

        action_value = data.get("action", TaskAction.INSTALL.value)
        try:
            action = TaskAction(action_value)
        except ValueError:
            raise ValueError(f"Invalid action for {data.get('slug', '?')}: {action_value}")

        return cls(
            slug=str(data.get("slug", "")).strip(),
            action=action,
            package_path=data.get("package_path") or data.get("file_path") or "",
            target_identity=data.get("target_identity") or data.get("plugin_file") or "",
            installed_version=data.get("installed_version") or None,
            plugin_name=data.get("plugin_name") or None,
            plugin_version=data.get("plugin_version") or None,
            activate=_optional_bool(data.get("activate")),
            network_activate=bool(_optional_bool(data.get("network_activate"))),
            requires_python=data.get("requires_python") or None,
            requires_host=data.get("requires_host") or None,
        )


@dataclass
class ProcessingResult:
    """Outcome of one task. Only the processor handling the task mutates it."""
    slug: str
    display_name: str
    action: TaskAction
    status: TaskStatus = TaskStatus.PENDING
    messages: List[str] = field(default_factory=list)
    activated: bool = False
    rolled_back: bool = False
    is_dry_run: bool = False
    compatibility_issues: List[str] = field(default_factory=list)
    backup_path: Optional[str] = None

    def transition(self, status: TaskStatus) -> None:
        """Move to a new state, rejecting transitions the state machine does not allow."""
        if status not in TASK_TRANSITIONS[self.status]:
            raise ValueError(f"Invalid status transition for {self.slug}: "
                             f"{self.status.value} -> {status.value}")
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "plugin_name": self.display_name,
            "action": self.action.value,
            "status": self.status.value,
            "messages": list(self.messages),
            "activated": self.activated,
            "rolled_back": self.rolled_back,
            "is_dry_run": self.is_dry_run,
            "compatibility_issues": list(self.compatibility_issues),
        }


@dataclass
class BatchSummary:
    """Counts over the results of one batch."""
    total: int = 0
    installed: int = 0
    updated: int = 0
    failed: int = 0
    rolled_back: int = 0
    incompatible: int = 0

    @classmethod
    def from_results(cls, results: List[ProcessingResult]) -> "BatchSummary":
        summary = cls(total=len(results))
        for result in results:
            if result.status is TaskStatus.FAILED:
                summary.failed += 1
                if result.rolled_back:
                    summary.rolled_back += 1
            elif result.status is TaskStatus.INCOMPATIBLE:
                summary.incompatible += 1
            elif result.status is TaskStatus.SUCCESS:
                if result.action is TaskAction.UPDATE:
                    summary.updated += 1
                else:
                    summary.installed += 1
        return summary

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "installed": self.installed,
            "updated": self.updated,
            "failed": self.failed,
            "rolled_back": self.rolled_back,
            "incompatible": self.incompatible,
        }


@dataclass
class ManifestEntry:
    """What a batch did to one plugin."""
    slug: str
    action: TaskAction
    status: TaskStatus
    backup_path: Optional[str] = None
    plugin_name: str = ""
    from_version: str = ""
    to_version: str = ""
    activated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "slug": self.slug,
            "action": self.action.value,
            "status": self.status.value,
            "plugin_name": self.plugin_name,
            "from_version": self.from_version,
            "to_version": self.to_version,
            "activated": self.activated,
        }
        if self.backup_path:
            data["backup_path"] = self.backup_path
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestEntry":
        return cls(
            slug=str(data["slug"]),
            action=TaskAction(data["action"]),
            status=TaskStatus(data["status"]),
            backup_path=data.get("backup_path") or None,
            plugin_name=data.get("plugin_name", ""),
            from_version=data.get("from_version", ""),
            to_version=data.get("to_version", ""),
            activated=bool(data.get("activated", False)),
        )


@dataclass
class BatchManifest:
    """Durable record of a completed batch, keyed by batch id."""
    batch_id: str
    plugins: List[ManifestEntry] = field(default_factory=list)
    summary: Dict[str, int] = field(default_factory=dict)
    timestamp: Optional[str] = None
    user_id: Optional[str] = None
    expires_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "expires_at": self.expires_at,
            "plugins": [entry.to_dict() for entry in self.plugins],
            "summary": dict(self.summary),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchManifest":
        """Parse a persisted manifest. Raises KeyError/ValueError/TypeError when malformed."""
        plugins = data.get("plugins", [])
        if not isinstance(plugins, list):
            raise ValueError("Manifest plugins must be a list")
        expires_at = data.get("expires_at")
        return cls(
            batch_id=str(data["batch_id"]),
            plugins=[ManifestEntry.from_dict(entry) for entry in plugins],
            summary=dict(data.get("summary") or {}),
            timestamp=data.get("timestamp"),
            user_id=data.get("user_id"),
            expires_at=float(expires_at) if expires_at is not None else None,
        )


@dataclass
class RollbackItem:
    """Outcome of rolling back one manifest entry."""
    slug: str
    action: str  # restore, remove or skipped
    status: str  # success, failed or skipped
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"slug": self.slug, "action": self.action, "status": self.status, "message": self.message}


@dataclass
class RollbackResult:
    """Outcome of rolling back a whole batch."""
    success: bool
    failures: List[str] = field(default_factory=list)
    results: List[RollbackItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "failures": list(self.failures),
            "results": [item.to_dict() for item in self.results],
        }
