#!/usr/bin/env python3
"""
Plugin Host Utility for the Bulk Plugin Installer

The pieces of the host application the processor talks to:
- PluginHost: where plugins live on disk and which ones are active
- PackageInstaller: unpacks a plugin package into the plugins directory

A package is either a plugin directory or an archive that
shutil.unpack_archive understands (zip, tar, tar.gz, ...). Archives that
wrap everything in a single top-level folder are unwrapped.
"""

import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import List, Optional

from .models import identity_parts, is_safe_slug


@dataclass(frozen=True)
class InstallOutcome:
    """Result of an installer call."""
    success: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "InstallOutcome":
        return cls(success=True)

    @classmethod
    def failed(cls, reason: str) -> "InstallOutcome":
        return cls(success=False, reason=reason or "Plugin installation returned an unexpected result.")


def target_slug(target_identity: str) -> str:
    """Directory name of a target identity such as "hello/hello.py"."""
    parts = identity_parts(target_identity)
    return parts[0] if parts else ""


def resolve_plugin_dir(plugins_root: str, slug: str) -> str:
    """Directory for slug directly below plugins_root.

    Raises ValueError for a slug that would resolve anywhere else.
    """
    real_root = os.path.realpath(plugins_root)
    candidate = os.path.normpath(os.path.join(real_root, slug)) if slug else real_root
    if not is_safe_slug(slug) or os.path.dirname(candidate) != real_root:
        raise ValueError(f'Plugin directory for "{slug}" is outside {plugins_root}')
    return os.path.join(plugins_root, slug)


class PluginHost:
    """Plugin directories and activation state of the host application."""

    ACTIVE_KEY = "active_plugins"
    NETWORK_ACTIVE_KEY = "active_network_plugins"

    def __init__(self, logger, plugins_root: str, config_store):
        self.logger = logger
        self.plugins_root = plugins_root
        self.config_store = config_store

    def plugin_dir(self, slug: str) -> str:
        return resolve_plugin_dir(self.plugins_root, slug)

    def _active_list(self, key: str) -> List[str]:
        active = self.config_store.get(key, [])
        return active if isinstance(active, list) else []

    def get_active_plugins(self, network_wide: bool = False) -> List[str]:
        return self._active_list(self.NETWORK_ACTIVE_KEY if network_wide else self.ACTIVE_KEY)

    def is_active(self, target_identity: str) -> bool:
        return (target_identity in self._active_list(self.ACTIVE_KEY)
                or target_identity in self._active_list(self.NETWORK_ACTIVE_KEY))

    def activate(self, target_identity: str, network_wide: bool = False) -> Optional[str]:
        """Mark a plugin active. Returns an error message, or None on success."""
        parts = identity_parts(target_identity)
        if len(parts) < 2 or any(part in (".", "..") for part in parts):
            return "Invalid plugin identity."
        try:
            plugin_path = os.path.join(self.plugin_dir(parts[0]), *parts[1:])
        except ValueError:
            return "Invalid plugin identity."

        if not os.path.exists(plugin_path):
            return "Plugin file does not exist."

        key = self.NETWORK_ACTIVE_KEY if network_wide else self.ACTIVE_KEY
        active = self._active_list(key)
        if target_identity not in active:
            active.append(target_identity)
            self.config_store.set(key, active)

        self.logger.info(f"Activated {target_identity}{' network-wide' if network_wide else ''}")
        return None


class PackageInstaller:
    """Installs and updates plugins from packages on local disk."""

    def __init__(self, logger, plugins_root: str):
        self.logger = logger
        self.plugins_root = plugins_root

    def _target_dir(self, target_identity: str) -> str:
        return resolve_plugin_dir(self.plugins_root, target_slug(target_identity))

    def _stage(self, package_path: str, staging_dir: str) -> str:
        """Unpack or copy the package into staging_dir and return the plugin root inside it."""
        staged = os.path.join(staging_dir, "package")

        if os.path.isdir(package_path):
            shutil.copytree(package_path, staged, symlinks=True)
        else:
            shutil.unpack_archive(package_path, staged)

        entries = [name for name in os.listdir(staged) if not name.startswith("__MACOSX")]
        if len(entries) == 1 and os.path.isdir(os.path.join(staged, entries[0])):
            return os.path.join(staged, entries[0])
        return staged

    def _copy_package(self, package_path: str, target_dir: str) -> None:
        os.makedirs(self.plugins_root, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="bpi_stage_") as staging_dir:
            plugin_root = self._stage(package_path, staging_dir)
            shutil.copytree(plugin_root, target_dir, symlinks=True)

    def install(self, package_path: str, target_identity: str) -> InstallOutcome:
        if not package_path or not os.path.exists(package_path):
            return InstallOutcome.failed(f"Package not found: {package_path}")

        try:
            target_dir = self._target_dir(target_identity)
        except ValueError as e:
            return InstallOutcome.failed(str(e))

        if os.path.exists(target_dir):
            return InstallOutcome.failed("Destination folder already exists.")

        try:
            self._copy_package(package_path, target_dir)
        except (OSError, ValueError) as e:
            self.logger.error(f"Install of {package_path} failed: {str(e)}")
            return InstallOutcome.failed(str(e))

        self.logger.info(f"Installed {package_path} -> {target_dir}")
        return InstallOutcome.ok()

    def update(self, target_identity: str, package_path: str) -> InstallOutcome:
        if not package_path or not os.path.exists(package_path):
            return InstallOutcome.failed(f"Package not found: {package_path}")

        try:
            target_dir = self._target_dir(target_identity)
        except ValueError as e:
            return InstallOutcome.failed(str(e))

        if not os.path.isdir(target_dir):
            return InstallOutcome.failed("Plugin is not installed.")

        try:
            shutil.rmtree(target_dir)
            self._copy_package(package_path, target_dir)
        except (OSError, ValueError) as e:
            self.logger.error(f"Update of {target_identity} failed: {str(e)}")
            return InstallOutcome.failed(str(e))

        self.logger.info(f"Updated {target_identity} from {package_path}")
        return InstallOutcome.ok()
