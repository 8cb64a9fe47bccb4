#!/usr/bin/env python3
"""
Version Checker Utility for the Bulk Plugin Installer

Parses loosely formatted version strings and checks a plugin's declared
minimum requirements (Python, host application) against the running
environment. Used by dry runs to report plugins that could not be
installed.
"""

import platform
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from .models import PluginTask


@dataclass
class SemanticVersion:
    """Represents a version with major.minor.patch format."""
    major: int
    minor: int
    patch: int
    prerelease: Optional[str] = None

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        return version

    def _key(self):
        return (self.major, self.minor, self.patch)

    def __eq__(self, other) -> bool:
        if not isinstance(other, SemanticVersion):
            return False
        return (self._key(), self.prerelease) == (other._key(), other.prerelease)

    def __lt__(self, other) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented

        if self._key() != other._key():
            return self._key() < other._key()

        if self.prerelease is None:
            return False  # Release > prerelease
        if other.prerelease is None:
            return True
        return self.prerelease < other.prerelease

    def __le__(self, other) -> bool:
        return self == other or self < other

    def __gt__(self, other) -> bool:
        return not self <= other

    def __ge__(self, other) -> bool:
        return not self < other


VERSION_PATTERN = re.compile(
    r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:\.\d+)*"
    r"(?:[-.]?((?:alpha|beta|rc|a|b|dev|pre)[0-9A-Za-z.-]*))?(?:\+[0-9A-Za-z.-]+)?$",
    re.IGNORECASE,
)


def parse_version(version_string: str) -> SemanticVersion:
    """Parse "1", "1.2", "v1.2.3", "1.2.3-beta.1", "3.12.0rc1" and similar."""
    if version_string is None:
        raise ValueError("Version string is empty")

    cleaned = str(version_string).strip().lstrip("vV")
    match = VERSION_PATTERN.match(cleaned)
    if not match:
        raise ValueError(f"Cannot parse version format: {version_string}")

    major, minor, patch, prerelease = match.groups()
    return SemanticVersion(
        major=int(major),
        minor=int(minor or 0),
        patch=int(patch or 0),
        prerelease=prerelease.lower() if prerelease else None,
    )


def version_at_least(current: str, required: str) -> bool:
    """True when current >= required. Unparseable requirements are ignored."""
    try:
        required_version = parse_version(required)
    except ValueError:
        return True
    try:
        current_version = parse_version(current)
    except ValueError:
        return False
    return current_version >= required_version


class CompatibilityChecker:
    """Checks declared plugin requirements against the environment."""

    def __init__(self, host_version: str, python_version: Optional[str] = None):
        self.host_version = host_version
        self.python_version = python_version or platform.python_version()

    def check_task(self, task: PluginTask) -> List[str]:
        """Return a message per unmet requirement; an empty list means compatible."""
        issues = []

        if task.requires_python and not version_at_least(self.python_version, task.requires_python):
            issues.append(
                f"Requires Python {task.requires_python} or higher. "
                f"Current version: {self.python_version}."
            )

        if task.requires_host and not version_at_least(self.host_version, task.requires_host):
            issues.append(
                f"Requires host {task.requires_host} or higher. "
                f"Current version: {self.host_version}."
            )

        return issues

    def check_slug_conflicts(self, tasks: List[PluginTask]) -> Dict[str, str]:
        """Map each slug that appears more than once to an explanatory message."""
        counts: Dict[str, int] = {}
        for task in tasks:
            counts[task.slug] = counts.get(task.slug, 0) + 1

        return {
            slug: f'{count} queued plugins would install to the same directory "{slug}".'
            for slug, count in counts.items()
            if count > 1
        }
