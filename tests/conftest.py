"""Shared fixtures for the bulk installer tests."""
import logging
import os

import pytest

from bulk_installer.utils import (
    ActivityLog, BackupStore, BatchManager, BatchManifestStore, CompatibilityChecker,
    InstallOutcome, JsonConfigStore, JsonKeyValueStore, PackageInstaller, PluginHost,
    PluginProcessor, SettingsManager,
)
from bulk_installer.utils.plugin_host import target_slug

START_TIME = 1_760_000_000.0


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DictKeyValueStore:
    """In-memory key/value store that ignores TTLs."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def set(self, key, value, ttl_seconds=None):
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    def get(self, key):
        return self.data.get(key)

    def delete(self, key):
        self.data.pop(key, None)

    def purge_expired(self):
        return 0


class RecordingInstaller:
    """Installer double that writes plugin directories and can be told to fail.

    fail: slug -> reason returned as a failed outcome
    partial: slugs that leave a half-written directory behind before failing
    raise_for: slug -> exception raised from the call
    """

    def __init__(self, plugins_root):
        self.plugins_root = plugins_root
        self.calls = []
        self.fail = {}
        self.partial = set()
        self.raise_for = {}

    def _write(self, target_identity, package_path, partial=False):
        slug = target_slug(target_identity)
        target_dir = os.path.join(self.plugins_root, slug)
        os.makedirs(target_dir, exist_ok=True)
        with open(os.path.join(self.plugins_root, target_identity), "w") as f:
            f.write(f"package: {package_path}\n")
        if partial:
            with open(os.path.join(target_dir, "partial.tmp"), "w") as f:
                f.write("incomplete")

    def _run(self, action, target_identity, package_path):
        slug = target_slug(target_identity)
        self.calls.append((action, slug))
        if slug in self.raise_for:
            raise self.raise_for[slug]
        if slug in self.fail:
            if slug in self.partial:
                self._write(target_identity, package_path, partial=True)
            return InstallOutcome.failed(self.fail[slug])
        self._write(target_identity, package_path)
        return InstallOutcome.ok()

    def install(self, package_path, target_identity):
        return self._run("install", target_identity, package_path)

    def update(self, target_identity, package_path):
        return self._run("update", target_identity, package_path)


def write_plugin(root, slug, version="1.0.0", extra_files=None):
    """Create root/slug/slug.py (plus extra files) and return the plugin directory."""
    plugin_dir = os.path.join(str(root), slug)
    os.makedirs(plugin_dir, exist_ok=True)
    with open(os.path.join(plugin_dir, f"{slug}.py"), "w") as f:
        f.write(f'"""\nPlugin Name: {slug}\nVersion: {version}\n"""\n')
    for name, content in (extra_files or {}).items():
        path = os.path.join(plugin_dir, name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(content)
    return plugin_dir


def read_tree(root):
    """Map of relative path -> file contents for every file under root."""
    tree = {}
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            path = os.path.join(dirpath, name)
            with open(path, "r") as f:
                tree[os.path.relpath(path, root)] = f.read()
    return tree


@pytest.fixture(autouse=True)
def reset_console_logger():
    # The CLI attaches a stream handler bound to the captured stderr of the test that ran it
    yield
    logging.getLogger("bulk_installer").handlers.clear()


@pytest.fixture
def logger():
    test_logger = logging.getLogger("bulk_installer.tests")
    test_logger.setLevel(logging.DEBUG)
    return test_logger


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def plugins_dir(tmp_path):
    path = tmp_path / "plugins"
    path.mkdir()
    return str(path)


@pytest.fixture
def backup_dir(tmp_path):
    return str(tmp_path / "backups")


@pytest.fixture
def state_dir(tmp_path):
    return str(tmp_path / "state")


@pytest.fixture
def packages_dir(tmp_path):
    path = tmp_path / "packages"
    path.mkdir()
    return str(path)


@pytest.fixture
def config_store(state_dir):
    return JsonConfigStore(os.path.join(state_dir, "options.json"))


@pytest.fixture
def kv_store(state_dir, clock):
    return JsonKeyValueStore(os.path.join(state_dir, "manifests.json"), clock)


@pytest.fixture
def settings(config_store, logger):
    return SettingsManager(config_store, logger)


@pytest.fixture
def activity_log(state_dir, logger):
    return ActivityLog(os.path.join(state_dir, "activity_log.json"), logger)


@pytest.fixture
def backup_store(logger, backup_dir, clock):
    return BackupStore(logger, backup_dir, clock)


@pytest.fixture
def host(logger, plugins_dir, config_store):
    return PluginHost(logger, plugins_dir, config_store)


@pytest.fixture
def package_installer(logger, plugins_dir):
    return PackageInstaller(logger, plugins_dir)


@pytest.fixture
def installer(plugins_dir):
    return RecordingInstaller(plugins_dir)


@pytest.fixture
def checker():
    return CompatibilityChecker(host_version="6.4.0", python_version="3.11.4")


@pytest.fixture
def processor(logger, installer, host, backup_store, activity_log, settings, checker):
    return PluginProcessor(logger, installer, host, backup_store, activity_log, settings, checker)


@pytest.fixture
def manifest_store(logger, kv_store, config_store, settings, backup_store, host, activity_log, clock):
    return BatchManifestStore(logger, kv_store, config_store, settings, backup_store, host,
                              activity_log, clock)


@pytest.fixture
def batch_manager(logger, installer, host, backup_store, activity_log, settings, checker,
                  manifest_store, clock):
    retaining_processor = PluginProcessor(
        logger, installer, host, backup_store, activity_log, settings, checker, retain_backups=True
    )
    return BatchManager(logger, retaining_processor, manifest_store, actor_id="7", clock=clock)
