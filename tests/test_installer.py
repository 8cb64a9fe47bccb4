"""Tests for the BulkInstaller facade and the command line interface."""
import json
import os
import threading

import pytest

from bulk_installer.installer import BulkInstaller, load_tasks, main
from bulk_installer.utils import PluginTask, TaskAction
from conftest import RecordingInstaller, read_tree, write_plugin


@pytest.fixture
def bulk(plugins_dir, backup_dir, state_dir, logger, clock):
    return BulkInstaller(plugins_dir=plugins_dir, backup_dir=backup_dir, state_dir=state_dir,
                         host_version="6.4", logger=logger, clock=clock)


def cli_args(plugins_dir, backup_dir, state_dir, *command):
    return ["--plugins-dir", plugins_dir, "--backup-dir", backup_dir, "--state-dir", state_dir, *command]


def test_load_tasks_accepts_list_and_wrapper():
    payload = [{"slug": "a", "action": "install", "file_path": "/tmp/a.zip", "activate": "true"}]

    tasks = load_tasks(payload)

    assert tasks == load_tasks({"plugins": payload})
    assert tasks[0].package_path == "/tmp/a.zip"
    assert tasks[0].activate is True
    assert tasks[0].target_identity == "a/a.py"


@pytest.mark.parametrize("payload", [
    {"tasks": []},
    "plugins",
    [{"slug": "a", "action": "delete"}],
    [{"action": "install"}],
    [{"slug": "..", "action": "install", "target_identity": "evil/evil.py"}],
    [{"slug": "foo", "action": "update", "target_identity": "bar/bar.py"}],
])
def test_load_tasks_rejects_bad_payloads(payload):
    with pytest.raises(ValueError):
        load_tasks(payload)


def test_run_and_roll_back_a_batch(bulk, packages_dir, plugins_dir, backup_dir):
    original = read_tree(write_plugin(plugins_dir, "old", version="1.0.0"))
    new_package = write_plugin(packages_dir, "new")
    old_package = write_plugin(os.path.join(packages_dir, "v2"), "old", version="2.0.0")
    tasks = [
        PluginTask(slug="new", action=TaskAction.INSTALL, package_path=new_package, activate=True),
        PluginTask(slug="old", action=TaskAction.UPDATE, package_path=old_package, installed_version="1.0.0"),
    ]

    response = bulk.run_batch(tasks)

    assert response["summary"]["installed"] == 1
    assert response["summary"]["updated"] == 1
    assert [r["status"] for r in response["results"]] == ["success", "success"]
    assert bulk.list_batches()[0]["batch_id"] == response["batch_id"]
    assert bulk.host.is_active("new/new.py")

    rollback = bulk.rollback_batch(response["batch_id"])

    assert rollback["success"] is True
    assert not os.path.exists(os.path.join(plugins_dir, "new"))
    assert read_tree(os.path.join(plugins_dir, "old")) == original
    assert os.listdir(backup_dir) == []
    assert bulk.list_batches() == []


def test_dry_run_response(bulk, plugins_dir):
    tasks = [PluginTask(slug="a", action=TaskAction.INSTALL, package_path="/nowhere/a.zip")]

    response = bulk.run_batch(tasks, dry_run=True)

    assert response["is_dry_run"] is True
    assert response["message"] == "Dry run complete. No changes were made."
    assert response["results"][0]["status"] == "success"
    assert bulk.list_batches() == []
    assert os.listdir(plugins_dir) == []


def test_rejects_empty_and_oversized_batches(bulk):
    bulk.update_settings({"bpi_max_plugins": 2})
    tasks = [PluginTask(slug=f"p{i}", action=TaskAction.INSTALL) for i in range(3)]

    with pytest.raises(ValueError, match="No plugins"):
        bulk.run_batch([])
    with pytest.raises(ValueError, match="maximum is 2"):
        bulk.run_batch(tasks, dry_run=True)


def test_slug_conflicts_are_reported(bulk):
    tasks = [PluginTask(slug="same", action=TaskAction.INSTALL) for _ in range(2)]

    response = bulk.run_batch(tasks, dry_run=True)

    assert response["warnings"] == ['2 queued plugins would install to the same directory "same".']


def test_cleanup_expired_after_retention(bulk, packages_dir, clock):
    bulk.run_batch([PluginTask(slug="a", action=TaskAction.INSTALL,
                               package_path=write_plugin(packages_dir, "a"))])
    clock.advance(25 * 3600)

    assert len(bulk.cleanup_expired()) == 1
    assert bulk.list_batches() == []


def test_installers_sharing_state_never_reuse_a_batch_id(plugins_dir, backup_dir, state_dir, packages_dir,
                                                        logger, clock):
    def installer():
        return BulkInstaller(plugins_dir=plugins_dir, backup_dir=backup_dir, state_dir=state_dir,
                             logger=logger, clock=clock)

    first = installer().run_batch([PluginTask(slug="a", action=TaskAction.INSTALL,
                                              package_path=write_plugin(packages_dir, "a"))])
    second_installer = installer()
    second = second_installer.run_batch([PluginTask(slug="b", action=TaskAction.INSTALL,
                                                    package_path=write_plugin(packages_dir, "b"))])

    assert first["batch_id"] == "bpi_1760000000_0"
    assert second["batch_id"] == "bpi_1760000000_0_1"
    batches = {batch["batch_id"]: [p["slug"] for p in batch["plugins"]]
               for batch in second_installer.list_batches()}
    assert batches == {"bpi_1760000000_0": ["a"], "bpi_1760000000_0_1": ["b"]}

    assert second_installer.rollback_batch(first["batch_id"])["success"] is True
    assert not os.path.exists(os.path.join(plugins_dir, "a"))
    assert os.path.isdir(os.path.join(plugins_dir, "b"))


def test_overlapping_batches_run_one_at_a_time(plugins_dir, backup_dir, state_dir, logger, clock):
    entered = threading.Event()
    release = threading.Event()

    class GatedInstaller(RecordingInstaller):
        def install(self, package_path, target_identity):
            if target_identity.startswith("first/"):
                entered.set()
                release.wait(5)
            return super().install(package_path, target_identity)

    gated = GatedInstaller(plugins_dir)
    bulk = BulkInstaller(plugins_dir=plugins_dir, backup_dir=backup_dir, state_dir=state_dir,
                         logger=logger, clock=clock, installer=gated)
    responses = {}

    def run(slug):
        responses[slug] = bulk.run_batch([PluginTask(slug=slug, action=TaskAction.INSTALL)])

    first = threading.Thread(target=run, args=("first",))
    second = threading.Thread(target=run, args=("second",))
    first.start()
    assert entered.wait(5)
    second.start()
    second.join(0.2)

    assert second.is_alive()
    assert gated.calls == [("install", "first")]

    release.set()
    first.join(5)
    second.join(5)

    assert [r["slug"] for r in responses["first"]["results"]] == ["first"]
    assert [r["slug"] for r in responses["second"]["results"]] == ["second"]
    assert responses["first"]["batch_id"] != responses["second"]["batch_id"]
    assert responses["second"]["summary"]["total"] == 1


def test_activity_log_via_facade(bulk):
    bulk.run_batch([PluginTask(slug="a", action=TaskAction.INSTALL)], dry_run=True)

    assert bulk.get_log()[0]["plugin_slug"] == "a"
    bulk.clear_log()
    assert bulk.get_log() == []


# ----------------------------------------------------------------------
# CLI
# ----------------------------------------------------------------------

def test_cli_without_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_cli_process_and_rollback(tmp_path, plugins_dir, backup_dir, state_dir, packages_dir, capsys):
    task_file = tmp_path / "tasks.json"
    task_file.write_text(json.dumps([
        {"slug": "hello", "action": "install", "package_path": write_plugin(packages_dir, "hello")},
    ]))

    assert main(cli_args(plugins_dir, backup_dir, state_dir, "process", str(task_file))) == 0
    output = capsys.readouterr().out
    assert "[SUCCESS] hello (install)" in output
    assert os.path.isdir(os.path.join(plugins_dir, "hello"))

    batch_id = output.split("bulk-installer rollback ", 1)[1].split()[0]
    assert main(cli_args(plugins_dir, backup_dir, state_dir, "batches")) == 0
    assert batch_id in capsys.readouterr().out

    assert main(cli_args(plugins_dir, backup_dir, state_dir, "rollback", batch_id)) == 0
    assert "Batch rollback completed successfully." in capsys.readouterr().out
    assert not os.path.exists(os.path.join(plugins_dir, "hello"))


def test_cli_dry_run_and_log(tmp_path, plugins_dir, backup_dir, state_dir, capsys):
    task_file = tmp_path / "tasks.json"
    task_file.write_text(json.dumps({"plugins": [{"slug": "hello", "action": "install"}]}))

    assert main(cli_args(plugins_dir, backup_dir, state_dir, "process", str(task_file), "--dry-run")) == 0
    assert "=== DRY RUN" in capsys.readouterr().out

    assert main(cli_args(plugins_dir, backup_dir, state_dir, "log", "--limit", "5")) == 0
    assert "[DRY RUN] install hello: success" in capsys.readouterr().out


def test_cli_failed_batch_exit_code(tmp_path, plugins_dir, backup_dir, state_dir, capsys):
    task_file = tmp_path / "tasks.json"
    task_file.write_text(json.dumps([{"slug": "ghost", "action": "update", "package_path": "/nowhere"}]))

    assert main(cli_args(plugins_dir, backup_dir, state_dir, "process", str(task_file))) == 1
    assert "[FAILED] ghost (update)" in capsys.readouterr().out


def test_cli_unreadable_task_file(tmp_path, plugins_dir, backup_dir, state_dir, capsys):
    assert main(cli_args(plugins_dir, backup_dir, state_dir, "process", str(tmp_path / "missing.json"))) == 1
    assert "Cannot read task file" in capsys.readouterr().out


def test_cli_unknown_rollback(plugins_dir, backup_dir, state_dir, capsys):
    assert main(cli_args(plugins_dir, backup_dir, state_dir, "rollback", "bpi_0_0")) == 1
    assert "Batch manifest not found." in capsys.readouterr().out


def test_cli_cleanup(plugins_dir, backup_dir, state_dir, capsys):
    assert main(cli_args(plugins_dir, backup_dir, state_dir, "cleanup")) == 0
    assert "Removed 0 expired batch(es)" in capsys.readouterr().out
