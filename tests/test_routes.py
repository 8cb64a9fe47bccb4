"""Tests for the plugin HTTP API."""
import os

import pytest

from backend import create_app
from config import TestingConfig
from conftest import write_plugin


@pytest.fixture
def app(plugins_dir, backup_dir, state_dir):
    class Config(TestingConfig):
        PLUGINS_DIR = plugins_dir
        BACKUP_DIR = backup_dir
        STATE_DIR = state_dir
        ACTIVITY_LOG_PATH = os.path.join(state_dir, "activity_log.json")
        HOST_VERSION = "6.4"

    return create_app(Config)


@pytest.fixture
def client(app):
    return app.test_client()


def test_process_and_rollback(client, packages_dir, plugins_dir):
    package = write_plugin(packages_dir, "hello")

    response = client.post("/api/plugins/process", headers={"X-Actor-Id": "3"},
                           json={"plugins": [{"slug": "hello", "action": "install", "package_path": package}]})

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["batch_id"].endswith("_3")
    assert body["results"][0]["status"] == "success"
    assert os.path.isdir(os.path.join(plugins_dir, "hello"))

    batches = client.get("/api/plugins/batches").get_json()
    assert [batch["batch_id"] for batch in batches["batches"]] == [body["batch_id"]]

    rollback = client.post(f"/api/plugins/rollback/{body['batch_id']}")
    assert rollback.status_code == 200
    assert rollback.get_json()["success"] is True
    assert not os.path.exists(os.path.join(plugins_dir, "hello"))


def test_dry_run(client, plugins_dir):
    response = client.post("/api/plugins/dry-run", json=[{"slug": "hello", "action": "install"}])

    assert response.status_code == 200
    body = response.get_json()
    assert body["is_dry_run"] is True
    assert body["results"][0]["messages"][-1] == "No changes were made."
    assert os.listdir(plugins_dir) == []


def test_process_requires_body(client):
    response = client.post("/api/plugins/process")

    assert response.status_code == 400
    assert response.get_json()["error"] == "Request body is required"


def test_process_rejects_invalid_tasks(client):
    response = client.post("/api/plugins/process", json=[{"slug": "x", "action": "explode"}])

    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_rollback_unknown_batch(client):
    response = client.post("/api/plugins/rollback/bpi_0_0")

    assert response.status_code == 404
    assert response.get_json()["failures"] == ["Batch manifest not found."]


def test_cleanup(client):
    response = client.post("/api/plugins/cleanup")

    assert response.status_code == 200
    assert response.get_json()["expired"] == []


def test_log_roundtrip(client):
    client.post("/api/plugins/dry-run", json=[{"slug": "a", "action": "install"},
                                              {"slug": "b", "action": "install"}])

    entries = client.get("/api/plugins/log?limit=1").get_json()["entries"]
    assert [entry["plugin_slug"] for entry in entries] == ["b"]

    assert client.get("/api/plugins/log?limit=many").status_code == 400

    assert client.delete("/api/plugins/log").status_code == 200
    assert client.get("/api/plugins/log").get_json()["entries"] == []


def test_settings(client):
    assert client.get("/api/plugins/settings").get_json()["settings"]["bpi_max_plugins"] == 20

    updated = client.put("/api/plugins/settings", json={"bpi_max_plugins": 1})
    assert updated.status_code == 200
    assert updated.get_json()["settings"]["bpi_max_plugins"] == 1

    rejected = client.put("/api/plugins/settings", json={"bpi_rollback_retention": 0})
    assert rejected.status_code == 400
    assert "between 1 and 720" in rejected.get_json()["error"]

    too_many = client.post("/api/plugins/dry-run", json=[{"slug": "a"}, {"slug": "b"}])
    assert too_many.status_code == 400
    assert "maximum is 1" in too_many.get_json()["error"]


def test_admin_token_required_when_configured(app, client):
    app.config["ADMIN_TOKEN"] = "s3cret"

    assert client.get("/api/plugins/batches").status_code == 401
    assert client.get("/api/plugins/batches", headers={"X-Admin-Token": "wrong"}).status_code == 401
    assert client.get("/api/plugins/batches", headers={"X-Admin-Token": "s3cret"}).status_code == 200
