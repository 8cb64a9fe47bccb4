"""
Interface to the bulk plugin installer.

Provides Python functions the routes call. Each returns a dict with a
success flag plus either the operation payload or an error message, so
routes only decide on the HTTP status.
"""
from typing import Any, Dict, Optional
from flask import current_app
from bulk_installer.installer import BulkInstaller, load_tasks

EXTENSION_KEY = 'bulk_installer'


def get_installer() -> BulkInstaller:
    """Return the installer bound to the current app, creating it on first use."""
    installer = current_app.extensions.get(EXTENSION_KEY)
    if installer is None:
        installer = BulkInstaller.from_config(current_app.config, logger=current_app.logger)
        current_app.extensions[EXTENSION_KEY] = installer
    return installer


def process_plugins(payload: Any, dry_run: bool = False, actor_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Run a batch of plugin tasks.

    Args:
        payload: Decoded request body, a task list or {"plugins": [...]}
        dry_run: Simulate without touching the filesystem
        actor_id: Id of the requesting user, used in the batch id

    Returns:
        Dict with success status and the batch response, or an error
    """
    try:
        tasks = load_tasks(payload)
        response = get_installer().run_batch(tasks, dry_run=dry_run, actor_id=actor_id)
    except ValueError as e:
        return {"success": False, "error": str(e)}

    response["success"] = True
    return response


def rollback_batch(batch_id: str) -> Dict[str, Any]:
    result = get_installer().rollback_batch(batch_id)
    if not result["success"]:
        result["error"] = "; ".join(result["failures"])
    return result


def list_batches() -> Dict[str, Any]:
    return {"success": True, "batches": get_installer().list_batches()}


def cleanup_expired() -> Dict[str, Any]:
    expired = get_installer().cleanup_expired()
    return {"success": True, "expired": expired, "message": f"Removed {len(expired)} expired batch(es)."}


def get_activity_log(limit: int = 50, offset: int = 0) -> Dict[str, Any]:
    return {"success": True, "entries": get_installer().get_log(limit, offset)}


def clear_activity_log() -> Dict[str, Any]:
    get_installer().clear_log()
    return {"success": True, "message": "Activity log cleared."}


def get_settings() -> Dict[str, Any]:
    return {"success": True, "settings": get_installer().get_settings()}


def update_settings(data: Dict[str, Any]) -> Dict[str, Any]:
    result = get_installer().update_settings(data)
    result["success"] = not result["errors"]
    if result["errors"]:
        result["error"] = " ".join(result["errors"])
    return result
