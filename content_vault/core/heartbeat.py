"""
Heartbeat and repair sweep - periodic re-reconciliation of every current document.

Missed reconciliations and failed propagations are picked up here: the sweep
re-derives field rows from each current section document.
"""

import time
import threading
from typing import Any, Callable, Dict

from . import reconcile, section_store
from .config import get_heartbeat_interval, is_heartbeat_enabled, validate_config
from .errors import VaultError
from .field_registry import SectionRegistry, registry as default_registry
from ..util.logging import logger


tasks: Dict[str, Dict] = {}  # task_name -> {func, interval, last_run}
running = False
shutdown_event = None

REPAIR_TASK = "repair_sweep"


def register_task(name: str, interval_sec: int, func: Callable):
    """
    Register a task to be executed periodically.

    Args:
        name: Unique task identifier
        interval_sec: How often to run this task in seconds
        func: Function to call
    """
    if not callable(func):
        raise ValueError(f"Task function must be callable: {func}")

    if interval_sec < 1:
        raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

    tasks[name] = {
        "func": func,
        "interval": interval_sec,
        "last_run": None
    }

    logger.info(f"Registered heartbeat task '{name}' (every {interval_sec}s)")


def unregister_task(name: str):
    """Remove a task from the registry."""
    if name in tasks:
        del tasks[name]
        logger.info(f"Unregistered heartbeat task '{name}'")


def list_tasks():
    """Return list of registered task names."""
    return list(tasks.keys())


def start():
    """
    Start the heartbeat loop (blocking).

    Cooperative scheduling: each cycle runs the tasks that are due, isolating
    task failures, then sleeps briefly.
    """
    global running, shutdown_event

    if not is_heartbeat_enabled():
        logger.info("Heartbeat disabled (HEARTBEAT_ENABLED=false). Skipping start.")
        return

    if running:
        raise RuntimeError("Heartbeat already running")

    issues = validate_config()
    if issues:
        raise ValueError(f"Heartbeat configuration invalid: {issues}")

    running = True
    shutdown_event = threading.Event()
    logger.info(f"Starting heartbeat loop with tasks: {list(tasks.keys())}")

    try:
        while running and not shutdown_event.is_set():
            for name, task_info in list(tasks.items()):
                if should_run_task(name, task_info):
                    try:
                        run_task(name, task_info)
                    except RuntimeError as e:
                        # Error isolation - log error but continue loop
                        logger.error(str(e))

            shutdown_event.wait(0.1)
    finally:
        running = False
        logger.info("Heartbeat loop stopped")


def stop():
    """Stop the heartbeat loop."""
    global running

    if not running:
        return

    running = False
    if shutdown_event:
        shutdown_event.set()


def should_run_task(name: str, task_info: Dict) -> bool:
    """Check if a task should run this cycle."""
    if task_info["last_run"] is None:
        return True

    elapsed = time.monotonic() - task_info["last_run"]
    return elapsed >= task_info["interval"]


def run_task(name: str, task_info: Dict):
    """Execute a task and record timing."""
    start_time = time.monotonic()
    wall_start = time.time()

    try:
        result = task_info["func"]()
        end_time = time.monotonic()
        task_info["last_run"] = end_time
        logger.log_heartbeat_task(name, wall_start, time.time(), "success",
                                  result if isinstance(result, dict) else None)
        return result
    except Exception as e:
        end_time = time.monotonic()
        task_info["last_run"] = end_time
        duration = end_time - start_time
        logger.log_heartbeat_task(name, wall_start, time.time(), "failed", {"error": str(e)})
        raise RuntimeError(f"Task '{name}' failed after {duration:.2f}s: {e}")


def reset_task(name: str):
    """Reset a task's last_run time to force immediate execution."""
    if name in tasks:
        tasks[name]["last_run"] = None


def get_status():
    """Return current heartbeat status for monitoring."""
    if not is_heartbeat_enabled():
        return {"status": "disabled", "reason": "HEARTBEAT_ENABLED=false"}

    return {
        "status": "running" if running else "stopped",
        "tasks": {
            name: {
                "interval_sec": info["interval"],
                "last_run": info["last_run"],
                "next_run": info["last_run"] + info["interval"] if info["last_run"] else None
            }
            for name, info in tasks.items()
        }
    }


def repair_sweep(registry: SectionRegistry = None) -> Dict[str, Any]:
    """Re-reconcile every current section document of every active project."""
    registry = registry or default_registry
    summary = {"sections": 0, "created": 0, "updated": 0, "errors": 0, "skipped": 0}

    for project_id, section_type in section_store.list_current_keys():
        if not registry.is_known(section_type):
            summary["skipped"] += 1
            continue
        try:
            report = reconcile.repair(project_id, section_type, registry)
        except VaultError as e:
            logger.error(f"Repair of {section_type} in project {project_id} failed: {e}")
            summary["errors"] += 1
            continue
        summary["sections"] += 1
        summary["created"] += len(report.created)
        summary["updated"] += len(report.updated)
        summary["errors"] += len(report.errors)

    return summary


def register_repair_sweep(registry: SectionRegistry = None, interval_sec: int = None):
    """Register the repair sweep with the configured interval."""
    register_task(REPAIR_TASK, interval_sec or get_heartbeat_interval(),
                  lambda: repair_sweep(registry))
