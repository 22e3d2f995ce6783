"""
Vault configuration - environment driven, read once at import.
Stores read DB_PATH through this module at call time so it can be repointed.
"""

import os

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/vault.db")
DB_BUSY_TIMEOUT_SEC = float(os.getenv("DB_BUSY_TIMEOUT_SEC", "10"))

# Schema validation: strict mode hard-rejects any validation error
SCHEMA_VALIDATION_STRICT = os.getenv("SCHEMA_VALIDATION_STRICT", "false").lower() == "true"

# Background work (dependency propagation and sync fan-out)
BACKGROUND_WORKERS = int(os.getenv("BACKGROUND_WORKERS", "4"))
PROPAGATION_ENABLED = os.getenv("PROPAGATION_ENABLED", "true").lower() == "true"
PROPAGATION_STEP_TIMEOUT_SEC = float(os.getenv("PROPAGATION_STEP_TIMEOUT_SEC", "30"))
SYNC_ENABLED = os.getenv("SYNC_ENABLED", "true").lower() == "true"

# Periodic repair sweep (default disabled)
HEARTBEAT_ENABLED = os.getenv("HEARTBEAT_ENABLED", "false").lower() == "true"
HEARTBEAT_INTERVAL_SEC = int(os.getenv("HEARTBEAT_INTERVAL_SEC", "300"))

# Version string
VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def is_propagation_enabled():
    """Check if dependency propagation runs after document writes."""
    return PROPAGATION_ENABLED


def is_sync_enabled():
    """Check if sync rules fan out on approval."""
    return SYNC_ENABLED


def is_heartbeat_enabled():
    """Check if the periodic repair sweep is enabled."""
    return HEARTBEAT_ENABLED


def get_heartbeat_interval():
    """Get heartbeat interval in seconds."""
    return HEARTBEAT_INTERVAL_SEC


def get_background_workers():
    """Get the size of the background worker pool."""
    return BACKGROUND_WORKERS


def get_propagation_step_timeout():
    """Get the time budget in seconds for one dependent-section update."""
    return PROPAGATION_STEP_TIMEOUT_SEC


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if BACKGROUND_WORKERS < 1:
        issues.append("BACKGROUND_WORKERS must be >= 1")

    if PROPAGATION_STEP_TIMEOUT_SEC <= 0:
        issues.append("PROPAGATION_STEP_TIMEOUT_SEC must be > 0")

    if DB_BUSY_TIMEOUT_SEC <= 0:
        issues.append("DB_BUSY_TIMEOUT_SEC must be > 0")

    if HEARTBEAT_INTERVAL_SEC < 1:
        issues.append("HEARTBEAT_INTERVAL_SEC must be >= 1")

    return issues
