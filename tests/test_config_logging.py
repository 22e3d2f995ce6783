"""
Configuration validation and structured logging helpers.
"""

import logging
from unittest.mock import patch

from content_vault.core import config
from content_vault.util.logging import logger, sanitize_payload


class TestConfig:
    """Test configuration checks."""

    def test_defaults_are_valid(self):
        assert config.validate_config() == []

    def test_invalid_values_reported(self):
        with patch.object(config, "BACKGROUND_WORKERS", 0), \
             patch.object(config, "PROPAGATION_STEP_TIMEOUT_SEC", 0):
            issues = config.validate_config()

        assert "BACKGROUND_WORKERS must be >= 1" in issues
        assert "PROPAGATION_STEP_TIMEOUT_SEC must be > 0" in issues


class TestLogging:
    """Test structured log output."""

    def test_sanitize_truncates_nested_strings(self):
        payload = {"a": "x" * 10, "b": ["y" * 10, 3]}
        assert sanitize_payload(payload, max_length=4) == {"a": "xxxx...", "b": ["yyyy...", 3]}

    def test_failed_operations_log_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="content_vault"):
            logger.log_operation("section.put", "failed", {"project_id": "p"})
            logger.log_operation("section.put", "success")

        levels = [r.levelno for r in caplog.records]
        assert levels == [logging.WARNING, logging.INFO]
        assert "Operation: section.put, Status: failed" in caplog.records[0].getMessage()
