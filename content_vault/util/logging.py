"""
Structured logging for vault operations.
Section/field writes, reconciliation, propagation, sync fan-out and approvals.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for vault store and background operations."""

    def __init__(self, name: str = "content_vault"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "rejected", "abandoned"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_section_write(self, project_id: str, section_type: str, version: int, status: str = "success", details: Dict[str, Any] = None):
        """Log a Section Store write."""
        log_details = {"project_id": project_id, "section_type": section_type, "version": version}
        if details:
            log_details.update(details)

        self.log_operation("section.put", status, log_details)

    def log_field_write(self, project_id: str, section_type: str, field_id: str, version: int, status: str = "success", details: Dict[str, Any] = None):
        """Log a Field Store write."""
        log_details = {
            "project_id": project_id,
            "section_type": section_type,
            "field_id": field_id,
            "version": version
        }
        if details:
            log_details.update(details)

        self.log_operation("field.upsert", status, log_details)

    def log_reconciliation(self, project_id: str, section_type: str, created: int, updated: int, unchanged: int, errors: int = 0):
        """Log the outcome of a reconciliation pass."""
        log_details = {
            "project_id": project_id,
            "section_type": section_type,
            "created": created,
            "updated": updated,
            "unchanged": unchanged,
            "errors": errors
        }
        status = "success" if errors == 0 else "partial"
        self.log_operation("reconcile", status, log_details)

    def log_propagation(self, project_id: str, source_section: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log a dependency propagation run with its duration."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"project_id": project_id, "source_section": source_section, "duration_ms": duration_ms}
        if details:
            log_details.update(details)

        self.log_operation("propagation.run", status, log_details)

    def log_propagation_step(self, source_section: str, target_section: str, status: str, details: Dict[str, Any] = None):
        """Log one dependent-section update inside a propagation run."""
        log_details = {"source_section": source_section, "target_section": target_section}
        if details:
            log_details.update(details)

        self.log_operation("propagation.step", status, log_details)

    def log_sync_outcome(self, rule_id: str, target_section: str, status: str, details: Dict[str, Any] = None):
        """Log the result of applying one sync rule."""
        log_details = {"rule_id": rule_id, "target_section": target_section}
        if details:
            log_details.update(details)

        self.log_operation("sync.rule", status, log_details)

    def log_approval(self, project_id: str, section_type: str, fields_approved: int, sync_rules: int = 0):
        """Log a section approval."""
        log_details = {
            "project_id": project_id,
            "section_type": section_type,
            "fields_approved": fields_approved,
            "sync_rules": sync_rules
        }
        self.log_operation("approval.section", "approved", log_details)

    def log_background_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log background task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Background task '{task_name}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Background task '{task_name}' failed after {duration_ms}ms"

        self.log_operation(f"background.{task_name}", status, log_details)

    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log heartbeat task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)

        self.log_operation(f"heartbeat.{task_name}", status, log_details)

    def log_schema_validation_error(self, section_type: str, errors: List[Any], hard_reject: bool = False):
        """Log schema validation errors with sanitized details."""
        # Never log submitted values, only where and why validation failed
        sanitized_errors = []
        for error in errors:
            if isinstance(error, dict):
                sanitized_error = error.copy()
                for field in ['input', 'value']:
                    if field in sanitized_error:
                        sanitized_error[field] = "[REDACTED]"
                sanitized_errors.append(sanitized_error)
            else:
                sanitized_errors.append(str(error)[:100])

        log_details = {
            "section_type": section_type,
            "errors": sanitized_errors,
            "error_count": len(sanitized_errors)
        }
        status = "rejected" if hard_reject else "sanitized"
        self.log_operation("schema_validation.error", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def sanitize_payload(payload: Any, max_length: int = 100) -> Any:
    """Truncate long strings in a payload before it is logged or audited."""
    if isinstance(payload, dict):
        return {k: sanitize_payload(v, max_length) for k, v in payload.items()}
    elif isinstance(payload, str):
        return payload[:max_length] + "..." if len(payload) > max_length else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, max_length) for item in payload]
    else:
        return payload
