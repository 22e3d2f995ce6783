"""
Vault error taxonomy.

Only these exceptions escape a store or service call. Reconciliation,
propagation and sync problems are reported as warnings/outcome records instead.
"""

from typing import Any, Dict, List, Optional


class VaultError(Exception):
    """Base exception for all vault errors."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class ValidationError(VaultError):
    """A document or value was rejected by schema validation."""

    def __init__(self, message: str, section_type: str = None, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.section_type = section_type
        self.errors = errors or []


class SchemaViolationError(ValidationError):
    """Document has the wrong top-level shape for its section type. Never sanitized."""

    def __init__(self, message: str, section_type: str = None, looks_like: str = None, errors=None):
        super().__init__(message, section_type=section_type, errors=errors)
        self.looks_like = looks_like


class NotFoundError(VaultError):
    """Unknown or deleted project, or no such section/field/version."""
    pass


class ConflictError(VaultError):
    """A write lost a race on the current-version pointer.

    The losing write, when it got that far, is stored as a non-current version
    (``stored_version``) so its content is never lost. Callers may retry.
    """

    def __init__(self, message: str, current_version: Optional[int] = None,
                 stored_version: Optional[int] = None, original_error: Exception = None):
        super().__init__(message, original_error)
        self.current_version = current_version
        self.stored_version = stored_version


class ConfigurationError(VaultError):
    """Section type or rule unknown to the registry. Fatal, never retried."""
    pass


class StaleSourceError(ConflictError):
    """A derived write was based on a source version that is no longer current. Nothing was stored."""
    pass
