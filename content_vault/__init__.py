"""
Content vault - versioned, dual-representation storage for generated content sections.
"""

from .api.service import VaultService
from .core.config import VERSION as __version__
from .core.errors import (
    VaultError,
    ValidationError,
    SchemaViolationError,
    NotFoundError,
    ConflictError,
    ConfigurationError,
)
from .core.field_registry import FieldDefinition, SectionDefinition, SectionRegistry, SectionType

__all__ = [
    'VaultService',
    'VaultError',
    'ValidationError',
    'SchemaViolationError',
    'NotFoundError',
    'ConflictError',
    'ConfigurationError',
    'FieldDefinition',
    'SectionDefinition',
    'SectionRegistry',
    'SectionType'
]
