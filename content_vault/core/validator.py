"""
Schema Validator - sanitizes a proposed section document against its schema.

Unknown top-level keys are stripped and schema errors are reported alongside
the sanitized document, so partial content can still be persisted. Structural
violations (wrong shape entirely) hard-reject and are never sanitized.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from . import config
from .errors import SchemaViolationError, ValidationError
from .field_registry import FieldDefinition, FieldType, SectionRegistry, registry as default_registry
from ..util.logging import logger


@dataclass
class ValidationResult:
    data: Dict[str, Any]
    errors: List[Dict[str, Any]] = field(default_factory=list)
    stripped_keys: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def warnings(self) -> List[str]:
        messages = [f"Removed unknown key '{key}'" for key in self.stripped_keys]
        for error in self.errors:
            messages.append(f"{error['loc']}: {error['msg']}")
        return messages


def _looks_like(document: Dict[str, Any], section_type: str,
                registry: SectionRegistry) -> Tuple[Optional[str], int]:
    """The other section type whose shape best matches the document's keys, and how many keys it shares."""
    keys = set(document.keys())
    best, best_overlap = None, 0
    for other in registry.sections():
        if other == section_type:
            continue
        definition = registry.get_section(other)
        if definition.field_only:
            continue
        overlap = len(keys & set(definition.top_level_keys))
        if overlap > best_overlap:
            best, best_overlap = other, overlap
    return best, best_overlap


def validate_document(section_type, document: Any, registry: SectionRegistry = None) -> ValidationResult:
    """Validate and sanitize a section document.

    Raises ConfigurationError for unknown section types, SchemaViolationError
    for structural violations, and ValidationError for any schema error when
    SCHEMA_VALIDATION_STRICT is on.
    """
    registry = registry or default_registry
    definition = registry.get_section(section_type)
    section_type = definition.section_type

    if definition.field_only:
        raise SchemaViolationError(
            f"Section '{section_type}' is field-only and has no document",
            section_type=section_type
        )

    if not isinstance(document, dict):
        logger.log_schema_validation_error(section_type, [f"document is {type(document).__name__}"], hard_reject=True)
        raise SchemaViolationError(
            f"Document for '{section_type}' must be an object, got {type(document).__name__}",
            section_type=section_type
        )

    known_keys = set(definition.top_level_keys)
    sanitized = {k: v for k, v in document.items() if k in known_keys}
    stripped = [k for k in document.keys() if k not in known_keys]

    # Content of another section type is rejected, even when it shares a key with this one
    looks_like, other_overlap = _looks_like(document, section_type, registry)
    if document and (not sanitized or other_overlap > len(sanitized)):
        message = f"Document shape does not match section '{section_type}'"
        if looks_like:
            message += f"; it looks like a '{looks_like}' document"
        logger.log_schema_validation_error(section_type, [message], hard_reject=True)
        raise SchemaViolationError(message, section_type=section_type, looks_like=looks_like)

    errors = []
    try:
        definition.document_model.model_validate(sanitized)
    except PydanticValidationError as e:
        for err in e.errors():
            errors.append({
                "loc": ".".join(str(part) for part in err["loc"]),
                "msg": err["msg"],
                "type": err["type"],
            })

    if errors or stripped:
        logger.log_schema_validation_error(
            section_type,
            errors + [{"loc": key, "msg": "unknown key stripped"} for key in stripped],
            hard_reject=config.SCHEMA_VALIDATION_STRICT and bool(errors)
        )

    if errors and config.SCHEMA_VALIDATION_STRICT:
        raise ValidationError(
            f"Document for '{section_type}' failed schema validation",
            section_type=section_type,
            errors=errors
        )

    return ValidationResult(data=sanitized, errors=errors, stripped_keys=stripped)


def validate_field_value(definition: FieldDefinition, value: Any) -> List[str]:
    """Check one field value against its registry definition. Returns a list of problems."""
    if definition is None:
        return ["Field definition not found"]

    problems = []
    metadata = definition.metadata or {}

    if definition.field_type in (FieldType.TEXT.value, FieldType.TEXTAREA.value):
        if not isinstance(value, str):
            problems.append("Value must be a string")
        elif metadata.get("maxLength") and len(value) > metadata["maxLength"]:
            problems.append(f"Exceeds maximum length of {metadata['maxLength']} characters")

    elif definition.field_type == FieldType.LIST.value:
        if not isinstance(value, list):
            problems.append("Value must be a list")
        else:
            if metadata.get("minItems") and len(value) < metadata["minItems"]:
                problems.append(f"Must have at least {metadata['minItems']} items")
            if metadata.get("maxItems") and len(value) > metadata["maxItems"]:
                problems.append(f"Cannot exceed {metadata['maxItems']} items")
            if metadata.get("itemMaxLength"):
                for idx, item in enumerate(value):
                    if isinstance(item, str) and len(item) > metadata["itemMaxLength"]:
                        problems.append(f"Item {idx + 1} exceeds maximum length of {metadata['itemMaxLength']} characters")

    elif definition.field_type == FieldType.STRUCTURED.value:
        if not isinstance(value, dict):
            problems.append("Value must be an object")

    return problems
