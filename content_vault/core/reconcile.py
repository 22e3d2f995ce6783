"""
Reconciler - derives and repairs Field Store rows from a section document.

This is the only component that creates field rows from a document. A field
whose stored value is byte-equal (canonical JSON) to the flattened document
value is left alone, so re-saving an unchanged document never discards a
prior approval. Fields missing from a new document are not deleted.
"""

import sqlite3
import time
from typing import Any, Dict, Optional

from . import config, field_store, section_store
from .errors import NotFoundError, SchemaViolationError, VaultError
from .field_registry import SectionRegistry, registry as default_registry
from .paths import canonical_json, is_empty, set_path
from .schema import FieldRecord, PutResult, ReconciliationReport
from ..util.logging import logger


def flatten_document(section_type, document: Dict[str, Any], registry: SectionRegistry = None) -> Dict[str, Any]:
    """Flatten a document into {field_path: value}.

    Dicts recurse into dotted paths; a registered field path stops recursion
    and keeps its whole value. Lists and scalars are leaves. Empty values are
    dropped unless the path is a registered field.
    """
    registry = registry or default_registry
    registered = set(registry.get_section(section_type).field_ids)
    flat: Dict[str, Any] = {}

    def walk(node: Dict[str, Any], prefix: str) -> None:
        for key, value in node.items():
            path = f"{prefix}{key}"
            if path in registered:
                flat[path] = value
            elif isinstance(value, dict) and value:
                walk(value, path + ".")
            elif not is_empty(value):
                flat[path] = value

    walk(document or {}, "")
    return flat


def _reconcile_field(project_id: str, section_type: str, path: str, value: Any,
                     existing: Optional[FieldRecord], report: ReconciliationReport,
                     registry: SectionRegistry) -> None:
    if existing is None:
        created = field_store.create_if_missing(project_id, section_type, path, value, registry=registry)
        if created is not None:
            report.created.append(path)
            return
        # Another writer created it first; compare against that row
        existing = field_store.get_current(project_id, section_type, path, registry=registry)

    if canonical_json(existing.value) == canonical_json(value):
        report.unchanged.append(path)
        return

    field_store.upsert_version(project_id, section_type, path, value, approved_reset=True, registry=registry)
    report.updated.append(path)


def reconcile(project_id: str, section_type, document: Dict[str, Any],
              registry: SectionRegistry = None) -> ReconciliationReport:
    """Make the section's field rows consistent with a document.

    Failures are collected per field in report.errors and never raised, apart
    from configuration errors for an unknown section type.
    """
    registry = registry or default_registry
    section_type = registry.get_section(section_type).section_type
    report = ReconciliationReport()

    flat = flatten_document(section_type, document, registry)
    if config.debug_enabled():
        logger.info(f"DEBUG: {section_type} flattened to {sorted(flat)}")
    current = {record.field_id: record for record in field_store.list_current(project_id, section_type, registry)}

    for path, value in flat.items():
        try:
            _reconcile_field(project_id, section_type, path, value, current.get(path), report, registry)
        except (VaultError, sqlite3.Error) as e:
            logger.error(f"Reconciliation failed for {section_type}.{path} in project {project_id}: {e}")
            report.errors.append(f"{path}: {e}")

    logger.log_reconciliation(project_id, section_type, len(report.created), len(report.updated),
                              len(report.unchanged), len(report.errors))
    return report


def reconcile_to_head(project_id: str, section_type, version: int, document: Dict[str, Any],
                      registry: SectionRegistry = None, max_passes: int = 5) -> ReconciliationReport:
    """Reconcile after writing `document` as `version`, converging on the current document.

    A writer whose version has been superseded reconciles the current head
    instead, and a pass that finishes after the head moved is run again, so
    the last field writes always come from the latest document.
    """
    registry = registry or default_registry
    section_type = registry.get_section(section_type).section_type
    report = ReconciliationReport()

    for _ in range(max_passes):
        head_version = section_store.current_version(project_id, section_type, registry)
        if head_version is not None and head_version != version:
            head = section_store.get_current(project_id, section_type, registry)
            logger.info(f"{section_type} in project {project_id} moved from v{version} to v{head.version}; "
                        f"reconciling the current document")
            version, document = head.version, head.content

        report = reconcile(project_id, section_type, document, registry)
        if section_store.current_version(project_id, section_type, registry) in (None, version):
            return report

    logger.warning(f"{section_type} in project {project_id} kept moving during reconciliation")
    report.errors.append(f"document changed during reconciliation after {max_passes} passes; run repair")
    return report


def repair(project_id: str, section_type, registry: SectionRegistry = None) -> ReconciliationReport:
    """Re-run reconciliation from the current document and refresh stale field attributes.

    Registered fields whose value matches but whose label, type or metadata
    drifted from the registry get a new version that keeps their approval.
    """
    registry = registry or default_registry
    section = registry.get_section(section_type)
    document = section_store.get_current(project_id, section.section_type, registry)
    report = reconcile(project_id, section.section_type, document.content, registry)

    flat = flatten_document(section.section_type, document.content, registry)
    for record in field_store.list_current(project_id, section.section_type, registry):
        definition = section.field(record.field_id)
        if definition is None or record.field_id not in flat:
            continue
        if canonical_json(record.value) != canonical_json(flat[record.field_id]):
            continue
        if (record.label == definition.label and record.field_type == definition.field_type
                and record.metadata == definition.metadata and not record.is_custom):
            continue
        try:
            field_store.upsert_version(
                project_id, section.section_type, record.field_id, record.value,
                approved_reset=False,
                label=definition.label,
                field_type=definition.field_type,
                metadata=dict(definition.metadata),
                is_custom=False,
                registry=registry
            )
            report.updated.append(record.field_id)
        except (VaultError, sqlite3.Error) as e:
            logger.error(f"Attribute repair failed for {section.section_type}.{record.field_id}: {e}")
            report.errors.append(f"{record.field_id}: {e}")

    return report


def ensure_defaults(project_id: str, section_type, registry: SectionRegistry = None) -> ReconciliationReport:
    """Instantiate field rows for a section that has none yet.

    Uses the current document when there is one, otherwise empty values from
    the registry.
    """
    registry = registry or default_registry
    section = registry.get_section(section_type)
    report = ReconciliationReport()

    if field_store.list_current(project_id, section.section_type, registry):
        return report

    if not section.field_only:
        try:
            document = section_store.get_current(project_id, section.section_type, registry)
            return reconcile(project_id, section.section_type, document.content, registry)
        except NotFoundError:
            # Project existence is checked again by the writes below
            pass

    for definition in registry.fields_for(section.section_type):
        try:
            created = field_store.create_if_missing(
                project_id, section.section_type, definition.field_id,
                registry.default_value(definition), registry=registry
            )
            if created is not None:
                report.created.append(definition.field_id)
            else:
                report.unchanged.append(definition.field_id)
        except NotFoundError:
            raise
        except (VaultError, sqlite3.Error) as e:
            logger.error(f"Default field creation failed for {section.section_type}.{definition.field_id}: {e}")
            report.errors.append(f"{definition.field_id}: {e}")

    logger.log_operation("reconcile.ensure_defaults", "success",
                         {"project_id": project_id, "section_type": section.section_type,
                          "created": len(report.created)})
    return report


def merge_fields_into_document(project_id: str, section_type,
                               registry: SectionRegistry = None) -> Optional[PutResult]:
    """Write current field values back into a new document version.

    Returns None when the document already matches the fields.
    """
    registry = registry or default_registry
    section = registry.get_section(section_type)
    if section.field_only:
        raise SchemaViolationError(
            f"Section '{section.section_type}' is field-only and has no document",
            section_type=section.section_type
        )

    try:
        current = section_store.get_current(project_id, section.section_type, registry)
        content, expected_version = current.content, current.version
    except NotFoundError:
        # Raises again below if the project itself is missing
        content, expected_version = {}, 0

    merged = dict(content)
    for record in field_store.list_current(project_id, section.section_type, registry):
        merged = set_path(merged, record.field_id, record.value)

    if canonical_json(merged) == canonical_json(content):
        return None

    start_time = time.time()
    result = section_store.put_new(project_id, section.section_type, merged,
                                   expected_version=expected_version, registry=registry)
    logger.log_operation("reconcile.merge_fields", "success", {
        "project_id": project_id,
        "section_type": section.section_type,
        "version": result.version,
        "duration_ms": round((time.time() - start_time) * 1000, 2)
    })
    return result
