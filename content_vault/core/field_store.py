"""
Field Store - current and historical value of each addressable field.

Keyed by (project, section type, field id). Each field carries its own
approval flag; a new version starts unapproved unless the caller explicitly
asks to carry the previous flag over (identical-value repairs only).
"""

from typing import Any, Dict, List, Optional

from .dao import require_project
from .db import get_db, transaction, parse_timestamp
from .errors import ConflictError, NotFoundError, ValidationError
from .field_registry import FieldType, SectionRegistry, registry as default_registry
from .paths import canonical_json, load_json
from .schema import FieldRecord
from ..util.logging import logger

_SELECT = '''
    SELECT v.project_id, v.section_type, v.field_id, v.version, v.value, v.label,
           v.field_type, v.metadata, v.is_custom, v.is_approved, v.display_order,
           v.created_at, v.updated_at,
           CASE WHEN h.current_version = v.version THEN 1 ELSE 0 END AS is_current
    FROM field_versions v
    LEFT JOIN field_heads h
      ON h.project_id = v.project_id AND h.section_type = v.section_type AND h.field_id = v.field_id
'''

_CURRENT = " AND v.version = h.current_version"


def _row_to_record(row) -> FieldRecord:
    return FieldRecord(
        project_id=row["project_id"],
        section_type=row["section_type"],
        field_id=row["field_id"],
        value=load_json(row["value"]),
        label=row["label"],
        field_type=row["field_type"],
        metadata=load_json(row["metadata"], {}),
        is_custom=bool(row["is_custom"]),
        is_approved=bool(row["is_approved"]),
        display_order=row["display_order"],
        version=row["version"],
        is_current_version=bool(row["is_current"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def infer_field_type(value: Any) -> str:
    """Type tag for a value with no registry definition."""
    if isinstance(value, list):
        return FieldType.LIST.value
    if isinstance(value, dict):
        return FieldType.STRUCTURED.value
    if isinstance(value, str) and len(value) > 200:
        return FieldType.TEXTAREA.value
    return FieldType.TEXT.value


def _head_version(conn, project_id: str, section_type: str, field_id: str) -> Optional[int]:
    row = conn.execute(
        "SELECT current_version FROM field_heads WHERE project_id = ? AND section_type = ? AND field_id = ?",
        (project_id, section_type, field_id)
    ).fetchone()
    return row["current_version"] if row else None


def _next_display_order(conn, project_id: str, section_type: str, registry: SectionRegistry) -> int:
    row = conn.execute(
        "SELECT MAX(v.display_order) AS max_order FROM field_versions v "
        "JOIN field_heads h ON h.project_id = v.project_id AND h.section_type = v.section_type "
        "AND h.field_id = v.field_id AND h.current_version = v.version "
        "WHERE v.project_id = ? AND v.section_type = ?",
        (project_id, section_type)
    ).fetchone()
    stored_max = row["max_order"] if row["max_order"] is not None else -1
    registered = registry.fields_for(section_type)
    registry_max = max((f.default_order for f in registered), default=-1)
    return max(stored_max, registry_max) + 1


def _fetch(conn, project_id: str, section_type: str, field_id: str, version: int) -> FieldRecord:
    row = conn.execute(
        _SELECT + " WHERE v.project_id = ? AND v.section_type = ? AND v.field_id = ? AND v.version = ?",
        (project_id, section_type, field_id, version)
    ).fetchone()
    return _row_to_record(row)


def next_display_order(project_id: str, section_type, registry: SectionRegistry = None) -> int:
    """Display order for a custom field appended to the end of a section."""
    registry = registry or default_registry
    section_type = registry.get_section(section_type).section_type
    with get_db() as conn:
        return _next_display_order(conn, project_id, section_type, registry)


def list_current(project_id: str, section_type, registry: SectionRegistry = None) -> List[FieldRecord]:
    """Current field records of a section ordered by display order, then field id."""
    section_type = (registry or default_registry).get_section(section_type).section_type
    with get_db() as conn:
        require_project(conn, project_id)
        rows = conn.execute(
            _SELECT + " WHERE v.project_id = ? AND v.section_type = ?" + _CURRENT +
            " ORDER BY v.display_order, v.field_id",
            (project_id, section_type)
        ).fetchall()
    return [_row_to_record(row) for row in rows]


def list_approved(project_id: str, section_type, registry: SectionRegistry = None) -> List[FieldRecord]:
    """Current, approved field records; what the publishing pipeline reads."""
    return [record for record in list_current(project_id, section_type, registry) if record.is_approved]


def get_current(project_id: str, section_type, field_id: str, registry: SectionRegistry = None) -> FieldRecord:
    section_type = (registry or default_registry).get_section(section_type).section_type
    with get_db() as conn:
        require_project(conn, project_id)
        row = conn.execute(
            _SELECT + " WHERE v.project_id = ? AND v.section_type = ? AND v.field_id = ?" + _CURRENT,
            (project_id, section_type, field_id)
        ).fetchone()
    if row is None:
        raise NotFoundError(f"Field '{section_type}.{field_id}' not found in project {project_id}")
    return _row_to_record(row)


def list_versions(project_id: str, section_type, field_id: str, registry: SectionRegistry = None) -> List[FieldRecord]:
    """History of one field, newest first."""
    section_type = (registry or default_registry).get_section(section_type).section_type
    with get_db() as conn:
        require_project(conn, project_id)
        rows = conn.execute(
            _SELECT + " WHERE v.project_id = ? AND v.section_type = ? AND v.field_id = ? ORDER BY v.version DESC",
            (project_id, section_type, field_id)
        ).fetchall()
    return [_row_to_record(row) for row in rows]


def upsert_version(project_id: str, section_type, field_id: str, value: Any, approved_reset: bool = True,
                   label: Optional[str] = None, field_type: Optional[str] = None,
                   metadata: Optional[Dict[str, Any]] = None, is_custom: Optional[bool] = None,
                   display_order: Optional[int] = None, expected_version: Optional[int] = None,
                   registry: SectionRegistry = None) -> FieldRecord:
    """Write a new version of a field and make it current.

    Attributes not given are inherited from the previous version, or taken
    from the registry for a first version. approved_reset=False carries the
    previous approval flag over; it is reserved for the reconciler.
    """
    registry = registry or default_registry
    section = registry.get_section(section_type)
    section_type = section.section_type
    if not field_id or not isinstance(field_id, str):
        raise ValidationError("field_id is required", section_type=section_type)

    conflict = False
    with transaction() as conn:
        require_project(conn, project_id)
        head = _head_version(conn, project_id, section_type, field_id)
        previous = _fetch(conn, project_id, section_type, field_id, head) if head is not None else None

        if previous is not None:
            label = label if label is not None else previous.label
            field_type = field_type or previous.field_type
            metadata = metadata if metadata is not None else previous.metadata
            is_custom = is_custom if is_custom is not None else previous.is_custom
            display_order = display_order if display_order is not None else previous.display_order
            is_approved = previous.is_approved if not approved_reset else False
        else:
            definition = section.field(field_id)
            if definition is not None:
                label = label if label is not None else definition.label
                field_type = field_type or definition.field_type
                metadata = metadata if metadata is not None else dict(definition.metadata)
                is_custom = bool(is_custom) if is_custom is not None else False
                display_order = display_order if display_order is not None else definition.default_order
            else:
                label = label if label is not None else field_id
                field_type = field_type or infer_field_type(value)
                metadata = metadata if metadata is not None else {}
                is_custom = True if is_custom is None else is_custom
                if display_order is None:
                    display_order = _next_display_order(conn, project_id, section_type, registry)
            is_approved = False

        row = conn.execute(
            "SELECT MAX(version) AS max_version FROM field_versions "
            "WHERE project_id = ? AND section_type = ? AND field_id = ?",
            (project_id, section_type, field_id)
        ).fetchone()
        version = (row["max_version"] or 0) + 1
        conn.execute('''
            INSERT INTO field_versions
                (project_id, section_type, field_id, version, value, label, field_type,
                 metadata, is_custom, is_approved, display_order)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (project_id, section_type, field_id, version, canonical_json(value), label, field_type,
              canonical_json(metadata), bool(is_custom), bool(is_approved), display_order))

        if expected_version is not None and (head or 0) != expected_version:
            conflict = True
        else:
            conn.execute('''
                INSERT INTO field_heads (project_id, section_type, field_id, current_version) VALUES (?, ?, ?, ?)
                ON CONFLICT(project_id, section_type, field_id) DO UPDATE SET current_version = excluded.current_version
            ''', (project_id, section_type, field_id, version))

        record = _fetch(conn, project_id, section_type, field_id, version)

    if conflict:
        logger.log_field_write(project_id, section_type, field_id, version, "conflict",
                               {"expected_version": expected_version, "current_version": head})
        raise ConflictError(
            f"Field '{section_type}.{field_id}' moved from version {expected_version} to {head}; "
            f"value stored as non-current version {version}",
            current_version=head,
            stored_version=version
        )

    logger.log_field_write(project_id, section_type, field_id, version,
                           details={"approved_reset": approved_reset})
    return record


def create_if_missing(project_id: str, section_type, field_id: str, value: Any,
                      registry: SectionRegistry = None) -> Optional[FieldRecord]:
    """Create version 1 of a field only if the field has no current row. Returns None if it existed."""
    registry = registry or default_registry
    section = registry.get_section(section_type)
    section_type = section.section_type
    definition = section.field(field_id)

    with transaction() as conn:
        require_project(conn, project_id)
        if _head_version(conn, project_id, section_type, field_id) is not None:
            return None
        if definition is not None:
            label, field_type = definition.label, definition.field_type
            metadata, is_custom, display_order = dict(definition.metadata), False, definition.default_order
        else:
            label, field_type, metadata, is_custom = field_id, infer_field_type(value), {}, True
            display_order = _next_display_order(conn, project_id, section_type, registry)
        row = conn.execute(
            "SELECT MAX(version) AS max_version FROM field_versions "
            "WHERE project_id = ? AND section_type = ? AND field_id = ?",
            (project_id, section_type, field_id)
        ).fetchone()
        version = (row["max_version"] or 0) + 1
        conn.execute('''
            INSERT INTO field_versions
                (project_id, section_type, field_id, version, value, label, field_type,
                 metadata, is_custom, is_approved, display_order)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, FALSE, ?)
        ''', (project_id, section_type, field_id, version, canonical_json(value), label, field_type,
              canonical_json(metadata), is_custom, display_order))
        conn.execute(
            "INSERT INTO field_heads (project_id, section_type, field_id, current_version) VALUES (?, ?, ?, ?)",
            (project_id, section_type, field_id, version)
        )
        record = _fetch(conn, project_id, section_type, field_id, version)

    logger.log_field_write(project_id, section_type, field_id, version, details={"created": True})
    return record


def approve_all(project_id: str, section_type, registry: SectionRegistry = None) -> List[FieldRecord]:
    """Approve every field row that is current at the moment of the write.

    Membership in "current" is re-checked against field_heads inside the write
    transaction, so a version that supersedes a row concurrently is never
    approved by a stale snapshot.
    """
    section_type = (registry or default_registry).get_section(section_type).section_type
    with transaction() as conn:
        require_project(conn, project_id)
        cursor = conn.execute('''
            UPDATE field_versions SET is_approved = TRUE, updated_at = CURRENT_TIMESTAMP
            WHERE project_id = ? AND section_type = ? AND is_approved = FALSE
              AND EXISTS (
                SELECT 1 FROM field_heads h
                WHERE h.project_id = field_versions.project_id
                  AND h.section_type = field_versions.section_type
                  AND h.field_id = field_versions.field_id
                  AND h.current_version = field_versions.version
              )
        ''', (project_id, section_type))
        newly_approved = cursor.rowcount
        rows = conn.execute(
            _SELECT + " WHERE v.project_id = ? AND v.section_type = ?" + _CURRENT +
            " ORDER BY v.display_order, v.field_id",
            (project_id, section_type)
        ).fetchall()

    records = [_row_to_record(row) for row in rows]
    logger.log_operation("field.approve_all", "success", {
        "project_id": project_id,
        "section_type": section_type,
        "approved": len(records),
        "newly_approved": newly_approved
    })
    return records
