"""
Section Store - current and historical nested document per (project, section type).

Single source of truth for what a section currently says. Every write inserts
a new version row; the current version is moved by compare-and-set on the
section_heads pointer inside the same write transaction.
"""

from typing import Any, Dict, List, Optional, Tuple

from .dao import require_project
from .db import get_db, transaction, parse_timestamp
from .errors import ConflictError, NotFoundError, StaleSourceError, ValidationError
from .field_registry import SectionRegistry, registry as default_registry
from .paths import canonical_json, load_json
from .schema import PutResult, SectionDocument, SECTION_STATUSES, SECTION_STATUS_PENDING
from ..util.logging import logger

_SELECT = '''
    SELECT v.project_id, v.section_type, v.version, v.content, v.status,
           v.created_at, v.updated_at,
           CASE WHEN h.current_version = v.version THEN 1 ELSE 0 END AS is_current
    FROM section_versions v
    LEFT JOIN section_heads h
      ON h.project_id = v.project_id AND h.section_type = v.section_type
'''


def _section_name(section_type, registry: Optional[SectionRegistry]) -> str:
    """Resolve a section type through the registry (ConfigurationError if unknown)."""
    return (registry or default_registry).get_section(section_type).section_type


def _row_to_document(row) -> SectionDocument:
    return SectionDocument(
        project_id=row["project_id"],
        section_type=row["section_type"],
        version=row["version"],
        content=load_json(row["content"], {}),
        status=row["status"],
        is_current_version=bool(row["is_current"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _head_version(conn, project_id: str, section_type: str) -> Optional[int]:
    row = conn.execute(
        "SELECT current_version FROM section_heads WHERE project_id = ? AND section_type = ?",
        (project_id, section_type)
    ).fetchone()
    return row["current_version"] if row else None


def _insert_version(conn, project_id: str, section_type: str, content: Dict[str, Any]) -> int:
    row = conn.execute(
        "SELECT MAX(version) AS max_version FROM section_versions WHERE project_id = ? AND section_type = ?",
        (project_id, section_type)
    ).fetchone()
    version = (row["max_version"] or 0) + 1
    conn.execute(
        "INSERT INTO section_versions (project_id, section_type, version, content, status) VALUES (?, ?, ?, ?, ?)",
        (project_id, section_type, version, canonical_json(content), SECTION_STATUS_PENDING)
    )
    return version


def _move_head(conn, project_id: str, section_type: str, version: int) -> None:
    conn.execute('''
        INSERT INTO section_heads (project_id, section_type, current_version) VALUES (?, ?, ?)
        ON CONFLICT(project_id, section_type) DO UPDATE SET current_version = excluded.current_version
    ''', (project_id, section_type, version))


def current_version(project_id: str, section_type, registry: SectionRegistry = None) -> Optional[int]:
    """Current version number of a section, or None if it has no document."""
    section_type = _section_name(section_type, registry)
    with get_db() as conn:
        return _head_version(conn, project_id, section_type)


def get_current(project_id: str, section_type, registry: SectionRegistry = None) -> SectionDocument:
    """Get the current document of a section or raise NotFoundError."""
    section_type = _section_name(section_type, registry)
    with get_db() as conn:
        require_project(conn, project_id)
        row = conn.execute(
            _SELECT + " WHERE v.project_id = ? AND v.section_type = ? AND v.version = h.current_version",
            (project_id, section_type)
        ).fetchone()
    if row is None:
        raise NotFoundError(f"No document for section '{section_type}' in project {project_id}")
    return _row_to_document(row)


def get_at_version(project_id: str, section_type, version: int, registry: SectionRegistry = None) -> SectionDocument:
    section_type = _section_name(section_type, registry)
    with get_db() as conn:
        require_project(conn, project_id)
        row = conn.execute(
            _SELECT + " WHERE v.project_id = ? AND v.section_type = ? AND v.version = ?",
            (project_id, section_type, version)
        ).fetchone()
    if row is None:
        raise NotFoundError(f"Section '{section_type}' has no version {version} in project {project_id}")
    return _row_to_document(row)


def list_versions(project_id: str, section_type, registry: SectionRegistry = None) -> List[SectionDocument]:
    """Full history of a section, newest first."""
    section_type = _section_name(section_type, registry)
    with get_db() as conn:
        require_project(conn, project_id)
        rows = conn.execute(
            _SELECT + " WHERE v.project_id = ? AND v.section_type = ? ORDER BY v.version DESC",
            (project_id, section_type)
        ).fetchall()
    return [_row_to_document(row) for row in rows]


def list_current(project_id: str) -> List[SectionDocument]:
    """Every current section document of a project."""
    with get_db() as conn:
        require_project(conn, project_id)
        rows = conn.execute(
            _SELECT + " WHERE v.project_id = ? AND v.version = h.current_version ORDER BY v.section_type",
            (project_id,)
        ).fetchall()
    return [_row_to_document(row) for row in rows]


def put_new(project_id: str, section_type, content: Dict[str, Any], expected_version: Optional[int] = None,
            registry: SectionRegistry = None, source_guard: Optional[Tuple[str, int]] = None,
            timeout: Optional[float] = None) -> PutResult:
    """Insert a new version and make it current.

    When expected_version is given (0 meaning "no document yet") and the current
    version has moved on, the new row is still stored as a non-current version
    and ConflictError is raised carrying its version number.

    source_guard=(section_type, version) makes the write conditional on another
    section still being at that version; if it moved, nothing is written and
    StaleSourceError is raised.

    timeout bounds the wait for the write lock in seconds.
    """
    section_type = _section_name(section_type, registry)
    if not isinstance(content, dict):
        raise ValidationError(f"Document for '{section_type}' must be an object", section_type=section_type)

    conflict = False
    with transaction(timeout) as conn:
        require_project(conn, project_id)
        if source_guard is not None:
            guard_section, guard_version = source_guard
            guard_head = _head_version(conn, project_id, guard_section)
            if guard_head != guard_version:
                raise StaleSourceError(
                    f"Source section '{guard_section}' moved from version {guard_version} to {guard_head}",
                    current_version=guard_head
                )
        head = _head_version(conn, project_id, section_type)
        previous_content = None
        if head is not None:
            row = conn.execute(
                "SELECT content FROM section_versions WHERE project_id = ? AND section_type = ? AND version = ?",
                (project_id, section_type, head)
            ).fetchone()
            previous_content = load_json(row["content"], {}) if row else None

        version = _insert_version(conn, project_id, section_type, content)
        if expected_version is not None and (head or 0) != expected_version:
            conflict = True
        else:
            _move_head(conn, project_id, section_type, version)

    if conflict:
        logger.log_section_write(project_id, section_type, version, "conflict",
                                 {"expected_version": expected_version, "current_version": head})
        raise ConflictError(
            f"Section '{section_type}' moved from version {expected_version} to {head}; "
            f"content stored as non-current version {version}",
            current_version=head,
            stored_version=version
        )

    logger.log_section_write(project_id, section_type, version)
    return PutResult(version=version, previous_content=previous_content, previous_version=head)


def create_if_missing(project_id: str, section_type, content: Dict[str, Any],
                      registry: SectionRegistry = None) -> SectionDocument:
    """Create version 1 for a section that was never generated; otherwise return the current document."""
    name = _section_name(section_type, registry)
    if not isinstance(content, dict):
        raise ValidationError(f"Document for '{name}' must be an object", section_type=name)

    created = None
    with transaction() as conn:
        require_project(conn, project_id)
        if _head_version(conn, project_id, name) is None:
            created = _insert_version(conn, project_id, name, content)
            _move_head(conn, project_id, name, created)

    if created is not None:
        logger.log_section_write(project_id, name, created, details={"created": True})
    return get_current(project_id, name, registry)


def set_status(project_id: str, section_type, status: str, version: Optional[int] = None,
               registry: SectionRegistry = None) -> int:
    """Set the approval status of the current document, returning its version.

    When version is given the update only applies if that version is still current.
    """
    section_type = _section_name(section_type, registry)
    if status not in SECTION_STATUSES:
        raise ValidationError(f"Invalid section status: {status}")

    with transaction() as conn:
        require_project(conn, project_id)
        head = _head_version(conn, project_id, section_type)
        if head is None:
            raise NotFoundError(f"No document for section '{section_type}' in project {project_id}")
        if version is not None and version != head:
            raise ConflictError(
                f"Section '{section_type}' version {version} is no longer current",
                current_version=head
            )
        conn.execute('''
            UPDATE section_versions SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE project_id = ? AND section_type = ? AND version = ?
        ''', (status, project_id, section_type, head))

    logger.log_operation("section.status", "success",
                         {"project_id": project_id, "section_type": section_type, "version": head, "status": status})
    return head


def list_current_keys() -> List[Tuple[str, str]]:
    """(project_id, section_type) of every current document in active projects."""
    with get_db() as conn:
        rows = conn.execute('''
            SELECT h.project_id, h.section_type FROM section_heads h
            JOIN projects p ON p.id = h.project_id
            WHERE p.is_deleted = FALSE
            ORDER BY h.project_id, h.section_type
        ''').fetchall()
    return [(row["project_id"], row["section_type"]) for row in rows]
