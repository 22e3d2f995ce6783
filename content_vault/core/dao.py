"""
Projects and the vault edit-history log.

Projects are soft-deleted; purge_project is the only physical delete and
cascades to every section/field version and event of the project.
"""

import json
import sqlite3
import uuid
from typing import List, Optional

from .db import get_db, transaction, parse_timestamp
from .errors import NotFoundError, ValidationError
from .schema import Project, VaultEvent
from ..util.logging import logger, sanitize_payload

_PROJECT_COLUMNS = "id, owner_id, name, is_active, is_deleted, created_at, updated_at"


def _row_to_project(row) -> Project:
    return Project(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        is_active=bool(row["is_active"]),
        is_deleted=bool(row["is_deleted"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def create_project(owner_id: str, name: str = None, project_id: str = None) -> Project:
    """Create a project, or return the existing one when project_id is already taken by this owner."""
    if not owner_id or not owner_id.strip():
        raise ValidationError("owner_id is required")

    project_id = project_id or str(uuid.uuid4())
    with transaction() as conn:
        row = conn.execute(
            f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        if row is None:
            conn.execute(
                "INSERT INTO projects (id, owner_id, name) VALUES (?, ?, ?)",
                (project_id, owner_id.strip(), name)
            )
            row = conn.execute(
                f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        elif row["is_deleted"]:
            raise NotFoundError(f"Project {project_id} was deleted")
        elif row["owner_id"] != owner_id.strip():
            raise ValidationError(f"Project {project_id} belongs to another owner")

    logger.log_operation("project.create", "success", {"project_id": project_id})
    return _row_to_project(row)


def get_project(project_id: str) -> Project:
    """Get an active project or raise NotFoundError."""
    with get_db() as conn:
        row = conn.execute(
            f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ? AND is_deleted = FALSE",
            (project_id,)
        ).fetchone()
    if row is None:
        raise NotFoundError(f"Project {project_id} not found")
    return _row_to_project(row)


def require_project(conn: sqlite3.Connection, project_id: str) -> None:
    """Raise NotFoundError unless the project exists and is not deleted (inside a transaction)."""
    row = conn.execute(
        "SELECT 1 FROM projects WHERE id = ? AND is_deleted = FALSE", (project_id,)
    ).fetchone()
    if row is None:
        raise NotFoundError(f"Project {project_id} not found")


def list_projects(owner_id: str, include_deleted: bool = False) -> List[Project]:
    query = f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE owner_id = ?"
    if not include_deleted:
        query += " AND is_deleted = FALSE"
    query += " ORDER BY created_at DESC, id"
    with get_db() as conn:
        rows = conn.execute(query, (owner_id,)).fetchall()
    return [_row_to_project(row) for row in rows]


def soft_delete_project(project_id: str) -> bool:
    """Mark a project deleted. History is kept; stores stop accepting reads and writes."""
    with transaction() as conn:
        cursor = conn.execute(
            "UPDATE projects SET is_deleted = TRUE, is_active = FALSE, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND is_deleted = FALSE",
            (project_id,)
        )
        deleted = cursor.rowcount > 0
    if not deleted:
        raise NotFoundError(f"Project {project_id} not found")
    logger.log_operation("project.delete", "success", {"project_id": project_id})
    return True


def purge_project(project_id: str) -> bool:
    """Physically delete a project and all of its history."""
    with transaction() as conn:
        cursor = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        purged = cursor.rowcount > 0
    if not purged:
        raise NotFoundError(f"Project {project_id} not found")
    logger.log_operation("project.purge", "success", {"project_id": project_id})
    return True


def add_event(project_id: str, actor: str, action: str, payload: dict = None) -> bool:
    """Append an edit-history event. Failures are logged, never raised."""
    try:
        payload_text = json.dumps(sanitize_payload(payload or {}, max_length=500))
        with transaction() as conn:
            conn.execute(
                "INSERT INTO vault_events (project_id, actor, action, payload) VALUES (?, ?, ?, ?)",
                (project_id, actor, action, payload_text)
            )
        return True
    except Exception as e:
        logger.error(f"Error adding vault event {action} for project {project_id}: {e}")
        return False


def list_events(project_id: str, limit: int = 100, action: Optional[str] = None) -> List[VaultEvent]:
    """List recent events for a project, newest first."""
    if limit <= 0 or not project_id:
        return []

    query = "SELECT id, project_id, ts, actor, action, payload FROM vault_events WHERE project_id = ?"
    params = [project_id]
    if action:
        query += " AND action = ?"
        params.append(action)
    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)

    with get_db() as conn:
        rows = conn.execute(query, params).fetchall()

    events = []
    for row in rows:
        try:
            payload = json.loads(row["payload"]) if row["payload"] else {}
        except json.JSONDecodeError:
            payload = {"raw": row["payload"]}
        events.append(VaultEvent(
            id=row["id"],
            project_id=row["project_id"],
            ts=parse_timestamp(row["ts"]),
            actor=row["actor"],
            action=row["action"],
            payload=payload,
        ))
    return events
