"""
Section Store tests - versioning, the current-version pointer and conflicts.
"""

import threading

import pytest

from content_vault.core import dao, section_store
from content_vault.core.db import get_db
from content_vault.core.errors import ConfigurationError, ConflictError, NotFoundError, StaleSourceError


def _current_rows(project_id, section_type):
    with get_db() as conn:
        return conn.execute(
            "SELECT COUNT(*) FROM section_heads WHERE project_id = ? AND section_type = ?",
            (project_id, section_type)
        ).fetchone()[0]


class TestPutNew:
    """Test inserting new document versions."""

    def test_first_write_is_version_one(self, project, registry):
        """Test the first document of a section gets version 1 and no previous content."""
        result = section_store.put_new(project, "core", {"name": "Acme"}, registry=registry)

        assert result.version == 1
        assert result.previous_content is None

        document = section_store.get_current(project, "core", registry)
        assert document.content == {"name": "Acme"}
        assert document.status == "pending"
        assert document.is_current_version is True

    def test_second_write_returns_previous_content(self, project, registry):
        """Test a later write bumps the version and hands back the content it replaced."""
        section_store.put_new(project, "core", {"name": "Acme"}, registry=registry)
        result = section_store.put_new(project, "core", {"name": "Acme Inc"}, registry=registry)

        assert result.version == 2
        assert result.previous_content == {"name": "Acme"}
        assert result.previous_version == 1

        old = section_store.get_at_version(project, "core", 1, registry)
        assert old.content == {"name": "Acme"}
        assert old.is_current_version is False
        assert section_store.get_current(project, "core", registry).version == 2

    def test_history_newest_first(self, project, registry):
        """Test list_versions returns every version, newest first."""
        for name in ("A", "B", "C"):
            section_store.put_new(project, "core", {"name": name}, registry=registry)

        versions = section_store.list_versions(project, "core", registry)
        assert [v.version for v in versions] == [3, 2, 1]
        assert [v.is_current_version for v in versions] == [True, False, False]

    def test_expected_version_conflict_keeps_losing_write(self, project, registry):
        """Test a stale expected_version stores the write as non-current and raises."""
        section_store.put_new(project, "core", {"name": "v1"}, registry=registry)
        section_store.put_new(project, "core", {"name": "v2"}, expected_version=1, registry=registry)

        with pytest.raises(ConflictError) as exc_info:
            section_store.put_new(project, "core", {"name": "stale"}, expected_version=1, registry=registry)

        assert exc_info.value.current_version == 2
        assert exc_info.value.stored_version == 3

        stored = section_store.get_at_version(project, "core", 3, registry)
        assert stored.content == {"name": "stale"}
        assert stored.is_current_version is False
        assert section_store.get_current(project, "core", registry).content == {"name": "v2"}

    def test_versions_never_reused_after_conflict(self, project, registry):
        """Test the next write after a conflict gets a fresh version number."""
        section_store.put_new(project, "core", {"name": "v1"}, registry=registry)
        with pytest.raises(ConflictError):
            section_store.put_new(project, "core", {"name": "lost"}, expected_version=0, registry=registry)

        result = section_store.put_new(project, "core", {"name": "next"}, registry=registry)
        assert result.version == 3
        versions = [v.version for v in section_store.list_versions(project, "core", registry)]
        assert len(versions) == len(set(versions))

    def test_source_guard_blocks_stale_derived_write(self, project, registry):
        """Test a guarded write is refused without storing anything when the source moved."""
        section_store.put_new(project, "core", {"name": "v1"}, registry=registry)
        section_store.put_new(project, "page", {"body": "x"}, registry=registry)
        section_store.put_new(project, "core", {"name": "v2"}, registry=registry)

        with pytest.raises(StaleSourceError):
            section_store.put_new(project, "page", {"body": "y"}, registry=registry, source_guard=("core", 1))

        assert [v.version for v in section_store.list_versions(project, "page", registry)] == [1]

    def test_concurrent_writers_single_current(self, project, registry):
        """Test N concurrent writers produce N distinct versions and one current row."""
        writers = 8
        barrier = threading.Barrier(writers)
        results, errors = [], []

        def write(i):
            barrier.wait()
            try:
                results.append(section_store.put_new(project, "core", {"name": f"writer-{i}"}, registry=registry))
            except ConflictError as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=(i,)) for i in range(writers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert sorted(r.version for r in results) == list(range(1, writers + 1))
        assert _current_rows(project, "core") == 1

        versions = section_store.list_versions(project, "core", registry)
        assert sum(1 for v in versions if v.is_current_version) == 1
        assert versions[0].is_current_version is True


class TestReadsAndFailures:
    """Test reads and failure modes."""

    def test_get_current_missing_section(self, project, registry):
        """Test reading a section that has no document raises NotFoundError."""
        with pytest.raises(NotFoundError):
            section_store.get_current(project, "core", registry)

    def test_unknown_section_type(self, project, registry):
        """Test an unregistered section type is a configuration error."""
        with pytest.raises(ConfigurationError):
            section_store.put_new(project, "nonexistent", {"x": 1}, registry=registry)

    def test_absent_project(self, registry):
        """Test writes to an unknown project raise NotFoundError."""
        with pytest.raises(NotFoundError):
            section_store.put_new("missing-project", "core", {"name": "Acme"}, registry=registry)

    def test_deleted_project(self, project, registry):
        """Test a soft-deleted project rejects reads and writes."""
        section_store.put_new(project, "core", {"name": "Acme"}, registry=registry)
        dao.soft_delete_project(project)

        with pytest.raises(NotFoundError):
            section_store.get_current(project, "core", registry)
        with pytest.raises(NotFoundError):
            section_store.put_new(project, "core", {"name": "Acme Inc"}, registry=registry)

    def test_list_current_across_sections(self, project, registry):
        """Test list_current returns one current document per section."""
        section_store.put_new(project, "core", {"name": "A"}, registry=registry)
        section_store.put_new(project, "core", {"name": "B"}, registry=registry)
        section_store.put_new(project, "footer", {"companyName": "A"}, registry=registry)

        current = section_store.list_current(project)
        assert [(d.section_type, d.version) for d in current] == [("core", 2), ("footer", 1)]


class TestCreateIfMissingAndStatus:
    """Test first-time creation and approval status."""

    def test_create_if_missing_creates_once(self, project, registry):
        """Test create_if_missing only creates version 1 when nothing exists."""
        first = section_store.create_if_missing(project, "core", {"name": "Acme"}, registry)
        second = section_store.create_if_missing(project, "core", {"name": "Other"}, registry)

        assert first.version == 1
        assert second.version == 1
        assert second.content == {"name": "Acme"}

    def test_set_status_on_current_only(self, project, registry):
        """Test approval status applies to the current row and new versions start pending."""
        section_store.put_new(project, "core", {"name": "Acme"}, registry=registry)
        assert section_store.set_status(project, "core", "approved", registry=registry) == 1
        assert section_store.get_current(project, "core", registry).status == "approved"

        section_store.put_new(project, "core", {"name": "Acme Inc"}, registry=registry)
        assert section_store.get_current(project, "core", registry).status == "pending"
        assert section_store.get_at_version(project, "core", 1, registry).status == "approved"

    def test_set_status_version_moved(self, project, registry):
        """Test set_status with a superseded version raises ConflictError."""
        section_store.put_new(project, "core", {"name": "A"}, registry=registry)
        section_store.put_new(project, "core", {"name": "B"}, registry=registry)

        with pytest.raises(ConflictError):
            section_store.set_status(project, "core", "approved", version=1, registry=registry)
