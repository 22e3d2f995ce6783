"""
VaultService tests - end-to-end document, field and approval flows.
"""

import threading
from unittest.mock import patch

import pytest

from content_vault.core import dao, field_store, reconcile, section_store
from content_vault.core.errors import (
    ConfigurationError, ConflictError, NotFoundError, SchemaViolationError, ValidationError,
)


class TestProjects:
    """Test project lifecycle through the service."""

    def test_create_project(self, service):
        project = service.create_project("owner-2", "Launch", project_id="p-2")
        assert project.id == "p-2"
        assert project.is_active is True

    def test_create_project_requires_owner(self, service):
        with pytest.raises(ValidationError):
            service.create_project("   ")

    def test_create_is_idempotent_for_owner(self, service, project):
        assert service.create_project("owner-1", project_id=project).id == project

    def test_create_rejects_foreign_owner(self, service, project):
        with pytest.raises(ValidationError):
            service.create_project("owner-2", project_id=project)

    def test_soft_delete_blocks_access(self, service, project):
        service.put_section_document(project, "core", {"name": "Acme"})
        assert service.delete_project(project) is True

        with pytest.raises(NotFoundError):
            service.get_section_document(project, "core")
        with pytest.raises(NotFoundError):
            service.put_section_document(project, "core", {"name": "Acme Inc"})

    def test_purge_removes_history(self, service, project):
        service.put_section_document(project, "core", {"name": "Acme"})
        service.delete_project(project, purge=True)

        with pytest.raises(NotFoundError):
            dao.get_project(project)
        assert dao.list_events(project) == []


class TestDocumentWrites:
    """Test whole-document and path writes."""

    def test_rename_creates_new_unapproved_field_version(self, service, project):
        """Test a document rename versions the field and leaves other sections alone."""
        service.put_section_document(project, "core", {"name": "Acme"})
        result = service.put_section_document(project, "core", {"name": "Acme Inc"})
        service.wait_for_background(timeout=10)

        assert result.version == 2
        fields = service.list_fields(project, "core")
        name = next(f for f in fields.fields if f.field_id == "name")
        assert (name.value, name.version, name.is_approved) == ("Acme Inc", 2, False)

        footer = service.list_fields(project, "footer")
        assert [f.value for f in footer.fields] == [""]
        with pytest.raises(NotFoundError):
            service.get_section_document(project, "footer")

    def test_unknown_keys_reported_as_warnings(self, service, project):
        result = service.put_section_document(project, "core", {"name": "Acme", "color": "red"})

        assert "Removed unknown key 'color'" in result.warnings
        assert service.get_section_document(project, "core").content == {"name": "Acme"}

    def test_schema_errors_still_persist(self, service, project):
        """Test a document missing a required key is stored with a warning."""
        result = service.put_section_document(project, "core", {"tagline": "Go"})

        assert result.version == 1
        assert any(w.startswith("name:") for w in result.warnings)

    def test_wrong_shape_rejected(self, service, project):
        with pytest.raises(SchemaViolationError) as exc_info:
            service.put_section_document(project, "core", {"companyName": "Acme"})

        assert exc_info.value.looks_like == "footer"
        assert section_store.list_versions(project, "core", service.registry) == []

    def test_closer_script_under_setter_type_rejected(self, service, project):
        document = {
            "discoveryQuestions": [{"label": "Goal"}],
            "commitmentQuestions": {"commitmentScale": "1-10"},
            "fullGuidedScript": {"intro": "Hi"},
            "objectionHandling": [{"objection": "Too expensive"}],
        }

        with pytest.raises(SchemaViolationError):
            service.put_section_document(project, "setterScript", document)

        assert section_store.list_versions(project, "setterScript", service.registry) == []

    def test_set_field_by_path_round_trip(self, service, project):
        """Test a nested path write is readable from both representations."""
        result = service.set_field_by_path(project, "page", "a.b", 1)

        assert result.version == 1
        assert service.get_section_document(project, "page").content == {"a": {"b": 1}}
        fields = {f.field_id: f for f in service.list_fields(project, "page").fields}
        assert fields["a.b"].value == 1
        assert fields["a.b"].is_custom is True

    def test_set_field_by_path_merges(self, service, project):
        service.put_section_document(project, "page", {"headline": "Hi", "a": {"x": 1}})
        service.set_field_by_path(project, "page", "a.y", 2)

        assert service.get_section_document(project, "page").content == {"headline": "Hi", "a": {"x": 1, "y": 2}}

    def test_set_field_by_path_outside_shape(self, service, project):
        with pytest.raises(ValidationError):
            service.set_field_by_path(project, "core", "colors.primary", "red")

    def test_set_field_by_path_invalid_path(self, service, project):
        with pytest.raises(ValidationError):
            service.set_field_by_path(project, "core", "name..x", "red")

    def test_set_field_by_path_retries_then_raises(self, service, project):
        """Test persistent conflicts are retried and finally surfaced."""
        conflict = ConflictError("moved", current_version=2, stored_version=3)
        with patch.object(section_store, "put_new", side_effect=conflict) as mock_put:
            with pytest.raises(ConflictError):
                service.set_field_by_path(project, "page", "headline", "Hi")

        assert mock_put.call_count == service.max_conflict_retries

    def test_concurrent_path_writes_both_land(self, service, project):
        """Test two concurrent path writes on one document both end up in it."""
        barrier = threading.Barrier(2)
        errors = []

        def write(path, value):
            barrier.wait()
            try:
                service.set_field_by_path(project, "page", path, value)
            except ConflictError as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=("headline", "Hi")),
                   threading.Thread(target=write, args=("body", "Text"))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        content = service.get_section_document(project, "page").content
        assert content == {"headline": "Hi", "body": "Text"}

    def test_late_reconciliation_follows_current_document(self, service, project):
        """Test fields match the latest document when an older writer reconciles last."""
        service.put_section_document(project, "core", {"name": "Acme"})
        real_reconcile = reconcile.reconcile
        a_paused = threading.Event()
        b_done = threading.Event()

        def slow_for_writer_a(project_id, section_type, document, registry=None):
            if document.get("name") == "Writer A" and not a_paused.is_set():
                a_paused.set()
                b_done.wait(timeout=10)
            return real_reconcile(project_id, section_type, document, registry)

        with patch.object(reconcile, "reconcile", side_effect=slow_for_writer_a):
            writer_a = threading.Thread(
                target=service.put_section_document, args=(project, "core", {"name": "Writer A"})
            )
            writer_a.start()
            assert a_paused.wait(timeout=10)
            service.put_section_document(project, "core", {"name": "Writer B"})
            b_done.set()
            writer_a.join(timeout=10)

        document = service.get_section_document(project, "core")
        field = field_store.get_current(project, "core", "name", service.registry)
        assert document.content == {"name": "Writer B"}
        assert field.value == "Writer B"

    def test_field_only_section_path_write(self, service, project):
        result = service.set_field_by_path(project, "media", "bio_author", "https://cdn.example/a.png")

        assert result.version == 1
        fields = {f.field_id: f for f in service.list_fields(project, "media").fields}
        assert fields["bio_author"].value == "https://cdn.example/a.png"

    def test_history(self, service, project):
        service.put_section_document(project, "core", {"name": "A"})
        service.put_section_document(project, "core", {"name": "B"})

        history = service.get_section_history(project, "core")
        assert history.current_version == 2
        assert [v.version for v in history.versions] == [2, 1]
        assert service.get_section_document(project, "core", version=1).content == {"name": "A"}


class TestPropagation:
    """Test background propagation after document writes."""

    def test_rename_propagates_to_dependents(self, service, project):
        service.put_section_document(project, "core", {"name": "Acme"})
        service.put_section_document(project, "page", {"headline": "Welcome to Acme"})
        service.put_section_document(project, "core", {"name": "Beta"})

        assert service.wait_for_background(timeout=10)

        assert service.get_section_document(project, "page").content == {"headline": "Welcome to Beta"}
        headline = next(f for f in service.list_fields(project, "page").fields if f.field_id == "headline")
        assert headline.value == "Welcome to Beta"
        assert headline.is_approved is False

        events = dao.list_events(project, action="propagation")
        assert events[0].payload["updated_sections"] == ["page"]

    def test_first_write_does_not_propagate(self, service, project):
        service.put_section_document(project, "page", {"headline": "Welcome to Acme"})
        service.put_section_document(project, "core", {"name": "Acme"})
        service.wait_for_background(timeout=10)

        assert dao.list_events(project, action="propagation") == []


class TestApprovalFlow:
    """Test approval and sync through the service."""

    def test_approve_syncs_company_name(self, service, project):
        """Test approving core copies name into the footer as a new, unapproved version."""
        service.put_section_document(project, "core", {"name": "Acme Inc"})

        response = service.approve_section(project, "core", wait_for_sync=True)

        assert response.fields_approved == 1
        assert [r.status for r in response.sync_results] == ["ok"]
        assert service.list_fields(project, "core").section_approval_status == "approved"

        footer = service.list_fields(project, "footer")
        company = footer.fields[0]
        assert (company.field_id, company.value, company.is_approved) == ("companyName", "Acme Inc", False)
        assert footer.section_approval_status == "pending"

    def test_resave_keeps_field_approvals(self, service, project):
        """Test saving the same content again keeps field approvals."""
        service.put_section_document(project, "core", {"name": "Acme", "tagline": "Go"})
        service.approve_section(project, "core", wait_for_sync=True)

        service.put_section_document(project, "core", {"tagline": "Go", "name": "Acme"})

        fields = service.list_fields(project, "core")
        assert all(f.is_approved for f in fields.fields)
        assert all(f.version == 1 for f in fields.fields)
        assert fields.section_approval_status == "pending"

    def test_edit_resets_only_changed_field(self, service, project):
        service.put_section_document(project, "core", {"name": "Acme", "tagline": "Go"})
        service.approve_section(project, "core", wait_for_sync=True)

        service.set_field_by_path(project, "core", "tagline", "Went")

        fields = {f.field_id: f for f in service.list_fields(project, "core").fields}
        assert fields["name"].is_approved is True
        assert fields["tagline"].is_approved is False

    def test_approve_returns_sync_results_by_default(self, service, project):
        service.put_section_document(project, "core", {"name": "Acme"})

        response = service.approve_section(project, "core")

        assert response.sync_pending is False
        assert [(r.target_section, r.status) for r in response.sync_results] == [("footer", "ok")]

    def test_approve_with_background_sync(self, service, project):
        service.put_section_document(project, "core", {"name": "Acme"})

        response = service.approve_section(project, "core", wait_for_sync=False)
        service.wait_for_background(timeout=10)

        assert response.sync_pending is True
        assert response.sync_results == []
        assert service.get_section_document(project, "footer").content == {"companyName": "Acme"}

    def test_approve_unknown_section(self, service, project):
        with pytest.raises(ConfigurationError):
            service.approve_section(project, "nope")


class TestFieldsAndMaintenance:
    """Test batch writes, defaults, repair and previews."""

    def test_batch_set_fields(self, service, project):
        response = service.batch_set_fields(project, "core", {"tagline": "x" * 100, "slogan": ["a"]})

        assert [s.field_id for s in response.saved] == ["tagline", "slogan"]
        assert response.saved[0].warnings == ["Exceeds maximum length of 80 characters"]
        assert response.errors == []

        fields = {f.field_id: f for f in service.list_fields(project, "core").fields}
        assert fields["slogan"].is_custom is True
        assert fields["slogan"].field_type == "list"
        with pytest.raises(NotFoundError):
            service.get_section_document(project, "core")

    def test_batch_requires_fields(self, service, project):
        with pytest.raises(ValidationError):
            service.batch_set_fields(project, "core", {})

    def test_list_fields_instantiates_defaults(self, service, project):
        response = service.list_fields(project, "page")

        assert [(f.field_id, f.value) for f in response.fields] == [("headline", ""), ("body", "")]
        assert response.section_approval_status == "pending"

    def test_reconcile_section(self, service, project):
        section_store.put_new(project, "core", {"name": "Acme"}, registry=service.registry)

        response = service.reconcile_section(project, "core")
        assert response.created == ["name"]

    def test_dependency_impact(self, service):
        impact = service.dependency_impact("core", "name")

        assert impact.is_field_level is True
        assert [a.section_type for a in impact.affected_sections] == ["page", "footer"]
        assert impact.sync_preview == "Will sync to: Footer (companyName)"

    def test_dependency_impact_section_level(self, service):
        impact = service.dependency_impact("core")
        assert impact.is_field_level is False
        assert impact.sync_preview is None
