"""
Reconciler tests - deriving field rows from documents without losing approvals.
"""

import sqlite3
from unittest.mock import patch

import pytest

from content_vault.core import field_store, reconcile, section_store
from content_vault.core.errors import NotFoundError, SchemaViolationError
from content_vault.core.field_registry import FieldDefinition, SectionDefinition, SectionRegistry


class TestFlattenDocument:
    """Test document flattening into field paths."""

    def test_nested_dicts_become_dotted_paths(self, registry):
        flat = reconcile.flatten_document("page", {"headline": "Hi", "a": {"b": {"c": 1}}}, registry)
        assert flat == {"headline": "Hi", "a.b.c": 1}

    def test_lists_are_leaves(self, registry):
        flat = reconcile.flatten_document("page", {"a": {"items": [{"x": 1}, {"x": 2}]}}, registry)
        assert flat == {"a.items": [{"x": 1}, {"x": 2}]}

    def test_empty_values_skipped_unless_registered(self, registry):
        """Test empty unregistered values are dropped while registered ones are kept."""
        flat = reconcile.flatten_document("page", {"headline": "", "a": {"b": ""}, "c": []}, registry)
        assert flat == {"headline": ""}

    def test_registered_dotted_path_stops_recursion(self):
        """Test a registered nested field keeps its whole value."""
        registry = SectionRegistry(sections=(), extra=(
            SectionDefinition("gift", "Gift", (
                FieldDefinition("freeGift.title", "Title", "text", 0),
                FieldDefinition("freeGift.meta", "Meta", "structured", 1),
            )),
        ))
        document = {"freeGift": {"title": "Guide", "meta": {"pages": 10}}}
        flat = reconcile.flatten_document("gift", document, registry)
        assert flat == {"freeGift.title": "Guide", "freeGift.meta": {"pages": 10}}

    def test_builtin_lead_magnet_paths(self):
        """Test the built-in leadMagnet section exposes freeGift.title as a field."""
        flat = reconcile.flatten_document("leadMagnet", {"mainTitle": "M", "freeGift": {"title": "T"}})
        assert flat["freeGift.title"] == "T"
        assert flat["mainTitle"] == "M"


class TestReconcile:
    """Test reconciliation against the Field Store."""

    def test_creates_fields_for_new_document(self, project, registry):
        report = reconcile.reconcile(project, "core", {"name": "Acme", "tagline": "Go"}, registry)

        assert sorted(report.created) == ["name", "tagline"]
        assert report.errors == []
        assert field_store.get_current(project, "core", "name", registry).value == "Acme"

    def test_identical_value_keeps_approval(self, project, registry):
        """Test re-reconciling an unchanged document leaves approved fields untouched."""
        reconcile.reconcile(project, "core", {"name": "Acme", "tagline": "Go"}, registry)
        field_store.approve_all(project, "core", registry)

        report = reconcile.reconcile(project, "core", {"tagline": "Go", "name": "Acme"}, registry)

        assert sorted(report.unchanged) == ["name", "tagline"]
        assert report.changed is False
        record = field_store.get_current(project, "core", "name", registry)
        assert record.version == 1
        assert record.is_approved is True

    def test_changed_value_resets_only_that_field(self, project, registry):
        """Test a changed field gets a new unapproved version and others stay approved."""
        reconcile.reconcile(project, "core", {"name": "Acme", "tagline": "Go"}, registry)
        field_store.approve_all(project, "core", registry)

        report = reconcile.reconcile(project, "core", {"name": "Acme Inc", "tagline": "Go"}, registry)

        assert report.updated == ["name"]
        name = field_store.get_current(project, "core", "name", registry)
        tagline = field_store.get_current(project, "core", "tagline", registry)
        assert (name.version, name.is_approved) == (2, False)
        assert (tagline.version, tagline.is_approved) == (1, True)

    def test_absent_paths_are_not_deleted(self, project, registry):
        """Test a field missing from the new document keeps its current row."""
        reconcile.reconcile(project, "core", {"name": "Acme", "tagline": "Go"}, registry)
        reconcile.reconcile(project, "core", {"name": "Acme"}, registry)

        assert field_store.get_current(project, "core", "tagline", registry).value == "Go"

    def test_idempotent(self, project, registry):
        """Test a second run with the same document changes nothing."""
        document = {"name": "Acme", "a": {"b": [1, 2]}}
        reconcile.reconcile(project, "core", document, registry)
        before = [(r.field_id, r.version) for r in field_store.list_current(project, "core", registry)]

        report = reconcile.reconcile(project, "core", document, registry)

        after = [(r.field_id, r.version) for r in field_store.list_current(project, "core", registry)]
        assert before == after
        assert report.created == [] and report.updated == []

    def test_field_errors_are_collected(self, project, registry):
        """Test a failing field write is reported and does not stop the others."""
        real_create = field_store.create_if_missing

        def flaky_create(project_id, section_type, field_id, value, registry=None):
            if field_id == "name":
                raise sqlite3.OperationalError("disk I/O error")
            return real_create(project_id, section_type, field_id, value, registry=registry)

        with patch.object(field_store, "create_if_missing", side_effect=flaky_create):
            report = reconcile.reconcile(project, "core", {"name": "Acme", "tagline": "Go"}, registry)

        assert report.created == ["tagline"]
        assert len(report.errors) == 1
        assert report.errors[0].startswith("name:")


class TestReconcileToHead:
    """Test reconciliation after a write converges on the current document."""

    def test_superseded_write_reconciles_head(self, project, registry):
        first = section_store.put_new(project, "core", {"name": "Old"}, registry=registry)
        section_store.put_new(project, "core", {"name": "New"}, registry=registry)

        reconcile.reconcile_to_head(project, "core", first.version, {"name": "Old"}, registry)

        assert field_store.get_current(project, "core", "name", registry).value == "New"

    def test_head_moving_mid_pass_triggers_another_pass(self, project, registry):
        """Test a write landing during reconciliation is picked up before returning."""
        put = section_store.put_new(project, "core", {"name": "Old"}, registry=registry)
        real_reconcile = reconcile.reconcile
        seen = []

        def reconcile_then_write(project_id, section_type, document, registry=None):
            seen.append(document["name"])
            report = real_reconcile(project_id, section_type, document, registry)
            if len(seen) == 1:
                section_store.put_new(project_id, section_type, {"name": "New"}, registry=registry)
            return report

        with patch.object(reconcile, "reconcile", side_effect=reconcile_then_write):
            report = reconcile.reconcile_to_head(project, "core", put.version, {"name": "Old"}, registry)

        assert seen == ["Old", "New"]
        assert report.errors == []
        assert field_store.get_current(project, "core", "name", registry).value == "New"

    def test_gives_up_after_max_passes(self, project, registry):
        put = section_store.put_new(project, "core", {"name": "v1"}, registry=registry)
        real_reconcile = reconcile.reconcile

        def always_moving(project_id, section_type, document, registry=None):
            report = real_reconcile(project_id, section_type, document, registry)
            section_store.put_new(project_id, section_type, {"name": "next"}, registry=registry)
            return report

        with patch.object(reconcile, "reconcile", side_effect=always_moving):
            report = reconcile.reconcile_to_head(project, "core", put.version, {"name": "v1"},
                                                 registry, max_passes=2)

        assert "run repair" in report.errors[-1]


class TestRepair:
    """Test repair from the current document."""

    def test_repair_recreates_missing_fields(self, project, registry):
        section_store.put_new(project, "core", {"name": "Acme"}, registry=registry)

        report = reconcile.repair(project, "core", registry)

        assert report.created == ["name"]
        assert field_store.get_current(project, "core", "name", registry).value == "Acme"

    def test_repair_refreshes_drifted_attributes(self, project, registry):
        """Test stale label metadata is refreshed while approval is kept."""
        section_store.put_new(project, "core", {"tagline": "Go", "name": "Acme"}, registry=registry)
        field_store.upsert_version(project, "core", "tagline", "Go", label="Old label", registry=registry)
        field_store.approve_all(project, "core", registry)

        report = reconcile.repair(project, "core", registry)

        assert "tagline" in report.updated
        record = field_store.get_current(project, "core", "tagline", registry)
        assert record.label == "Tagline"
        assert record.is_approved is True

    def test_repair_without_document(self, project, registry):
        with pytest.raises(NotFoundError):
            reconcile.repair(project, "core", registry)


class TestEnsureDefaults:
    """Test default field instantiation."""

    def test_defaults_from_registry(self, project, registry):
        """Test registered fields are created with empty values when nothing exists."""
        report = reconcile.ensure_defaults(project, "core", registry)

        assert report.created == ["name", "tagline"]
        records = field_store.list_current(project, "core", registry)
        assert [(r.field_id, r.value, r.is_approved) for r in records] == [
            ("name", "", False),
            ("tagline", "", False),
        ]

    def test_defaults_prefer_document(self, project, registry):
        """Test an existing document is reconciled instead of writing empty defaults."""
        section_store.put_new(project, "core", {"name": "Acme"}, registry=registry)

        report = reconcile.ensure_defaults(project, "core", registry)

        assert report.created == ["name"]
        assert field_store.get_current(project, "core", "name", registry).value == "Acme"

    def test_noop_when_fields_exist(self, project, registry):
        field_store.upsert_version(project, "core", "name", "Acme", registry=registry)
        report = reconcile.ensure_defaults(project, "core", registry)
        assert report.created == []

    def test_field_only_media_section(self, project):
        """Test the built-in media section gets its slots as defaults."""
        report = reconcile.ensure_defaults(project, "media")
        assert "bio_author" in report.created

    def test_missing_project(self, registry):
        with pytest.raises(NotFoundError):
            reconcile.ensure_defaults("nope", "core", registry)


class TestMergeFieldsIntoDocument:
    """Test writing field values back into a document."""

    def test_merge_writes_new_version(self, project, registry):
        section_store.put_new(project, "core", {"name": "Acme"}, registry=registry)
        field_store.upsert_version(project, "core", "tagline", "Go", registry=registry)

        result = reconcile.merge_fields_into_document(project, "core", registry)

        assert result.version == 2
        assert section_store.get_current(project, "core", registry).content == {"name": "Acme", "tagline": "Go"}

    def test_merge_noop_when_in_sync(self, project, registry):
        section_store.put_new(project, "core", {"name": "Acme"}, registry=registry)
        reconcile.reconcile(project, "core", {"name": "Acme"}, registry)

        assert reconcile.merge_fields_into_document(project, "core", registry) is None

    def test_merge_rejects_field_only(self, project):
        with pytest.raises(SchemaViolationError):
            reconcile.merge_fields_into_document(project, "media")
