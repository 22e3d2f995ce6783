"""
VaultService - the exposed API of the vault core.

Document writes validate, store, reconcile synchronously and hand dependency
propagation to the background pool. Only validation, not-found, conflict and
configuration errors escape; reconciliation problems come back as warnings.
"""

import sqlite3
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core import config, dao, field_store, propagation, reconcile, section_store
from ..core.approval import ApprovalWorkflow
from ..core.background import BackgroundDispatcher, dispatcher as default_dispatcher
from ..core.dependency_rules import DependencyRules, dependency_rules as default_rules
from ..core.errors import ConflictError, NotFoundError, ValidationError, VaultError
from ..core.field_registry import SectionRegistry, registry as default_registry
from ..core.paths import set_path
from ..core.schema import FieldRecord, SECTION_STATUS_APPROVED, SECTION_STATUS_PENDING
from ..core.sync_rules import SyncRuleTable, sync_table as default_sync_table
from ..core.validator import validate_document, validate_field_value
from ..util.logging import logger
from .schemas import (
    AffectedSectionResponse, ApproveSectionResponse, BatchSetFieldsRequest, BatchSetResponse,
    CreateProjectRequest, DependencyImpactResponse, FieldError, FieldResponse, ListFieldsResponse,
    ProjectResponse, ReconcileResponse, SavedField, SectionDocumentResponse, SectionHistoryResponse,
    SetFieldRequest, SyncResult, WriteResponse,
)


def _request(model, **data):
    """Build a request model, turning pydantic errors into vault ValidationErrors."""
    try:
        return model(**data)
    except PydanticValidationError as e:
        errors = [{"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]} for err in e.errors()]
        raise ValidationError(f"Invalid {model.__name__}: {errors[0]['msg']}", errors=errors)


class VaultService:
    """Entry point for callers of the vault."""

    def __init__(self, registry: SectionRegistry = None, sync_table: SyncRuleTable = None,
                 dependency_rules: DependencyRules = None, dispatcher: BackgroundDispatcher = None,
                 max_conflict_retries: int = 3):
        self.registry = registry or default_registry
        self.sync_table = sync_table or default_sync_table
        self.dependency_rules = dependency_rules or default_rules
        self.dispatcher = dispatcher or default_dispatcher
        self.max_conflict_retries = max_conflict_retries
        self.approvals = ApprovalWorkflow(self.registry, self.sync_table, self.dispatcher)

    # Projects

    def create_project(self, owner_id: str, name: str = None, project_id: str = None) -> ProjectResponse:
        request = _request(CreateProjectRequest, owner_id=owner_id, name=name, project_id=project_id)
        project = dao.create_project(request.owner_id, request.name, request.project_id)
        return ProjectResponse(
            id=project.id,
            owner_id=project.owner_id,
            name=project.name,
            is_active=project.is_active,
            created_at=project.created_at,
            updated_at=project.updated_at,
        )

    def delete_project(self, project_id: str, purge: bool = False) -> bool:
        """Soft-delete a project, or remove it with all history when purge is set."""
        if purge:
            return dao.purge_project(project_id)
        return dao.soft_delete_project(project_id)

    # Document writes

    def put_section_document(self, project_id: str, section_type, document: Dict[str, Any],
                             actor: str = "user") -> WriteResponse:
        """Replace a section's whole document."""
        section_type = self.registry.get_section(section_type).section_type
        result = validate_document(section_type, document, self.registry)
        put = section_store.put_new(project_id, section_type, result.data, registry=self.registry)
        return self._after_document_write(project_id, section_type, put, result.data,
                                          result.warnings(), actor, "section_put")

    def set_field_by_path(self, project_id: str, section_type, path: str, value: Any,
                          actor: str = "user") -> WriteResponse:
        """Merge a value into the current document at a dotted path.

        The merge is conditioned on the document version it was based on and
        retried on conflict. Field-only sections write the field directly.
        """
        section = self.registry.get_section(section_type)
        request = _request(SetFieldRequest, path=path, value=value)
        dao.get_project(project_id)

        if section.field_only:
            record = field_store.upsert_version(project_id, section.section_type, request.path,
                                                request.value, registry=self.registry)
            dao.add_event(project_id, actor, "field_set", {
                "section_type": section.section_type, "field_id": request.path, "version": record.version
            })
            return WriteResponse(version=record.version, warnings=[])

        head = request.path.split(".")[0]
        if head not in section.top_level_keys:
            raise ValidationError(
                f"Path '{request.path}' is outside the shape of section '{section.section_type}'",
                section_type=section.section_type
            )

        last_error = None
        for attempt in range(self.max_conflict_retries):
            try:
                current = section_store.get_current(project_id, section.section_type, self.registry)
                content, expected_version = current.content, current.version
            except NotFoundError:
                content, expected_version = {}, 0

            merged = set_path(content, request.path, request.value)
            result = validate_document(section.section_type, merged, self.registry)
            try:
                put = section_store.put_new(project_id, section.section_type, result.data,
                                            expected_version=expected_version, registry=self.registry)
            except ConflictError as e:
                last_error = e
                logger.log_operation("section.set_field", "retry", {
                    "project_id": project_id, "section_type": section.section_type,
                    "path": request.path, "attempt": attempt + 1, "stored_version": e.stored_version
                })
                continue
            return self._after_document_write(project_id, section.section_type, put, result.data,
                                              result.warnings(), actor, "field_set",
                                              {"path": request.path})

        raise last_error

    def _after_document_write(self, project_id: str, section_type: str, put, content: Dict[str, Any],
                              warnings: List[str], actor: str, action: str,
                              extra: Dict[str, Any] = None) -> WriteResponse:
        warnings = list(warnings) + self._reconcile_warnings(project_id, section_type, put.version, content)
        self._schedule_propagation(project_id, section_type, put.previous_content, content, put.version)

        payload = {"section_type": section_type, "version": put.version, "warnings": len(warnings)}
        if extra:
            payload.update(extra)
        dao.add_event(project_id, actor, action, payload)
        return WriteResponse(version=put.version, warnings=warnings)

    def _reconcile_warnings(self, project_id: str, section_type: str, version: int,
                            content: Dict[str, Any]) -> List[str]:
        # The document write has committed; reconciliation problems never undo it
        try:
            report = reconcile.reconcile_to_head(project_id, section_type, version, content, self.registry)
        except (VaultError, sqlite3.Error) as e:
            logger.error(f"Reconciliation of {section_type} in project {project_id} failed: {e}")
            return [f"Reconciliation failed: {e}"]
        return [f"Reconciliation warning: {error}" for error in report.errors]

    def _schedule_propagation(self, project_id: str, section_type: str,
                              old_document: Optional[Dict[str, Any]], new_document: Dict[str, Any],
                              version: int) -> None:
        if not config.is_propagation_enabled() or old_document is None:
            return
        if not propagation.detect_atomic_changes(section_type, old_document, new_document, self.dependency_rules):
            return
        self.dispatcher.submit(f"propagation.{section_type}", self._run_propagation,
                               project_id, section_type, old_document, new_document, version)

    def _run_propagation(self, project_id: str, section_type: str, old_document, new_document, version: int):
        report = propagation.propagate(project_id, section_type, old_document, new_document, version,
                                       rules=self.dependency_rules, registry=self.registry)
        dao.add_event(project_id, "system", "propagation", report.to_dict())
        return report

    # Field writes

    def batch_set_fields(self, project_id: str, section_type, fields: Dict[str, Any],
                         actor: str = "ai") -> BatchSetResponse:
        """Write several field records directly, bypassing the document."""
        section = self.registry.get_section(section_type)
        request = _request(BatchSetFieldsRequest, fields=fields)
        dao.get_project(project_id)

        response = BatchSetResponse()
        for field_id, value in request.fields.items():
            definition = section.field(field_id)
            problems = validate_field_value(definition, value) if definition else []
            try:
                record = field_store.upsert_version(project_id, section.section_type, field_id, value,
                                                    registry=self.registry)
            except (VaultError, sqlite3.Error) as e:
                logger.error(f"Batch write of {section.section_type}.{field_id} failed: {e}")
                response.errors.append(FieldError(field_id=field_id, error=str(e)))
                continue
            response.saved.append(SavedField(field_id=field_id, version=record.version, warnings=problems))

        dao.add_event(project_id, actor, "fields_batch_set", {
            "section_type": section.section_type,
            "saved": [s.field_id for s in response.saved],
            "errors": [e.field_id for e in response.errors],
        })
        return response

    # Reads

    def list_fields(self, project_id: str, section_type) -> ListFieldsResponse:
        """Current fields of a section, instantiating defaults when none exist yet."""
        section = self.registry.get_section(section_type)
        records = field_store.list_current(project_id, section.section_type, self.registry)
        if not records:
            reconcile.ensure_defaults(project_id, section.section_type, self.registry)
            records = field_store.list_current(project_id, section.section_type, self.registry)

        return ListFieldsResponse(
            section_type=section.section_type,
            fields=[FieldResponse.model_validate(record) for record in records],
            section_approval_status=self._approval_status(project_id, section, records),
        )

    def _approval_status(self, project_id: str, section, records: List[FieldRecord]) -> str:
        if not records or not all(record.is_approved for record in records):
            return SECTION_STATUS_PENDING
        if section.field_only:
            return SECTION_STATUS_APPROVED
        try:
            document = section_store.get_current(project_id, section.section_type, self.registry)
        except NotFoundError:
            return SECTION_STATUS_APPROVED
        return document.status

    def get_section_document(self, project_id: str, section_type, version: int = None) -> SectionDocumentResponse:
        if version is None:
            document = section_store.get_current(project_id, section_type, self.registry)
        else:
            document = section_store.get_at_version(project_id, section_type, version, self.registry)
        return SectionDocumentResponse.model_validate(document)

    def get_section_history(self, project_id: str, section_type) -> SectionHistoryResponse:
        section_type = self.registry.get_section(section_type).section_type
        versions = section_store.list_versions(project_id, section_type, self.registry)
        current = next((v.version for v in versions if v.is_current_version), None)
        return SectionHistoryResponse(
            section_type=section_type,
            current_version=current,
            versions=[SectionDocumentResponse.model_validate(v) for v in versions],
        )

    # Approval

    def approve_section(self, project_id: str, section_type, approver: str = "user",
                        wait_for_sync: bool = True) -> ApproveSectionResponse:
        """Approve all current fields of a section and fan out its sync rules.

        By default the sync rules run before returning and their outcomes are in
        sync_results. With wait_for_sync=False they run on the background pool,
        sync_results is empty and sync_pending is True.
        """
        approval = self.approvals.approve_section(project_id, section_type, approver, wait_for_sync)
        return ApproveSectionResponse(
            section_type=approval.section_type,
            fields_approved=approval.fields_approved,
            section_version=approval.section_version,
            sync_results=[SyncResult(**outcome.to_dict()) for outcome in approval.sync_results],
            sync_pending=approval.sync_pending,
        )

    # Maintenance and previews

    def reconcile_section(self, project_id: str, section_type) -> ReconcileResponse:
        """Re-derive a section's fields from its current document (or defaults when field-only)."""
        section = self.registry.get_section(section_type)
        if section.field_only:
            report = reconcile.ensure_defaults(project_id, section.section_type, self.registry)
        else:
            report = reconcile.repair(project_id, section.section_type, self.registry)
        return ReconcileResponse(
            section_type=section.section_type,
            created=report.created,
            updated=report.updated,
            unchanged=report.unchanged,
            errors=report.errors,
        )

    def dependency_impact(self, section_type, field_id: str = None) -> DependencyImpactResponse:
        """Which sections an edit of a section (or one of its fields) would affect."""
        section_type = self.registry.get_section(section_type).section_type
        impact = self.dependency_rules.impact(section_type, field_id)
        return DependencyImpactResponse(
            section_type=section_type,
            field_id=field_id,
            has_impact=impact.has_impact,
            is_field_level=impact.is_field_level,
            affected_sections=[AffectedSectionResponse(section_type=a.section_type, reason=a.reason)
                               for a in impact.affected],
            sync_preview=self.sync_table.preview_message(section_type, field_id, self.registry) if field_id else None,
        )

    def wait_for_background(self, timeout: Optional[float] = None) -> bool:
        """Block until queued propagation and sync work has finished."""
        return self.dispatcher.wait_idle(timeout)
