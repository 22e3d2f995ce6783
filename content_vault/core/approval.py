"""
Approval flow - explicit human approval of a section's current fields.

Approval flips every current field of the section to approved, marks the
current section document approved, and fans out sync rules in the
background (or inline when the caller wants the per-rule results).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import config, dao, field_store, section_store, sync_rules
from .background import BackgroundDispatcher, dispatcher as default_dispatcher
from .errors import ConflictError, NotFoundError
from .field_registry import SectionRegistry, registry as default_registry
from .schema import SECTION_STATUS_APPROVED
from .sync_rules import SyncOutcome, SyncRuleTable
from ..util.logging import logger


@dataclass
class SectionApproval:
    project_id: str
    section_type: str
    fields_approved: int
    section_version: Optional[int]
    approver: str
    approved_at: datetime
    sync_results: List[SyncOutcome] = field(default_factory=list)
    sync_pending: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "section_type": self.section_type,
            "fields_approved": self.fields_approved,
            "section_version": self.section_version,
            "approver": self.approver,
            "approved_at": self.approved_at.isoformat(),
            "sync_results": [o.to_dict() for o in self.sync_results],
            "sync_pending": self.sync_pending,
        }


class ApprovalWorkflow:
    """Section approval with sync-rule fan-out."""

    def __init__(self, registry: SectionRegistry = None, sync_table: SyncRuleTable = None,
                 dispatcher: BackgroundDispatcher = None):
        self.registry = registry or default_registry
        self.sync_table = sync_table or sync_rules.sync_table
        self.dispatcher = dispatcher or default_dispatcher

    def approve_section(self, project_id: str, section_type, approver: str = "user",
                        wait_for_sync: bool = False) -> SectionApproval:
        """Approve every current field of a section and trigger its sync rules."""
        section = self.registry.get_section(section_type)
        section_type = section.section_type

        document_version = None
        if not section.field_only:
            try:
                document_version = section_store.get_current(project_id, section_type, self.registry).version
            except NotFoundError:
                # Fields may exist without a document (defaults, batch writes)
                dao.get_project(project_id)

        records = field_store.approve_all(project_id, section_type, self.registry)

        section_version = None
        if document_version is not None:
            try:
                section_version = section_store.set_status(
                    project_id, section_type, SECTION_STATUS_APPROVED,
                    version=document_version, registry=self.registry
                )
            except ConflictError as e:
                # A newer document arrived; its status stays pending
                logger.warning(f"Section {section_type} moved during approval: {e}")

        approval = SectionApproval(
            project_id=project_id,
            section_type=section_type,
            fields_approved=len(records),
            section_version=section_version,
            approver=approver,
            approved_at=datetime.now(),
        )

        dao.add_event(project_id, approver, "section_approved", {
            "section_type": section_type,
            "fields_approved": approval.fields_approved,
            "section_version": section_version,
        })

        rules = self.sync_table.rules_for_section(section_type)
        if rules and config.is_sync_enabled():
            if wait_for_sync:
                approval.sync_results = self._run_sync(project_id, section_type)
            else:
                self.dispatcher.submit(f"sync.{section_type}", self._run_sync, project_id, section_type)
                approval.sync_pending = True

        logger.log_approval(project_id, section_type, approval.fields_approved, len(rules))
        return approval

    def _run_sync(self, project_id: str, section_type: str) -> List[SyncOutcome]:
        outcomes = sync_rules.fan_out(project_id, section_type, self.sync_table, self.registry)
        dao.add_event(project_id, "system", "sync_fan_out", {
            "section_type": section_type,
            "outcomes": [o.to_dict() for o in outcomes],
        })
        return outcomes


# Global workflow instance
workflow = ApprovalWorkflow()


def approve_section(project_id: str, section_type, approver: str = "user",
                    wait_for_sync: bool = False) -> SectionApproval:
    """Approve a section using the global workflow."""
    return workflow.approve_section(project_id, section_type, approver, wait_for_sync)
