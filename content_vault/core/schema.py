"""
Record types returned by the vault stores.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

SECTION_STATUS_PENDING = "pending"
SECTION_STATUS_APPROVED = "approved"
SECTION_STATUSES = (SECTION_STATUS_PENDING, SECTION_STATUS_APPROVED)


@dataclass
class Project:
    id: str
    owner_id: str
    name: Optional[str]
    is_active: bool
    is_deleted: bool
    created_at: datetime
    updated_at: datetime


@dataclass
class SectionDocument:
    project_id: str
    section_type: str
    version: int
    content: Dict[str, Any]
    status: str
    is_current_version: bool
    created_at: datetime
    updated_at: datetime


@dataclass
class PutResult:
    version: int
    previous_content: Optional[Dict[str, Any]]
    previous_version: Optional[int] = None


@dataclass
class FieldRecord:
    project_id: str
    section_type: str
    field_id: str
    value: Any
    label: str
    field_type: str
    metadata: Dict[str, Any]
    is_custom: bool
    is_approved: bool
    display_order: int
    version: int
    is_current_version: bool
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_id": self.field_id,
            "value": self.value,
            "label": self.label,
            "field_type": self.field_type,
            "metadata": self.metadata,
            "is_custom": self.is_custom,
            "is_approved": self.is_approved,
            "display_order": self.display_order,
            "version": self.version,
            "is_current_version": self.is_current_version,
        }


@dataclass
class VaultEvent:
    id: int
    project_id: str
    ts: datetime
    actor: str
    action: str
    payload: Dict


@dataclass
class ReconciliationReport:
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated)
