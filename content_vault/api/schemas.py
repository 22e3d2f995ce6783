"""
Request and result models for the vault service.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class SetFieldRequest(BaseModel):
    path: str
    value: Any = None

    @field_validator('path')
    @classmethod
    def path_must_be_dotted(cls, v):
        if not v or not v.strip():
            raise ValueError('path cannot be empty')
        if any(not part.strip() for part in v.strip().split('.')):
            raise ValueError(f'invalid path: {v}')
        return v.strip()


class BatchSetFieldsRequest(BaseModel):
    fields: Dict[str, Any]

    @field_validator('fields')
    @classmethod
    def fields_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('fields cannot be empty')
        for field_id in v:
            if not field_id or not field_id.strip():
                raise ValueError('field ids cannot be empty')
        return v


class CreateProjectRequest(BaseModel):
    owner_id: str
    name: Optional[str] = None
    project_id: Optional[str] = None

    @field_validator('owner_id')
    @classmethod
    def owner_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('owner_id cannot be empty')
        return v.strip()


class ProjectResponse(BaseModel):
    id: str
    owner_id: str
    name: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class WriteResponse(BaseModel):
    version: int
    warnings: List[str] = []


class FieldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    field_id: str
    value: Any = None
    label: str
    field_type: str
    metadata: Dict[str, Any] = {}
    is_custom: bool
    is_approved: bool
    display_order: int
    version: int


class ListFieldsResponse(BaseModel):
    section_type: str
    fields: List[FieldResponse]
    section_approval_status: str


class SavedField(BaseModel):
    field_id: str
    version: int
    warnings: List[str] = []


class FieldError(BaseModel):
    field_id: str
    error: str


class BatchSetResponse(BaseModel):
    saved: List[SavedField] = []
    errors: List[FieldError] = []


class SyncResult(BaseModel):
    rule_id: str
    target_section: str
    target_field: str
    status: str
    version: Optional[int] = None
    error: Optional[str] = None
    warnings: List[str] = []

    @field_validator('status')
    @classmethod
    def status_must_be_valid(cls, v):
        valid_statuses = ['ok', 'skipped', 'failed']
        if v not in valid_statuses:
            raise ValueError(f'status must be one of: {valid_statuses}')
        return v


class ApproveSectionResponse(BaseModel):
    section_type: str
    fields_approved: int
    section_version: Optional[int] = None
    sync_results: List[SyncResult] = []
    sync_pending: bool = False


class SectionDocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    section_type: str
    version: int
    content: Dict[str, Any]
    status: str
    is_current_version: bool
    created_at: datetime
    updated_at: datetime


class SectionHistoryResponse(BaseModel):
    section_type: str
    current_version: Optional[int] = None
    versions: List[SectionDocumentResponse]


class ReconcileResponse(BaseModel):
    section_type: str
    created: List[str] = []
    updated: List[str] = []
    unchanged: List[str] = []
    errors: List[str] = []


class AffectedSectionResponse(BaseModel):
    section_type: str
    reason: str


class DependencyImpactResponse(BaseModel):
    section_type: str
    field_id: Optional[str] = None
    has_impact: bool
    is_field_level: bool
    affected_sections: List[AffectedSectionResponse] = []
    sync_preview: Optional[str] = None
