"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from tagflow.models.enums import AuditAction, EquipmentStatus, TaggingMode


# Project schemas
class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    number: Optional[str] = None
    tagging_mode: TaggingMode = TaggingMode.CUSTOM


class ProjectResponse(BaseModel):
    id: int
    name: str
    number: Optional[str]
    tagging_mode: TaggingMode
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# Equipment schemas
class EquipmentBase(BaseModel):
    equipment_type: Optional[str] = None
    description: Optional[str] = None
    service: Optional[str] = None
    area: Optional[str] = None
    status: EquipmentStatus = EquipmentStatus.PLANNED
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    operating_pressure: Optional[float] = None
    operating_pressure_unit: Optional[str] = None
    operating_temperature: Optional[float] = None
    operating_temperature_unit: Optional[str] = None
    flow_rate: Optional[float] = None
    flow_rate_unit: Optional[str] = None
    design_pressure: Optional[float] = None
    design_pressure_unit: Optional[str] = None
    design_temperature: Optional[float] = None
    design_temperature_unit: Optional[str] = None
    power_or_capacity: Optional[float] = None
    power_or_capacity_unit: Optional[str] = None
    upstream_equipment_id: Optional[int] = None
    downstream_equipment_id: Optional[int] = None
    drawing_id: Optional[int] = None


class EquipmentCreate(EquipmentBase):
    tag: str = Field(..., min_length=1, max_length=50)
    performed_by: str


class EquipmentUpdate(BaseModel):
    """Partial update - only the fields sent are changed."""
    tag: Optional[str] = Field(None, min_length=1, max_length=50)
    equipment_type: Optional[str] = None
    description: Optional[str] = None
    service: Optional[str] = None
    area: Optional[str] = None
    status: Optional[EquipmentStatus] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    upstream_equipment_id: Optional[int] = None
    downstream_equipment_id: Optional[int] = None
    drawing_id: Optional[int] = None
    performed_by: str

    @field_validator("tag", "status")
    @classmethod
    def not_null(cls, v, info):
        # May be left out, but never cleared
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class EquipmentResponse(EquipmentBase):
    id: int
    project_id: int
    tag: str
    is_active: bool
    created_at: datetime
    modified_at: Optional[datetime]

    class Config:
        from_attributes = True


# Drawing and line schemas
class DrawingCreate(BaseModel):
    drawing_number: str = Field(..., min_length=1)
    title: Optional[str] = None
    revision: Optional[str] = None


class DrawingResponse(DrawingCreate):
    id: int
    project_id: int

    class Config:
        from_attributes = True


class LineCreate(BaseModel):
    line_number: str = Field(..., min_length=1)
    service: Optional[str] = None
    nominal_size: Optional[str] = None
    from_equipment_id: Optional[int] = None
    to_equipment_id: Optional[int] = None
    drawing_id: Optional[int] = None


class LineResponse(LineCreate):
    id: int
    project_id: int

    class Config:
        from_attributes = True


# Renumbering schemas
class RenumberRequest(BaseModel):
    """Filter + pattern + numbering parameters for one renumbering session."""
    equipment_type: Optional[str] = None
    area: Optional[str] = None
    tag_pattern: Optional[str] = None
    selected_ids: Optional[List[int]] = None  # None = every filtered candidate
    pattern: str
    start_number: Union[int, str] = 1
    increment: Union[int, str] = 1


class RenumberApply(RenumberRequest):
    performed_by: Optional[str] = None
    confirm_conflicts: bool = False


class CandidateResponse(BaseModel):
    equipment_id: int
    current_tag: str
    equipment_type: str
    area: Optional[str]
    selected: bool
    proposed_tag: str


class RenumberPreviewResponse(BaseModel):
    candidates: List[CandidateResponse]
    duplicates: List[str] = []
    store_conflicts: List[str] = []
    unknown_placeholders: List[str] = []
    example: str


class RenumberOptionsResponse(BaseModel):
    equipment_types: List[str]
    areas: List[str]
    default_pattern: str


class RenumberResultResponse(BaseModel):
    success_count: int
    error_count: int
    errors: List[str] = []
    rolled_back: bool = False
    fatal_error: Optional[str] = None


# Hierarchy schemas
class HierarchyNodeResponse(BaseModel):
    label: str
    child_count: int
    equipment_id: Optional[int] = None
    circular: bool = False
    children: List["HierarchyNodeResponse"] = []


class LineConnectionResponse(BaseModel):
    line_number: str
    service: Optional[str]
    nominal_size: Optional[str]
    direction: str


class ConnectionsResponse(BaseModel):
    equipment_id: int
    upstream: Optional[EquipmentResponse] = None
    downstream: Optional[EquipmentResponse] = None
    lines: List[LineConnectionResponse] = []


# Audit schemas
class AuditLogEntryResponse(BaseModel):
    id: int
    entity_type: str
    entity_id: Optional[str]
    action: AuditAction
    performed_by: str
    timestamp_utc: datetime
    change_summary: str
    old_snapshot: Optional[Dict[str, Any]]
    new_snapshot: Optional[Dict[str, Any]]
    project_id: Optional[int]
    source: Optional[str]

    class Config:
        from_attributes = True


# Error response
class ConflictResponse(BaseModel):
    """Response when an apply is refused because of tag conflicts."""
    message: str
    duplicates: List[str] = []
    conflicts: List[str] = []
    requires_confirmation: bool = False
