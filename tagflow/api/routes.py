"""API routes for the equipment catalog, tag renumbering, hierarchy views and audit trail."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from tagflow.api.schemas import (
    AuditLogEntryResponse,
    CandidateResponse,
    ConflictResponse,
    ConnectionsResponse,
    DrawingCreate,
    DrawingResponse,
    EquipmentCreate,
    EquipmentResponse,
    EquipmentUpdate,
    HierarchyNodeResponse,
    LineConnectionResponse,
    LineCreate,
    LineResponse,
    ProjectCreate,
    ProjectResponse,
    RenumberApply,
    RenumberOptionsResponse,
    RenumberPreviewResponse,
    RenumberRequest,
    RenumberResultResponse,
)
from tagflow.config import get_settings
from tagflow.database import get_db
from tagflow.models.domain import Drawing, Equipment, Line, Project, utcnow
from tagflow.models.enums import AuditAction, HierarchyMode
from tagflow.services import renumbering
from tagflow.services.audit_trail import AuditTrailRecorder, equipment_snapshot
from tagflow.services.errors import ConflictError, SoftConflictError, ValidationError
from tagflow.services.hierarchy import RelationshipHierarchyBuilder
from tagflow.services.renumbering import BatchRenumberCoordinator, RenumberFilter
from tagflow.services.store import IdentitySource, SqlEquipmentStore
from tagflow.services.tag_pattern import default_pattern, example_tag, unknown_placeholders

router = APIRouter()


def _get_project(db: Session, project_id: int) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def _get_equipment(db: Session, equipment_id: int) -> Equipment:
    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if not equipment:
        raise HTTPException(status_code=404, detail="Equipment not found")
    return equipment


def _identity(performed_by: Optional[str]) -> IdentitySource:
    identity = IdentitySource.from_environment()
    if performed_by:
        identity = IdentitySource(performed_by=performed_by, source=identity.source)
    return identity


def _as_response(equipment) -> Optional[EquipmentResponse]:
    return EquipmentResponse.model_validate(equipment) if equipment is not None else None


def _tag_in_use(db: Session, project_id: int, tag: str, exclude_id: Optional[int] = None) -> bool:
    holders = SqlEquipmentStore(db).active_tags(project_id).get(tag, set())
    return bool(holders - {exclude_id})


# Project endpoints
@router.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(project_data: ProjectCreate, db: Session = Depends(get_db)):
    project = Project(
        name=project_data.name,
        number=project_data.number,
        tagging_mode=project_data.tagging_mode
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(project_id: int, db: Session = Depends(get_db)):
    return _get_project(db, project_id)


# Equipment endpoints
@router.post("/projects/{project_id}/equipment", response_model=EquipmentResponse, status_code=status.HTTP_201_CREATED)
def create_equipment(project_id: int, equipment_data: EquipmentCreate, db: Session = Depends(get_db)):
    """Create equipment. The tag must be unique among the project's active equipment."""
    _get_project(db, project_id)
    if _tag_in_use(db, project_id, equipment_data.tag):
        raise HTTPException(status_code=409, detail=f"Tag '{equipment_data.tag}' already exists in this project")

    identity = _identity(equipment_data.performed_by)
    fields = equipment_data.model_dump(exclude={"performed_by"})
    equipment = Equipment(project_id=project_id, created_by=identity.performed_by, **fields)
    db.add(equipment)
    db.flush()
    AuditTrailRecorder(db).log_equipment_created(equipment, identity)
    db.commit()
    db.refresh(equipment)
    return equipment


@router.get("/projects/{project_id}/equipment", response_model=List[EquipmentResponse])
def list_equipment(project_id: int, db: Session = Depends(get_db)):
    """Active equipment of a project, ordered by tag."""
    _get_project(db, project_id)
    return SqlEquipmentStore(db).find_by_project(project_id)


@router.put("/equipment/{equipment_id}", response_model=EquipmentResponse)
def update_equipment(equipment_id: int, update_data: EquipmentUpdate, db: Session = Depends(get_db)):
    equipment = _get_equipment(db, equipment_id)
    changes = update_data.model_dump(exclude_unset=True, exclude={"performed_by"})
    new_tag = changes.get("tag")
    if new_tag and new_tag != equipment.tag and _tag_in_use(db, equipment.project_id, new_tag, equipment.id):
        raise HTTPException(status_code=409, detail=f"Tag '{new_tag}' already exists in this project")

    identity = _identity(update_data.performed_by)
    old = equipment_snapshot(equipment)
    for name, value in changes.items():
        setattr(equipment, name, value)
    equipment.modified_at = utcnow()
    equipment.modified_by = identity.performed_by
    db.flush()
    AuditTrailRecorder(db).log_equipment_updated(old, equipment, identity)
    db.commit()
    db.refresh(equipment)
    return equipment


@router.delete("/equipment/{equipment_id}", response_model=EquipmentResponse)
def delete_equipment(equipment_id: int, performed_by: Optional[str] = None, db: Session = Depends(get_db)):
    """Soft delete: the equipment is deactivated and its tag becomes free again."""
    equipment = _get_equipment(db, equipment_id)
    identity = _identity(performed_by)
    equipment.is_active = False
    equipment.modified_at = utcnow()
    equipment.modified_by = identity.performed_by
    db.flush()
    AuditTrailRecorder(db).log_equipment_deleted(equipment, identity)
    db.commit()
    db.refresh(equipment)
    return equipment


@router.get("/equipment/{equipment_id}/connections", response_model=ConnectionsResponse)
def get_connections(equipment_id: int, db: Session = Depends(get_db)):
    """Upstream/downstream neighbours and connected lines of one equipment."""
    equipment = _get_equipment(db, equipment_id)
    project = _get_project(db, equipment.project_id)
    builder = RelationshipHierarchyBuilder(SqlEquipmentStore(db).find_by_project(project.id), project.lines)
    connections = builder.connections(equipment_id)
    if connections is None:
        raise HTTPException(status_code=404, detail="Equipment is not active")

    return ConnectionsResponse(
        equipment_id=equipment_id,
        upstream=_as_response(connections.upstream),
        downstream=_as_response(connections.downstream),
        lines=[
            LineConnectionResponse(
                line_number=c.line.line_number,
                service=c.line.service,
                nominal_size=c.line.nominal_size,
                direction=c.direction
            )
            for c in connections.lines
        ]
    )


# Drawing and line endpoints
@router.post("/projects/{project_id}/drawings", response_model=DrawingResponse, status_code=status.HTTP_201_CREATED)
def create_drawing(project_id: int, drawing_data: DrawingCreate, db: Session = Depends(get_db)):
    _get_project(db, project_id)
    drawing = Drawing(project_id=project_id, **drawing_data.model_dump())
    db.add(drawing)
    db.commit()
    db.refresh(drawing)
    return drawing


@router.post("/projects/{project_id}/lines", response_model=LineResponse, status_code=status.HTTP_201_CREATED)
def create_line(project_id: int, line_data: LineCreate, db: Session = Depends(get_db)):
    _get_project(db, project_id)
    line = Line(project_id=project_id, **line_data.model_dump())
    db.add(line)
    db.commit()
    db.refresh(line)
    return line


# Renumbering endpoints
def _coordinator(db: Session) -> BatchRenumberCoordinator:
    return BatchRenumberCoordinator(SqlEquipmentStore(db), AuditTrailRecorder(db))


def _preview(coordinator: BatchRenumberCoordinator, project_id: int, request: RenumberRequest):
    criteria = RenumberFilter(
        equipment_type=request.equipment_type,
        area=request.area,
        tag_pattern=request.tag_pattern
    )
    candidates = coordinator.filter_candidates(project_id, criteria)
    candidates = renumbering.select(candidates, request.selected_ids)
    return renumbering.generate_preview(
        candidates,
        request.pattern,
        request.start_number,
        request.increment,
        type_codes=get_settings().type_codes
    )


@router.get("/projects/{project_id}/renumber/options", response_model=RenumberOptionsResponse)
def renumber_options(project_id: int, db: Session = Depends(get_db)):
    """Filter choices and the default pattern for the project's tagging mode."""
    project = _get_project(db, project_id)
    types, areas = _coordinator(db).filter_options(project_id)
    return RenumberOptionsResponse(
        equipment_types=types,
        areas=areas,
        default_pattern=default_pattern(project.tagging_mode)
    )


@router.post("/projects/{project_id}/renumber/preview", response_model=RenumberPreviewResponse)
def preview_renumbering(project_id: int, request: RenumberRequest, db: Session = Depends(get_db)):
    """Proposed tags plus the conflicts an apply would run into. Writes nothing."""
    _get_project(db, project_id)
    coordinator = _coordinator(db)
    try:
        preview = _preview(coordinator, project_id, request)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)

    report = coordinator.validate(project_id, preview)
    return RenumberPreviewResponse(
        candidates=[
            CandidateResponse(
                equipment_id=c.equipment_id,
                current_tag=c.current_tag,
                equipment_type=c.equipment_type,
                area=c.area,
                selected=c.selected,
                proposed_tag=c.proposed_tag
            )
            for c in preview
        ],
        duplicates=list(report.duplicates),
        store_conflicts=list(report.store_conflicts),
        unknown_placeholders=unknown_placeholders(request.pattern),
        example=example_tag(request.pattern)
    )


@router.post("/projects/{project_id}/renumber/apply", response_model=RenumberResultResponse, responses={
    409: {"model": ConflictResponse, "description": "Duplicate tags, or unconfirmed conflicts with existing tags"},
    500: {"model": RenumberResultResponse, "description": "Storage failure - the whole batch was rolled back"}
})
def apply_renumbering(project_id: int, request: RenumberApply, db: Session = Depends(get_db)):
    """
    Rename every selected candidate in one transaction.

    WILL REFUSE if:
    - The pattern or numbering parameters are invalid (422)
    - Two candidates would get the same tag (409)
    - A new tag is held by other active equipment and confirm_conflicts is false (409)
    """
    _get_project(db, project_id)
    coordinator = _coordinator(db)
    try:
        preview = _preview(coordinator, project_id, request)
        result = coordinator.apply(
            project_id,
            preview,
            _identity(request.performed_by),
            confirm_conflicts=request.confirm_conflicts
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)
    except ConflictError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": e.message, "duplicates": e.duplicates, "requires_confirmation": False}
        )
    except SoftConflictError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": e.message, "conflicts": e.conflicts, "requires_confirmation": True}
        )

    if result.rolled_back:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=RenumberResultResponse(**vars(result)).model_dump()
        )
    return RenumberResultResponse(**vars(result))


# Hierarchy endpoints
@router.get("/projects/{project_id}/hierarchy", response_model=List[HierarchyNodeResponse])
def get_hierarchy(project_id: int, mode: HierarchyMode = HierarchyMode.BY_AREA, db: Session = Depends(get_db)):
    """One relationship tree over the project's active equipment, rebuilt on every call."""
    project = _get_project(db, project_id)
    builder = RelationshipHierarchyBuilder(
        SqlEquipmentStore(db).find_by_project(project_id),
        project.lines,
        project.drawings
    )
    return [node.to_dict() for node in builder.build(mode)]


# Audit endpoints
@router.get("/projects/{project_id}/audit", response_model=List[AuditLogEntryResponse])
def list_audit_entries(
    project_id: int,
    entity_type: Optional[str] = None,
    action: Optional[AuditAction] = None,
    since: Optional[datetime] = None,
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db)
):
    """Audit entries of a project, newest first."""
    _get_project(db, project_id)
    recorder = AuditTrailRecorder(db)
    if limit is not None and not (entity_type or action or since):
        return recorder.recent(project_id, limit=limit)
    entries = recorder.query(project_id, entity_type=entity_type, action=action, since=since)
    return entries[:limit] if limit is not None else entries


@router.get("/audit/{entity_type}/{entity_id}", response_model=List[AuditLogEntryResponse])
def get_entity_history(entity_type: str, entity_id: str, db: Session = Depends(get_db)):
    """Full change history of one entity, newest first."""
    return AuditTrailRecorder(db).entity_history(entity_type, entity_id)
