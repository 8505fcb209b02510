"""Domain models - projects and the equipment catalog with its drawings and lines."""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from tagflow.database import Base
from tagflow.models.enums import EquipmentStatus, TaggingMode


def utcnow() -> datetime:
    """Naive UTC timestamp. Every stored datetime is UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Project(Base):
    """A P&ID project. Equipment tags are unique per project."""
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    number = Column(String, nullable=True)
    tagging_mode = Column(SQLEnum(TaggingMode), nullable=False, default=TaggingMode.CUSTOM)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    equipment = relationship("Equipment", back_populates="project", cascade="all, delete-orphan")
    drawings = relationship("Drawing", back_populates="project", cascade="all, delete-orphan")
    lines = relationship("Line", back_populates="project", cascade="all, delete-orphan")


class Equipment(Base):
    """
    A tagged physical item (pump, valve, tank, ...).

    Invariants:
    - tag is unique among *active* equipment of the same project. This is
      enforced by the services, not by a database constraint, because an
      operator may knowingly override a tag conflict during renumbering.
    - upstream/downstream are single optional links to equipment of the same
      project. Cycles are allowed here; traversals must detect them.
    """
    __tablename__ = "equipment"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    tag = Column(String, nullable=False, index=True)
    equipment_type = Column(String, nullable=True)
    description = Column(String, nullable=True)
    service = Column(String, nullable=True)
    area = Column(String, nullable=True)
    status = Column(SQLEnum(EquipmentStatus), nullable=False, default=EquipmentStatus.PLANNED)
    manufacturer = Column(String, nullable=True)
    model = Column(String, nullable=True)

    # Operating conditions
    operating_pressure = Column(Float, nullable=True)
    operating_pressure_unit = Column(String, nullable=True)  # bar, psi, kPa, MPa
    operating_temperature = Column(Float, nullable=True)
    operating_temperature_unit = Column(String, nullable=True)  # C, F, K
    flow_rate = Column(Float, nullable=True)
    flow_rate_unit = Column(String, nullable=True)  # m3/h, L/min, gpm, kg/h

    # Design conditions
    design_pressure = Column(Float, nullable=True)
    design_pressure_unit = Column(String, nullable=True)
    design_temperature = Column(Float, nullable=True)
    design_temperature_unit = Column(String, nullable=True)

    power_or_capacity = Column(Float, nullable=True)
    power_or_capacity_unit = Column(String, nullable=True)  # kW, HP, m3, L, tons

    # Process connectivity
    upstream_equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=True)
    downstream_equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=True)

    # Source drawing
    drawing_id = Column(Integer, ForeignKey("drawings.id"), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    modified_by = Column(String, nullable=True)
    modified_at = Column(DateTime, nullable=True)

    project = relationship("Project", back_populates="equipment")
    drawing = relationship("Drawing", back_populates="equipment")


class Drawing(Base):
    """A P&ID drawing. Sorted and labelled by its drawing number."""
    __tablename__ = "drawings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    drawing_number = Column(String, nullable=False)
    title = Column(String, nullable=True)
    revision = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    project = relationship("Project", back_populates="drawings")
    equipment = relationship("Equipment", back_populates="drawing")


class Line(Base):
    """A piping line running from one equipment to another."""
    __tablename__ = "lines"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    line_number = Column(String, nullable=False)
    service = Column(String, nullable=True)
    nominal_size = Column(String, nullable=True)
    from_equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=True)
    to_equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=True)
    drawing_id = Column(Integer, ForeignKey("drawings.id"), nullable=True)

    project = relationship("Project", back_populates="lines")
