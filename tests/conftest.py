"""Pytest configuration and shared fixtures."""
import os

# Keep the module-level engine off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from tagflow.database import Base
from tagflow.models.domain import Project, Equipment, Drawing, Line
from tagflow.models.audit import AuditLogEntry
from tagflow.services.audit_trail import AuditTrailRecorder
from tagflow.services.store import IdentitySource, SqlEquipmentStore


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # In-memory SQLite for fast tests
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def identity():
    return IdentitySource(performed_by="jdoe", source="WS-042")


@pytest.fixture
def sample_project(db_session):
    """A project with three pumps in area 100, a tank in area 200 and a drawing."""
    project = Project(name="Water Treatment", number="WT-01")
    db_session.add(project)
    db_session.flush()

    drawing = Drawing(project_id=project.id, drawing_number="PID-001", title="Intake")
    db_session.add(drawing)
    db_session.flush()

    for tag, equipment_type, area in [
        ("P-003", "Pump", "100"),
        ("P-001", "Pump", "100"),
        ("P-002", "Pump", "100"),
        ("T-001", "Tank", "200"),
    ]:
        db_session.add(Equipment(
            project_id=project.id,
            tag=tag,
            equipment_type=equipment_type,
            area=area,
            drawing_id=drawing.id if equipment_type == "Pump" else None
        ))
    db_session.commit()
    db_session.refresh(project)
    return project


@pytest.fixture
def store(db_session):
    return SqlEquipmentStore(db_session)


@pytest.fixture
def recorder(db_session):
    return AuditTrailRecorder(db_session)
