"""
Audit trail model - the append-only ledger of record for every mutation.

Entries are written once per logical change and never edited or deleted by
tagflow. Retention and purging belong to whoever operates the database.
"""
from sqlalchemy import Column, DateTime, Enum as SQLEnum, Integer, JSON, String, event

from tagflow.database import Base
from tagflow.models.domain import utcnow
from tagflow.models.enums import AuditAction
from tagflow.services.errors import ImmutableAuditError


class AuditLogEntry(Base):
    """
    Immutable record of one change event.

    Invariants:
    - Once written, never edited or deleted (enforced by mapper events below)
    - Append-only
    - old_snapshot/new_snapshot are schema-agnostic maps; different entity
      types carry different fields
    """
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    entity_type = Column(String, nullable=False, index=True)  # e.g. "Equipment", "Line"
    entity_id = Column(String, nullable=True, index=True)  # None for project-wide events
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    performed_by = Column(String, nullable=False)
    timestamp_utc = Column(DateTime, nullable=False, default=utcnow, index=True)
    change_summary = Column(String, nullable=False, default="")
    old_snapshot = Column(JSON, nullable=True)
    new_snapshot = Column(JSON, nullable=True)
    project_id = Column(Integer, nullable=True, index=True)
    source = Column(String, nullable=True)  # host machine or subsystem


@event.listens_for(AuditLogEntry, "before_update")
def _refuse_update(mapper, connection, target):
    raise ImmutableAuditError(
        f"IMMUTABILITY VIOLATION: audit entry {target.id} cannot be modified"
    )


@event.listens_for(AuditLogEntry, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ImmutableAuditError(
        f"IMMUTABILITY VIOLATION: audit entry {target.id} cannot be deleted"
    )
