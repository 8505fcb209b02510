"""
Append-only audit trail.

The recorder writes into the caller's session and never commits: an entry
is durable exactly when the change it describes is. There is no update or
delete here.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tagflow.models.audit import AuditLogEntry
from tagflow.models.domain import Equipment, utcnow
from tagflow.models.enums import AuditAction
from tagflow.services.errors import StorageError
from tagflow.services.store import IdentitySource

logger = logging.getLogger(__name__)

EQUIPMENT = "Equipment"

# Fields compared when logging an equipment update
_TRACKED_FIELDS = ("tag", "description", "status", "service", "manufacturer", "model")


def _as_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; bring aware datetimes to match."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _plain(value: Any) -> Any:
    # Enums are stored by value so snapshots stay JSON-serializable
    return getattr(value, "value", value)


def equipment_snapshot(equipment: Equipment, fields=_TRACKED_FIELDS) -> Dict[str, Any]:
    """Schema-agnostic snapshot of the given equipment fields."""
    return {name: _plain(getattr(equipment, name, None)) for name in fields}


class AuditTrailRecorder:
    """Write and query audit entries."""

    def __init__(self, db: Session):
        self.db = db

    def record(self, entry: AuditLogEntry) -> AuditLogEntry:
        """
        Append one entry.

        Never rejects on business grounds; the only failure is StorageError.
        The caller owns the transaction and decides when it commits.
        """
        if entry.timestamp_utc is None:
            entry.timestamp_utc = utcnow()
        try:
            self.db.add(entry)
            self.db.flush()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not write audit entry: {e}") from e
        return entry

    def query(
        self,
        project_id: Optional[int],
        entity_type: Optional[str] = None,
        action: Optional[AuditAction] = None,
        since: Optional[datetime] = None
    ) -> List[AuditLogEntry]:
        """Entries of one project, newest first. Filters are conjunctive."""
        query = self.db.query(AuditLogEntry).filter(AuditLogEntry.project_id == project_id)
        if entity_type:
            query = query.filter(AuditLogEntry.entity_type == entity_type)
        if action:
            query = query.filter(AuditLogEntry.action == action)
        if since is not None:
            query = query.filter(AuditLogEntry.timestamp_utc >= _as_utc(since))
        return self._newest_first(query)

    def entity_history(self, entity_type: str, entity_id: Any) -> List[AuditLogEntry]:
        """Every entry about one entity, newest first."""
        query = self.db.query(AuditLogEntry).filter(
            AuditLogEntry.entity_type == entity_type,
            AuditLogEntry.entity_id == str(entity_id)
        )
        return self._newest_first(query)

    def recent(self, project_id: int, limit: int = 100) -> List[AuditLogEntry]:
        query = self.db.query(AuditLogEntry).filter(AuditLogEntry.project_id == project_id)
        return self._newest_first(query, limit=limit)

    def between(
        self,
        start: datetime,
        end: datetime,
        project_id: Optional[int] = None
    ) -> List[AuditLogEntry]:
        """Entries with start <= timestamp <= end, optionally for one project."""
        query = self.db.query(AuditLogEntry).filter(
            AuditLogEntry.timestamp_utc >= _as_utc(start),
            AuditLogEntry.timestamp_utc <= _as_utc(end)
        )
        if project_id is not None:
            query = query.filter(AuditLogEntry.project_id == project_id)
        return self._newest_first(query)

    def _newest_first(self, query, limit: Optional[int] = None) -> List[AuditLogEntry]:
        query = query.order_by(AuditLogEntry.timestamp_utc.desc(), AuditLogEntry.id.desc())
        if limit is not None:
            query = query.limit(limit)
        try:
            return query.all()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not read audit trail: {e}") from e

    # Convenience writers for the common equipment events

    def log_equipment_created(self, equipment: Equipment, identity: IdentitySource) -> AuditLogEntry:
        return self.record(AuditLogEntry(
            entity_type=EQUIPMENT,
            entity_id=str(equipment.id),
            action=AuditAction.CREATED,
            performed_by=identity.performed_by,
            change_summary=f"Equipment '{equipment.tag}' created",
            new_snapshot=equipment_snapshot(equipment, ("tag", "equipment_type", "description", "status")),
            project_id=equipment.project_id,
            source=identity.source
        ))

    def log_equipment_updated(
        self,
        old: Dict[str, Any],
        equipment: Equipment,
        identity: IdentitySource,
        summary_prefix: Optional[str] = None
    ) -> Optional[AuditLogEntry]:
        """
        Log the difference between a before-snapshot and the entity now.

        Returns None without writing anything when no tracked field changed.
        """
        new = equipment_snapshot(equipment)
        changes = []
        if old.get("tag") != new["tag"]:
            changes.append(f"Tag: {old.get('tag')} → {new['tag']}")
        if old.get("description") != new["description"]:
            changes.append("Description changed")
        if old.get("status") != new["status"]:
            changes.append(f"Status: {old.get('status')} → {new['status']}")
        if old.get("service") != new["service"]:
            changes.append(f"Service: {old.get('service')} → {new['service']}")
        if old.get("manufacturer") != new["manufacturer"]:
            changes.append("Manufacturer changed")
        if old.get("model") != new["model"]:
            changes.append("Model changed")

        if not changes:
            return None

        summary = ", ".join(changes)
        if summary_prefix:
            summary = f"{summary_prefix}: {summary}"

        return self.record(AuditLogEntry(
            entity_type=EQUIPMENT,
            entity_id=str(equipment.id),
            action=AuditAction.UPDATED,
            performed_by=identity.performed_by,
            change_summary=summary,
            old_snapshot=old,
            new_snapshot=new,
            project_id=equipment.project_id,
            source=identity.source
        ))

    def log_equipment_deleted(self, equipment: Equipment, identity: IdentitySource) -> AuditLogEntry:
        return self.record(AuditLogEntry(
            entity_type=EQUIPMENT,
            entity_id=str(equipment.id),
            action=AuditAction.DELETED,
            performed_by=identity.performed_by,
            change_summary=f"Equipment '{equipment.tag}' deleted",
            old_snapshot=equipment_snapshot(equipment, ("tag", "equipment_type", "description")),
            project_id=equipment.project_id,
            source=identity.source
        ))

    def log_batch_tagging(self, count: int, project_id: int, identity: IdentitySource) -> AuditLogEntry:
        return self.record(AuditLogEntry(
            entity_type=EQUIPMENT,
            entity_id=None,
            action=AuditAction.BATCH_TAGGED,
            performed_by=identity.performed_by,
            change_summary=f"Batch tagged {count} equipment items",
            project_id=project_id,
            source=identity.source
        ))

    def log_synchronization(
        self,
        project_id: int,
        identity: IdentitySource,
        added_to_db: int = 0,
        updated_in_db: int = 0,
        updated_in_drawing: int = 0
    ) -> AuditLogEntry:
        """Record the outcome of a drawing <-> store synchronization run."""
        details = []
        if added_to_db > 0:
            details.append(f"{added_to_db} added to DB")
        if updated_in_db > 0:
            details.append(f"{updated_in_db} updated in DB")
        if updated_in_drawing > 0:
            details.append(f"{updated_in_drawing} updated in drawing")

        return self.record(AuditLogEntry(
            entity_type=EQUIPMENT,
            entity_id=None,
            action=AuditAction.SYNCHRONIZED,
            performed_by=identity.performed_by,
            change_summary=", ".join(details) or "No changes",
            new_snapshot={
                "added_to_db": added_to_db,
                "updated_in_db": updated_in_db,
                "updated_in_drawing": updated_in_drawing,
            },
            project_id=project_id,
            source=identity.source
        ))
