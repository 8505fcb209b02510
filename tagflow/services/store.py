"""
Collaborators the core services run against: the equipment store and the
identity stamped on audit entries.
"""
import getpass
import logging
import socket
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tagflow.config import get_settings
from tagflow.models.domain import Equipment
from tagflow.services.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentitySource:
    """Who performed a change and where it came from. Opaque to the core."""
    performed_by: str
    source: str

    @classmethod
    def from_environment(cls) -> "IdentitySource":
        """Current OS user and host name, unless overridden in settings."""
        settings = get_settings()
        performed_by = settings.actor
        if not performed_by:
            try:
                performed_by = getpass.getuser()
            except (KeyError, OSError):
                # No login name in minimal containers
                performed_by = "system"
        return cls(performed_by=performed_by, source=settings.source or socket.gethostname())

    def for_operation(self, operation: str) -> "IdentitySource":
        """Same actor, source prefixed with the subsystem doing the work."""
        return IdentitySource(performed_by=self.performed_by, source=f"{operation}: {self.source}")


class SqlEquipmentStore:
    """
    Equipment store over a SQLAlchemy session.

    The session autobegins, so ``begin`` only marks the start of a unit of
    work; everything flushed after it is undone by ``rollback`` and made
    durable by ``commit``. Database errors surface as StorageError.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_by_project(
        self,
        project_id: int,
        predicate: Optional[Callable[[Equipment], bool]] = None,
        active_only: bool = True
    ) -> List[Equipment]:
        """Equipment of one project ordered by tag, optionally narrowed by ``predicate``."""
        query = self.db.query(Equipment).filter(Equipment.project_id == project_id)
        if active_only:
            query = query.filter(Equipment.is_active.is_(True))
        try:
            equipment = query.order_by(Equipment.tag, Equipment.id).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not load equipment for project {project_id}: {e}") from e

        if predicate is None:
            return equipment
        return [eq for eq in equipment if predicate(eq)]

    def get_by_id(self, equipment_id: int) -> Optional[Equipment]:
        try:
            return self.db.get(Equipment, equipment_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not load equipment {equipment_id}: {e}") from e

    def update(self, equipment: Equipment) -> None:
        """Persist pending changes to one entity (flushed, not committed)."""
        try:
            self.db.add(equipment)
            self.db.flush()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not update equipment '{equipment.tag}': {e}") from e

    def active_tags(self, project_id: int) -> Dict[str, Set[int]]:
        """Tag -> ids of the active equipment currently holding it."""
        tags: Dict[str, Set[int]] = defaultdict(set)
        for equipment in self.find_by_project(project_id):
            tags[equipment.tag].add(equipment.id)
        return dict(tags)

    def begin(self) -> None:
        """
        Start a unit of work. Refuses when the session holds unflushed changes.

        Changes the caller already flushed but did not commit cannot be told
        apart from this unit's own and share its commit or rollback.
        """
        if self.db.new or self.db.dirty or self.db.deleted:
            raise StorageError("Session has pending changes; commit or roll them back first")
        logger.debug("Equipment store transaction started")

    def commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Commit failed: {e}") from e

    def rollback(self) -> None:
        self.db.rollback()
        logger.info("Equipment store transaction rolled back")
