"""
Batch tag renumbering.

The workflow is a pipeline of immutable snapshots:

    filter_candidates -> select -> generate_preview -> validate -> apply

Every step returns a new tuple of candidates; nothing is mutated in place.
Candidate order is the display order and must stay the same between preview
and apply, because sequence numbers are handed out in that order.
"""
import logging
import re
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Mapping, Optional, Tuple, Union

from tagflow.models.audit import AuditLogEntry
from tagflow.models.domain import Equipment, utcnow
from tagflow.models.enums import AuditAction
from tagflow.services.audit_trail import EQUIPMENT, AuditTrailRecorder, equipment_snapshot
from tagflow.services.errors import ConflictError, SoftConflictError, StorageError, ValidationError
from tagflow.services.store import IdentitySource, SqlEquipmentStore
from tagflow.services.tag_pattern import ExpansionContext, expand

logger = logging.getLogger(__name__)

OPERATION_NAME = "Tag Renumbering"

_SNAPSHOT_FIELDS = ("tag", "equipment_type", "description")


@dataclass(frozen=True)
class RenumberingCandidate:
    """Renumbering-session view of one equipment. Never persisted."""
    equipment_id: int
    current_tag: str
    equipment_type: str
    area: Optional[str] = None
    description: Optional[str] = None
    selected: bool = False
    proposed_tag: str = ""

    @classmethod
    def from_equipment(cls, equipment: Equipment) -> "RenumberingCandidate":
        return cls(
            equipment_id=equipment.id,
            current_tag=equipment.tag,
            equipment_type=equipment.equipment_type or "Unknown",
            area=equipment.area,
            description=equipment.description
        )


@dataclass(frozen=True)
class RenumberFilter:
    """Conjunctive candidate filter. Empty fields do not filter."""
    equipment_type: Optional[str] = None
    area: Optional[str] = None
    tag_pattern: Optional[str] = None

    def compile_tag_pattern(self) -> Optional["re.Pattern[str]"]:
        """``*`` matches any run of characters; anchored and case-insensitive."""
        if not self.tag_pattern or not self.tag_pattern.strip():
            return None
        escaped = re.escape(self.tag_pattern.strip()).replace(r"\*", ".*")
        return re.compile(f"^{escaped}$", re.IGNORECASE)

    def matches(self, equipment: Equipment) -> bool:
        if self.equipment_type and equipment.equipment_type != self.equipment_type:
            return False
        if self.area and equipment.area != self.area:
            return False
        regex = self.compile_tag_pattern()
        if regex is not None and not regex.match(equipment.tag or ""):
            return False
        return True


@dataclass(frozen=True)
class ConflictReport:
    """Outcome of the pre-commit checks."""
    duplicates: Tuple[str, ...] = ()
    store_conflicts: Tuple[str, ...] = ()

    @property
    def has_duplicates(self) -> bool:
        return bool(self.duplicates)

    @property
    def has_store_conflicts(self) -> bool:
        return bool(self.store_conflicts)

    @property
    def is_clean(self) -> bool:
        return not self.duplicates and not self.store_conflicts


@dataclass
class RenumberResult:
    """Summary of one apply invocation."""
    success_count: int = 0
    error_count: int = 0
    errors: List[str] = field(default_factory=list)
    rolled_back: bool = False
    fatal_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return not self.rolled_back and self.error_count == 0


def _parse_int(value: Union[int, str], name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Please enter a valid {name}.")
    try:
        return int(value.strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Please enter a valid {name}.") from None


def select(
    candidates: Iterable[RenumberingCandidate],
    equipment_ids: Optional[Iterable[int]] = None
) -> Tuple[RenumberingCandidate, ...]:
    """Mark the given equipment (or every candidate when None) as selected."""
    wanted = None if equipment_ids is None else set(equipment_ids)
    return tuple(
        replace(c, selected=True) if wanted is None or c.equipment_id in wanted else c
        for c in candidates
    )


def deselect(
    candidates: Iterable[RenumberingCandidate],
    equipment_ids: Optional[Iterable[int]] = None
) -> Tuple[RenumberingCandidate, ...]:
    """Inverse of :func:`select`. Deselected candidates lose their proposed tag."""
    unwanted = None if equipment_ids is None else set(equipment_ids)
    return tuple(
        replace(c, selected=False, proposed_tag="")
        if unwanted is None or c.equipment_id in unwanted else c
        for c in candidates
    )


def generate_preview(
    candidates: Iterable[RenumberingCandidate],
    pattern: str,
    start_number: Union[int, str],
    increment: Union[int, str] = 1,
    type_codes: Optional[Mapping[str, str]] = None
) -> Tuple[RenumberingCandidate, ...]:
    """
    Assign proposed tags to the selected candidates in display order.

    start_number may be any integer, including zero or negative. increment
    must be at least 1. Unselected candidates get an empty proposed tag.
    """
    pattern = (pattern or "").strip()
    if not pattern:
        raise ValidationError("Please enter a renumbering pattern.")
    current = _parse_int(start_number, "start number")
    step = _parse_int(increment, "increment (minimum 1)")
    if step < 1:
        raise ValidationError("Please enter a valid increment (minimum 1).")

    codes = dict(type_codes or {})
    preview = []
    for candidate in candidates:
        if not candidate.selected:
            preview.append(replace(candidate, proposed_tag=""))
            continue
        ctx = ExpansionContext(
            equipment_type=candidate.equipment_type,
            area=candidate.area,
            type_codes=codes
        )
        preview.append(replace(candidate, proposed_tag=expand(pattern, ctx, current)))
        current += step
    return tuple(preview)


def _pending(candidates: Iterable[RenumberingCandidate]) -> List[RenumberingCandidate]:
    return [c for c in candidates if c.selected and c.proposed_tag]


class BatchRenumberCoordinator:
    """Turns a filter + pattern into a validated, all-or-nothing set of tag changes."""

    def __init__(self, store: SqlEquipmentStore, recorder: AuditTrailRecorder):
        self.store = store
        self.recorder = recorder

    def filter_candidates(
        self,
        project_id: int,
        criteria: Optional[RenumberFilter] = None
    ) -> Tuple[RenumberingCandidate, ...]:
        """Active equipment of the project matching every given filter, ordered by tag."""
        criteria = criteria or RenumberFilter()
        equipment = self.store.find_by_project(project_id, predicate=criteria.matches)
        return tuple(RenumberingCandidate.from_equipment(eq) for eq in equipment)

    def filter_options(self, project_id: int) -> Tuple[List[str], List[str]]:
        """Distinct non-empty equipment types and areas, sorted, for filter pickers."""
        equipment = self.store.find_by_project(project_id)
        types = sorted({eq.equipment_type for eq in equipment if eq.equipment_type})
        areas = sorted({eq.area for eq in equipment if eq.area})
        return types, areas

    def validate(
        self,
        project_id: int,
        candidates: Iterable[RenumberingCandidate]
    ) -> ConflictReport:
        """
        Pre-commit checks.

        duplicates: a proposed tag used more than once in the batch (hard stop).
        store_conflicts: a proposed tag already held by active equipment that
        is not being renamed in this batch (operator may override).
        """
        pending = _pending(candidates)
        counts = Counter(c.proposed_tag for c in pending)
        duplicates = sorted(tag for tag, count in counts.items() if count > 1)

        batch_ids = {c.equipment_id for c in pending}
        active = self.store.active_tags(project_id)
        conflicts = []
        for tag in counts:
            holders = active.get(tag, set())
            if holders - batch_ids:
                conflicts.append(tag)

        return ConflictReport(duplicates=tuple(duplicates), store_conflicts=tuple(sorted(conflicts)))

    def apply(
        self,
        project_id: int,
        candidates: Iterable[RenumberingCandidate],
        identity: IdentitySource,
        confirm_conflicts: bool = False
    ) -> RenumberResult:
        """
        Write every proposed tag in one transaction, or none of them.

        Refusals (raised before the store is written):
        - ValidationError: nothing selected with a proposed tag
        - ConflictError: duplicate proposed tags, never overridable
        - SoftConflictError: collisions with unrelated tags, unless confirmed

        A StorageError on any item rolls the whole batch back; the result then
        reports zero successes and carries the triggering error. Any other
        exception also rolls the batch back and is re-raised.

        The store must not hold unflushed changes of the caller when apply
        starts (StorageError otherwise); they would be swept into this batch.
        """
        self.store.begin()

        pending = _pending(candidates)
        if not pending:
            raise ValidationError("No equipment selected for renumbering.")

        report = self.validate(project_id, pending)
        if report.has_duplicates:
            logger.warning(
                "Renumbering refused for project %s: duplicate tags %s",
                project_id, ", ".join(report.duplicates)
            )
            raise ConflictError(
                f"Duplicate new tags detected: {', '.join(report.duplicates)}. "
                "Please adjust the pattern or filters.",
                duplicates=list(report.duplicates)
            )
        if report.has_store_conflicts and not confirm_conflicts:
            raise SoftConflictError(
                "The following new tags already exist in the project: "
                f"{', '.join(report.store_conflicts)}. Confirm to continue anyway.",
                conflicts=list(report.store_conflicts)
            )
        if report.has_store_conflicts:
            logger.warning(
                "Operator %s overrode tag conflicts in project %s: %s",
                identity.performed_by, project_id, ", ".join(report.store_conflicts)
            )

        audit_identity = identity.for_operation(OPERATION_NAME)
        logger.info("Renumbering %d equipment in project %s", len(pending), project_id)

        failed_at = ""
        try:
            for candidate in pending:
                failed_at = candidate.current_tag
                self._rename(project_id, candidate, audit_identity)
            failed_at = "commit"
            self.store.commit()
        except StorageError as e:
            self.store.rollback()
            logger.error("Renumbering rolled back at %s: %s", failed_at, e.message)
            return RenumberResult(
                success_count=0,
                error_count=1,
                errors=[f"{failed_at}: {e.message}"],
                rolled_back=True,
                fatal_error=e.message
            )
        except Exception:
            self.store.rollback()
            logger.exception("Renumbering rolled back at %s", failed_at)
            raise

        logger.info("Renumbered %d equipment in project %s", len(pending), project_id)
        return RenumberResult(success_count=len(pending))

    def _rename(self, project_id: int, candidate: RenumberingCandidate, identity: IdentitySource) -> None:
        equipment = self.store.get_by_id(candidate.equipment_id)
        if equipment is None:
            raise StorageError(f"Equipment {candidate.equipment_id} no longer exists")
        if equipment.project_id != project_id:
            raise StorageError(f"Equipment {candidate.equipment_id} does not belong to project {project_id}")
        if not equipment.is_active:
            raise StorageError(f"Equipment {candidate.equipment_id} has been deleted")

        old = equipment_snapshot(equipment, _SNAPSHOT_FIELDS)
        equipment.tag = candidate.proposed_tag
        equipment.modified_at = utcnow()
        equipment.modified_by = identity.performed_by
        self.store.update(equipment)

        self.recorder.record(AuditLogEntry(
            entity_type=EQUIPMENT,
            entity_id=str(equipment.id),
            action=AuditAction.UPDATED,
            performed_by=identity.performed_by,
            change_summary=f"{OPERATION_NAME}: Tag: {old['tag']} → {equipment.tag}",
            old_snapshot=old,
            new_snapshot=equipment_snapshot(equipment, _SNAPSHOT_FIELDS),
            project_id=equipment.project_id,
            source=identity.source
        ))
