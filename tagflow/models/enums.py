"""Enums for tagflow - these define the valid values for statuses, actions and view modes."""
from enum import Enum


class TaggingMode(str, Enum):
    """Tag numbering convention of a project. Drives the default renumbering pattern."""
    CUSTOM = "Custom"
    KKS = "KKS"


class EquipmentStatus(str, Enum):
    """Lifecycle status of a piece of equipment."""
    PLANNED = "Planned"
    INSTALLED = "Installed"
    COMMISSIONED = "Commissioned"
    DECOMMISSIONED = "Decommissioned"


class AuditAction(str, Enum):
    """The five kinds of change an audit entry can record. No others are allowed."""
    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"
    BATCH_TAGGED = "BatchTagged"
    SYNCHRONIZED = "Synchronized"


class HierarchyMode(str, Enum):
    """Mutually exclusive relationship tree projections."""
    BY_AREA = "by_area"
    BY_TYPE = "by_type"
    BY_DRAWING = "by_drawing"
    PROCESS_FLOW = "process_flow"
