"""
Relationship trees over an equipment set.

Each build starts from scratch and never mutates its inputs. Inputs only need
the attributes of the ORM models (tag, equipment_type, area, drawing_id,
upstream_equipment_id, ...), so plain objects work too.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from tagflow.models.enums import HierarchyMode

UNASSIGNED = "Unassigned"
UNKNOWN_TYPE = "Unknown"
PROCESS_FLOW = "Process Flow"
CIRCULAR_SUFFIX = " (circular reference)"


@dataclass
class HierarchyNode:
    """One element of a tree projection. Carries no persisted identity."""
    label: str
    children: List["HierarchyNode"] = field(default_factory=list)
    equipment: Optional[Any] = None
    circular: bool = False

    @property
    def child_count(self) -> int:
        return len(self.children)

    @property
    def leaf_count(self) -> int:
        if not self.children:
            return 1 if self.equipment is not None else 0
        return sum(child.leaf_count for child in self.children)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "child_count": self.child_count,
            "equipment_id": getattr(self.equipment, "id", None),
            "circular": self.circular,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class LineConnection:
    line: Any
    direction: str  # "Outgoing" | "Incoming"


@dataclass
class EquipmentConnections:
    """Detail view of one equipment's neighbours."""
    equipment: Any
    upstream: Optional[Any] = None
    downstream: Optional[Any] = None
    lines: List[LineConnection] = field(default_factory=list)


def _tag_key(equipment) -> tuple:
    return (equipment.tag or "", str(equipment.id))


def _leaf(equipment) -> HierarchyNode:
    return HierarchyNode(label=equipment.tag, equipment=equipment)


def _group(items: Iterable[Any], key: Callable[[Any], str]) -> Dict[str, List[Any]]:
    groups: Dict[str, List[Any]] = defaultdict(list)
    for item in items:
        groups[key(item)].append(item)
    return groups


def _area_of(equipment) -> str:
    return equipment.area or UNASSIGNED


def _type_of(equipment) -> str:
    return equipment.equipment_type or UNKNOWN_TYPE


class RelationshipHierarchyBuilder:
    """Builds one of four tree projections over a fixed snapshot of the catalog."""

    def __init__(self, equipment: Iterable[Any], lines: Iterable[Any] = (), drawings: Iterable[Any] = ()):
        # Only active equipment is projected; sorted once, every view reuses the order
        self.equipment = sorted(
            (eq for eq in equipment if getattr(eq, "is_active", True)),
            key=_tag_key
        )
        self.lines = list(lines)
        self.drawings = list(drawings)
        self._by_id = {eq.id: eq for eq in self.equipment}

    def build(self, mode: Union[HierarchyMode, str]) -> List[HierarchyNode]:
        mode = HierarchyMode(mode)
        if mode == HierarchyMode.BY_AREA:
            return self._by_area()
        if mode == HierarchyMode.BY_TYPE:
            return self._by_type()
        if mode == HierarchyMode.BY_DRAWING:
            return self._by_drawing()
        return self._process_flow()

    def _by_area(self) -> List[HierarchyNode]:
        nodes = []
        for area, members in sorted(_group(self.equipment, _area_of).items()):
            area_node = HierarchyNode(label=area)
            for equipment_type, typed in sorted(_group(members, _type_of).items()):
                area_node.children.append(
                    HierarchyNode(label=equipment_type, children=[_leaf(eq) for eq in typed])
                )
            nodes.append(area_node)
        return nodes

    def _by_type(self) -> List[HierarchyNode]:
        return [
            HierarchyNode(label=equipment_type, children=[_leaf(eq) for eq in members])
            for equipment_type, members in sorted(_group(self.equipment, _type_of).items())
        ]

    def _by_drawing(self) -> List[HierarchyNode]:
        """
        One group per drawing that has equipment, by drawing number, then a
        trailing "Unassigned" group. Equipment pointing at a drawing outside
        the drawing set is treated as unassigned so nothing drops out.
        """
        drawing_ids = {drawing.id for drawing in self.drawings}
        by_drawing = _group(
            self.equipment,
            lambda eq: eq.drawing_id if eq.drawing_id in drawing_ids else None
        )

        nodes = []
        for drawing in sorted(self.drawings, key=lambda d: (d.drawing_number or "", str(d.id))):
            members = by_drawing.get(drawing.id)
            if members:
                nodes.append(HierarchyNode(label=drawing.drawing_number, children=[_leaf(eq) for eq in members]))

        unassigned = by_drawing.get(None)
        if unassigned:
            nodes.append(HierarchyNode(label=UNASSIGNED, children=[_leaf(eq) for eq in unassigned]))
        return nodes

    def _process_flow(self) -> List[HierarchyNode]:
        """
        Follow upstream links downward from every root.

        Roots have no upstream equipment (or one outside the active set).
        An equipment already on the current path becomes a "(circular
        reference)" leaf. Equipment that no root reaches sits on a pure cycle
        and is expanded from the cycle's lowest tag afterwards. Each equipment
        is expanded once, so a build is linear in the catalog size.
        """
        children_of: Dict[Any, List[Any]] = defaultdict(list)
        roots = []
        for eq in self.equipment:
            upstream = eq.upstream_equipment_id
            if upstream is None or upstream not in self._by_id:
                roots.append(eq)
            else:
                children_of[upstream].append(eq)

        reached = set()
        container = HierarchyNode(label=PROCESS_FLOW)
        for root in roots:
            container.children.append(self._expand_flow(root, children_of, reached))

        for eq in self.equipment:
            if eq.id not in reached:
                entry = self._cycle_entry(eq)
                container.children.append(self._expand_flow(entry, children_of, reached))

        return [container]

    def _expand_flow(self, root, children_of, reached) -> HierarchyNode:
        # Depth-first with enter/exit markers; on_path holds the ids of the current path
        root_node = _leaf(root)
        on_path = set()
        stack = [(root, root_node, False)]
        while stack:
            equipment, node, leaving = stack.pop()
            if leaving:
                on_path.discard(equipment.id)
                continue
            on_path.add(equipment.id)
            reached.add(equipment.id)
            stack.append((equipment, node, True))
            for child in children_of.get(equipment.id, ()):
                if child.id in on_path:
                    node.children.append(HierarchyNode(
                        label=f"{child.tag}{CIRCULAR_SUFFIX}",
                        equipment=child,
                        circular=True
                    ))
                    continue
                child_node = _leaf(child)
                node.children.append(child_node)
                stack.append((child, child_node, False))
        return root_node

    def _cycle_entry(self, equipment):
        """Walk upstream until a node repeats; return the lowest tag on that cycle."""
        walked = []
        seen = set()
        while equipment.id not in seen:
            seen.add(equipment.id)
            walked.append(equipment)
            equipment = self._by_id[equipment.upstream_equipment_id]
        cycle = walked[[eq.id for eq in walked].index(equipment.id):]
        return min(cycle, key=_tag_key)

    def connections(self, equipment_id) -> Optional[EquipmentConnections]:
        """Upstream/downstream neighbours and connected lines of one equipment."""
        equipment = self._by_id.get(equipment_id)
        if equipment is None:
            return None

        lines = []
        for line in self.lines:
            if line.from_equipment_id == equipment_id:
                lines.append(LineConnection(line=line, direction="Outgoing"))
            elif line.to_equipment_id == equipment_id:
                lines.append(LineConnection(line=line, direction="Incoming"))

        return EquipmentConnections(
            equipment=equipment,
            upstream=self._by_id.get(equipment.upstream_equipment_id),
            downstream=self._by_id.get(equipment.downstream_equipment_id),
            lines=lines
        )


def build_hierarchy(
    equipment: Iterable[Any],
    lines: Iterable[Any],
    drawings: Iterable[Any],
    mode: Union[HierarchyMode, str]
) -> List[HierarchyNode]:
    """Build one tree projection. Pure and re-entrant."""
    return RelationshipHierarchyBuilder(equipment, lines, drawings).build(mode)
