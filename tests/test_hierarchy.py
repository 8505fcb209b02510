"""Tests for relationship hierarchy projections."""
from types import SimpleNamespace

import pytest
from tagflow.models.enums import HierarchyMode
from tagflow.services.hierarchy import RelationshipHierarchyBuilder, build_hierarchy
from tagflow.services.store import SqlEquipmentStore


def make_equipment(id, tag, equipment_type="Pump", area="100", drawing_id=None,
                   upstream=None, downstream=None, is_active=True):
    return SimpleNamespace(
        id=id,
        tag=tag,
        equipment_type=equipment_type,
        area=area,
        drawing_id=drawing_id,
        upstream_equipment_id=upstream,
        downstream_equipment_id=downstream,
        is_active=is_active
    )


def labels(nodes):
    return [node.label for node in nodes]


class TestGroupings:
    """ByArea, ByType and ByDrawing."""

    def test_by_area_groups_area_then_type(self):
        equipment = [
            make_equipment(1, "P-002", area="100"),
            make_equipment(2, "P-001", area="100"),
            make_equipment(3, "T-001", equipment_type="Tank", area="200"),
            make_equipment(4, "V-001", equipment_type="Valve", area="100"),
            make_equipment(5, "X-001", equipment_type=None, area=None),
        ]
        tree = build_hierarchy(equipment, [], [], HierarchyMode.BY_AREA)

        assert labels(tree) == ["100", "200", "Unassigned"]
        assert labels(tree[0].children) == ["Pump", "Valve"]
        assert labels(tree[0].children[0].children) == ["P-001", "P-002"]
        assert tree[0].leaf_count == 3
        assert labels(tree[2].children) == ["Unknown"]

    def test_by_type(self):
        equipment = [
            make_equipment(1, "T-001", equipment_type="Tank"),
            make_equipment(2, "P-001"),
            make_equipment(3, "P-002"),
        ]
        tree = build_hierarchy(equipment, [], [], "by_type")

        assert labels(tree) == ["Pump", "Tank"]
        assert tree[0].child_count == 2
        assert sum(node.leaf_count for node in tree) == 3

    def test_by_drawing_with_unassigned_group_last(self):
        drawings = [
            SimpleNamespace(id=1, drawing_number="PID-002"),
            SimpleNamespace(id=2, drawing_number="PID-001"),
            SimpleNamespace(id=3, drawing_number="PID-003"),
        ]
        equipment = [
            make_equipment(1, "P-001", drawing_id=1),
            make_equipment(2, "P-002", drawing_id=2),
            make_equipment(3, "P-003"),
            make_equipment(4, "P-004", drawing_id=99),
        ]
        tree = build_hierarchy(equipment, [], drawings, HierarchyMode.BY_DRAWING)

        # Drawings without equipment are omitted
        assert labels(tree) == ["PID-001", "PID-002", "Unassigned"]
        assert labels(tree[2].children) == ["P-003", "P-004"]

    def test_inactive_equipment_is_excluded(self):
        equipment = [make_equipment(1, "P-001"), make_equipment(2, "P-002", is_active=False)]
        tree = build_hierarchy(equipment, [], [], HierarchyMode.BY_TYPE)
        assert tree[0].leaf_count == 1

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            build_hierarchy([], [], [], "by_colour")

    def test_empty_catalog(self):
        assert build_hierarchy([], [], [], HierarchyMode.BY_AREA) == []
        flow = build_hierarchy([], [], [], HierarchyMode.PROCESS_FLOW)
        assert labels(flow) == ["Process Flow"]
        assert flow[0].children == []


class TestProcessFlow:
    """Upstream/downstream traversal with cycle detection."""

    def test_chain_and_standalone_roots(self):
        equipment = [
            make_equipment(1, "A"),
            make_equipment(2, "B", upstream=1),
            make_equipment(3, "C", upstream=2),
            make_equipment(4, "D"),
        ]
        flow = build_hierarchy(equipment, [], [], HierarchyMode.PROCESS_FLOW)[0]

        assert labels(flow.children) == ["A", "D"]
        a = flow.children[0]
        assert labels(a.children) == ["B"]
        assert labels(a.children[0].children) == ["C"]
        assert flow.leaf_count == 2

    def test_two_node_cycle_is_marked_circular(self):
        equipment = [
            make_equipment(1, "A", upstream=2),
            make_equipment(2, "B", upstream=1),
        ]
        flow = build_hierarchy(equipment, [], [], HierarchyMode.PROCESS_FLOW)[0]

        assert labels(flow.children) == ["A"]
        b = flow.children[0].children[0]
        assert b.label == "B"
        circular = b.children[0]
        assert circular.label == "A (circular reference)"
        assert circular.circular
        assert circular.children == []

    def test_self_reference(self):
        flow = build_hierarchy([make_equipment(1, "X", upstream=1)], [], [], HierarchyMode.PROCESS_FLOW)[0]

        x = flow.children[0]
        assert x.label == "X"
        assert labels(x.children) == ["X (circular reference)"]

    def test_branch_feeding_into_cycle(self):
        equipment = [
            make_equipment(1, "B", upstream=2),
            make_equipment(2, "A", upstream=1),
            make_equipment(3, "C", upstream=2),
        ]
        flow = build_hierarchy(equipment, [], [], HierarchyMode.PROCESS_FLOW)[0]

        # Expanded once, from the lowest tag on the cycle
        assert labels(flow.children) == ["A"]
        a = flow.children[0]
        assert labels(a.children) == ["B", "C"]
        assert labels(a.children[0].children) == ["A (circular reference)"]

    def test_upstream_outside_the_set_makes_a_root(self):
        equipment = [
            make_equipment(1, "A", upstream=99),
            make_equipment(2, "B", upstream=3),
            make_equipment(3, "Z", is_active=False),
        ]
        flow = build_hierarchy(equipment, [], [], HierarchyMode.PROCESS_FLOW)[0]
        assert labels(flow.children) == ["A", "B"]

    def test_long_chain_does_not_recurse(self):
        equipment = [make_equipment(1, "E-00001")]
        for i in range(2, 20001):
            equipment.append(make_equipment(i, f"E-{i:05d}", upstream=i - 1))
        flow = build_hierarchy(equipment, [], [], HierarchyMode.PROCESS_FLOW)[0]

        depth = 0
        node = flow.children[0]
        while node.children:
            node = node.children[0]
            depth += 1
        assert depth == 19999

    def test_long_loop_closes_with_one_circular_leaf(self):
        equipment = [make_equipment(1, "E-00001", upstream=20000)]
        for i in range(2, 20001):
            equipment.append(make_equipment(i, f"E-{i:05d}", upstream=i - 1))
        flow = build_hierarchy(equipment, [], [], HierarchyMode.PROCESS_FLOW)[0]

        assert labels(flow.children) == ["E-00001"]
        node = flow.children[0]
        while node.children:
            node = node.children[0]
        assert node.circular
        assert node.label == "E-00001 (circular reference)"


class TestConnections:
    """Detail view of one equipment's neighbours."""

    def test_neighbours_and_lines(self):
        a = make_equipment(1, "A", downstream=2)
        b = make_equipment(2, "B", upstream=1)
        lines = [
            SimpleNamespace(line_number="L-100", from_equipment_id=1, to_equipment_id=2),
            SimpleNamespace(line_number="L-200", from_equipment_id=3, to_equipment_id=4),
        ]
        builder = RelationshipHierarchyBuilder([a, b], lines)

        conn_a = builder.connections(1)
        assert conn_a.upstream is None
        assert conn_a.downstream is b
        assert [(c.line.line_number, c.direction) for c in conn_a.lines] == [("L-100", "Outgoing")]

        conn_b = builder.connections(2)
        assert conn_b.upstream is a
        assert [c.direction for c in conn_b.lines] == ["Incoming"]

    def test_unknown_equipment(self):
        assert RelationshipHierarchyBuilder([]).connections(42) is None


class TestWithStore:
    """Projections over equipment loaded from the database."""

    def test_by_area_over_sample_project(self, db_session, sample_project):
        equipment = SqlEquipmentStore(db_session).find_by_project(sample_project.id)
        tree = RelationshipHierarchyBuilder(equipment).build(HierarchyMode.BY_AREA)

        assert labels(tree) == ["100", "200"]
        assert tree[0].leaf_count == 3

        as_dict = tree[0].to_dict()
        assert as_dict["label"] == "100"
        assert as_dict["children"][0]["child_count"] == 3

    def test_by_drawing_over_sample_project(self, db_session, sample_project):
        equipment = SqlEquipmentStore(db_session).find_by_project(sample_project.id)
        tree = RelationshipHierarchyBuilder(equipment, drawings=sample_project.drawings).build("by_drawing")

        assert labels(tree) == ["PID-001", "Unassigned"]
        assert labels(tree[1].children) == ["T-001"]
