from __future__ import annotations

from eve_industry_planner.domain.plan import MODE_COMPONENTS, PlanEntry
from eve_industry_planner.domain.plan_tree import PlanTree
from eve_industry_planner.application.plans.intermediate_tree import cleanup


def _entry(entry_id: int, *, parent: int | None = None, bp: int = 1, runs: int = 1, built: int = 0, mode: str = "raw_materials", material: int | None = None) -> PlanEntry:
    return PlanEntry(
        id=entry_id,
        plan_id=7,
        blueprint_type_id=bp,
        runs=runs,
        parent_entry_id=parent,
        is_intermediate=parent is not None,
        expansion_mode=mode,
        built_runs=built,
        is_built=built >= runs,
        intermediate_product_type_id=material,
    )


def test_from_entries_links_parents_by_slot() -> None:
    tree = PlanTree.from_entries(7, [_entry(1), _entry(2, parent=1, bp=20, material=200), _entry(3, parent=2, bp=30, material=300)])

    top = tree.top_level()
    assert [n.entry_id for n in top] == [1]
    child = tree.find_child(top[0].slot, 20, 200)
    assert child is not None and child.entry_id == 2
    grandchild = tree.children_of(child.slot)[0]
    assert tree.depth_of(grandchild.slot) == 2
    assert [a.entry_id for a in tree.ancestors(grandchild.slot)] == [2, 1]


def test_find_child_is_scoped_to_parent() -> None:
    tree = PlanTree.from_entries(
        7,
        [_entry(1), _entry(2), _entry(3, parent=1, bp=20, material=200), _entry(4, parent=2, bp=20, material=200)],
    )
    first = tree.slot_for_entry(1)
    second = tree.slot_for_entry(2)
    assert tree.find_child(first, 20, 200).entry_id == 3
    assert tree.find_child(second, 20, 200).entry_id == 4
    assert tree.find_child(first, 20, 999) is None


def test_add_intermediate_inherits_facility_and_is_pending() -> None:
    tree = PlanTree.from_entries(7, [_entry(1)])
    tree.node(0).facility_snapshot = {"facility_type": "structure"}

    node = tree.add_intermediate(0, blueprint_type_id=20, material_type_id=200, runs=25, me_level=10)

    assert node.is_new and node.is_intermediate
    assert node.lines == 1 and node.te_level == 0
    assert node.facility_snapshot == {"facility_type": "structure"}
    assert tree.pending_inserts() == [node]

    tree.bind_entry_id(node.slot, 42)
    assert tree.slot_for_entry(42) == node.slot
    assert not tree.node(node.slot).is_new


def test_set_runs_clamps_built_runs_and_reports_change() -> None:
    tree = PlanTree.from_entries(7, [_entry(1), _entry(2, parent=1, runs=10, built=8, material=200)])
    slot = tree.slot_for_entry(2)

    assert tree.set_runs(slot, 10) is False
    assert tree.set_runs(slot, 5) is True
    node = tree.node(slot)
    assert node.built_runs == 5
    assert node.is_built is True
    assert tree.pending_updates() == [node]


def test_cleanup_removes_orphans_until_fixed_point() -> None:
    # Parent 99 does not exist: entry 2 is orphaned, and 3 becomes orphaned once 2 is gone.
    tree = PlanTree.from_entries(7, [_entry(1), _entry(2, parent=99, material=200), _entry(3, parent=2, material=300), _entry(4, parent=1, material=400)])

    removed = cleanup(tree)

    assert sorted(n.entry_id for n in removed) == [2, 3]
    assert sorted(tree.removed_entry_ids) == [2, 3]
    assert [n.entry_id for n in tree.intermediates()] == [4]


def test_cleanup_drops_children_of_components_entries() -> None:
    tree = PlanTree.from_entries(7, [_entry(1, mode=MODE_COMPONENTS), _entry(2, parent=1, material=200)])

    removed = cleanup(tree)

    assert [n.entry_id for n in removed] == [2]
    assert tree.intermediates() == []


def test_remove_subtree_removes_descendants() -> None:
    tree = PlanTree.from_entries(7, [_entry(1), _entry(2, parent=1, material=200), _entry(3, parent=2, material=300)])

    removed = tree.remove_subtree(tree.slot_for_entry(1))

    assert sorted(n.entry_id for n in removed) == [1, 2, 3]
    assert list(tree.nodes()) == []
