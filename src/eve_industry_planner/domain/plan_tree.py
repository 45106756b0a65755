from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional

from eve_industry_planner.domain.plan import (
    ACTIVITY_MANUFACTURING,
    ACTIVITY_REACTION,
    MODE_COMPONENTS,
    MODE_RAW_MATERIALS,
    PlanEntry,
)


@dataclass
class PlanNode:
    """One production step of a plan, addressed by its slot in the tree arena."""

    slot: int
    entry_id: Optional[int]
    parent_slot: Optional[int]
    blueprint_type_id: int
    runs: int
    lines: int = 1
    me_level: int = 0
    te_level: int = 0
    facility_id: Optional[int] = None
    facility_snapshot: Optional[Dict[str, Any]] = None
    is_intermediate: bool = False
    expansion_mode: str = MODE_RAW_MATERIALS
    built_runs: int = 0
    is_built: bool = False
    intermediate_product_type_id: Optional[int] = None
    activity: str = ACTIVITY_MANUFACTURING
    # Parent id as loaded from storage; kept to detect parents that no longer exist.
    parent_entry_id: Optional[int] = None
    dirty: bool = False

    @property
    def is_reaction(self) -> bool:
        return self.activity == ACTIVITY_REACTION

    @property
    def is_new(self) -> bool:
        return self.entry_id is None


@dataclass
class PlanTree:
    """Arena of plan entries.

    Nodes live in a flat list and reference their parent by slot index. Removed
    slots are left as ``None`` so slot numbers stay stable for the lifetime of the
    tree. Storage ids are only needed at the persistence boundary.
    """

    plan_id: int
    _nodes: List[Optional[PlanNode]] = field(default_factory=list)
    _slot_by_entry_id: Dict[int, int] = field(default_factory=dict)
    removed_entry_ids: List[int] = field(default_factory=list)

    @classmethod
    def from_entries(cls, plan_id: int, entries: Iterable[PlanEntry]) -> "PlanTree":
        tree = cls(plan_id=int(plan_id))
        loaded = list(entries)
        for entry in loaded:
            slot = len(tree._nodes)
            tree._nodes.append(
                PlanNode(
                    slot=slot,
                    entry_id=int(entry.id),
                    parent_slot=None,
                    blueprint_type_id=int(entry.blueprint_type_id),
                    runs=int(entry.runs),
                    lines=int(entry.lines or 1),
                    me_level=int(entry.me_level or 0),
                    te_level=int(entry.te_level or 0),
                    facility_id=entry.facility_id,
                    facility_snapshot=entry.facility_snapshot,
                    is_intermediate=bool(entry.is_intermediate),
                    expansion_mode=entry.expansion_mode or MODE_RAW_MATERIALS,
                    built_runs=int(entry.built_runs or 0),
                    is_built=bool(entry.is_built),
                    intermediate_product_type_id=entry.intermediate_product_type_id,
                    activity=entry.activity or ACTIVITY_MANUFACTURING,
                    parent_entry_id=entry.parent_entry_id,
                )
            )
            tree._slot_by_entry_id[int(entry.id)] = slot

        for node in tree.nodes():
            if node.parent_entry_id is not None:
                node.parent_slot = tree._slot_by_entry_id.get(int(node.parent_entry_id))
        return tree

    # --- lookup ---
    def node(self, slot: int) -> PlanNode:
        node = self._nodes[slot] if 0 <= slot < len(self._nodes) else None
        if node is None:
            raise KeyError(f"No plan node in slot {slot}")
        return node

    def has_slot(self, slot: Optional[int]) -> bool:
        return slot is not None and 0 <= slot < len(self._nodes) and self._nodes[slot] is not None

    def slot_for_entry(self, entry_id: int) -> Optional[int]:
        slot = self._slot_by_entry_id.get(int(entry_id))
        return slot if self.has_slot(slot) else None

    def nodes(self) -> Iterator[PlanNode]:
        return (n for n in self._nodes if n is not None)

    def top_level(self) -> List[PlanNode]:
        return [n for n in self.nodes() if not n.is_intermediate]

    def intermediates(self) -> List[PlanNode]:
        return [n for n in self.nodes() if n.is_intermediate]

    def children_of(self, slot: int) -> List[PlanNode]:
        return [n for n in self.nodes() if n.parent_slot == slot]

    def find_child(self, parent_slot: int, blueprint_type_id: int, material_type_id: int) -> Optional[PlanNode]:
        for n in self.nodes():
            if (
                n.is_intermediate
                and n.parent_slot == parent_slot
                and n.blueprint_type_id == int(blueprint_type_id)
                and n.intermediate_product_type_id == int(material_type_id)
            ):
                return n
        return None

    def parent_of(self, slot: int) -> Optional[PlanNode]:
        parent_slot = self.node(slot).parent_slot
        return self._nodes[parent_slot] if self.has_slot(parent_slot) else None

    def ancestors(self, slot: int) -> List[PlanNode]:
        out: List[PlanNode] = []
        parent = self.parent_of(slot)
        while parent is not None:
            out.append(parent)
            parent = self.parent_of(parent.slot)
        return out

    def depth_of(self, slot: int) -> int:
        return len(self.ancestors(slot))

    def is_orphan(self, slot: int, *, reactions_enabled: bool = True) -> bool:
        node = self.node(slot)
        if not node.is_intermediate:
            return False
        if node.is_reaction and not reactions_enabled:
            return True
        parent = self.parent_of(slot)
        return parent is None or parent.expansion_mode == MODE_COMPONENTS

    # --- mutation ---
    def add_intermediate(
        self,
        parent_slot: int,
        *,
        blueprint_type_id: int,
        material_type_id: int,
        runs: int,
        me_level: int,
        activity: str = ACTIVITY_MANUFACTURING,
    ) -> PlanNode:
        parent = self.node(parent_slot)
        node = PlanNode(
            slot=len(self._nodes),
            entry_id=None,
            parent_slot=parent_slot,
            blueprint_type_id=int(blueprint_type_id),
            runs=int(runs),
            lines=1,
            me_level=int(me_level),
            te_level=0,
            facility_id=parent.facility_id,
            facility_snapshot=parent.facility_snapshot,
            is_intermediate=True,
            expansion_mode=MODE_RAW_MATERIALS,
            intermediate_product_type_id=int(material_type_id),
            activity=activity,
            parent_entry_id=parent.entry_id,
            dirty=True,
        )
        self._nodes.append(node)
        return node

    def set_runs(self, slot: int, runs: int) -> bool:
        node = self.node(slot)
        runs = int(runs)
        if node.runs == runs:
            return False
        node.runs = runs
        if node.built_runs > runs:
            node.built_runs = runs
        node.is_built = node.runs > 0 and node.built_runs >= node.runs
        node.dirty = True
        return True

    def set_built_runs(self, slot: int, built_runs: int) -> None:
        node = self.node(slot)
        node.built_runs = int(built_runs)
        node.is_built = node.runs > 0 and node.built_runs >= node.runs
        node.dirty = True

    def remove(self, slot: int) -> PlanNode:
        node = self.node(slot)
        self._nodes[slot] = None
        if node.entry_id is not None:
            self._slot_by_entry_id.pop(int(node.entry_id), None)
            self.removed_entry_ids.append(int(node.entry_id))
        return node

    def remove_subtree(self, slot: int) -> List[PlanNode]:
        removed: List[PlanNode] = []
        for child in self.children_of(slot):
            removed.extend(self.remove_subtree(child.slot))
        removed.append(self.remove(slot))
        return removed

    # --- persistence boundary ---
    def pending_inserts(self) -> List[PlanNode]:
        # Slot order is parent-first: a child is always appended after its parent.
        return [n for n in self.nodes() if n.is_new]

    def pending_updates(self) -> List[PlanNode]:
        return [n for n in self.nodes() if not n.is_new and n.dirty]

    def bind_entry_id(self, slot: int, entry_id: int) -> None:
        node = self.node(slot)
        node.entry_id = int(entry_id)
        self._slot_by_entry_id[int(entry_id)] = slot
        for child in self.children_of(slot):
            child.parent_entry_id = int(entry_id)

    def mark_clean(self) -> None:
        for n in self.nodes():
            n.dirty = False
        self.removed_entry_ids = []
