"""Tree index and NetworkX graph operations."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

import networkx as nx

from models import FamilyRecord, PersonRecord


def _empty() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class TreeGraph:
    """Read-only lookup structure over one family tree."""

    persons_by_id: Mapping[str, PersonRecord] = field(default_factory=_empty)
    families_by_id: Mapping[str, FamilyRecord] = field(default_factory=_empty)
    families_as_spouse: Mapping[str, tuple[str, ...]] = field(default_factory=_empty)
    families_as_child: Mapping[str, tuple[str, ...]] = field(default_factory=_empty)
    persons_by_birth_year: Mapping[int, tuple[str, ...]] = field(default_factory=_empty)
    persons_by_last_name: Mapping[str, tuple[str, ...]] = field(default_factory=_empty)

    def __contains__(self, person_id: object) -> bool:
        return person_id in self.persons_by_id

    def __len__(self) -> int:
        return len(self.persons_by_id)

    def person(self, person_id: str | None) -> PersonRecord | None:
        if person_id is None:
            return None
        return self.persons_by_id.get(person_id)

    def family(self, family_id: str | None) -> FamilyRecord | None:
        if family_id is None:
            return None
        return self.families_by_id.get(family_id)

    def dangling_references(self) -> list[tuple[str, str]]:
        """Return (family id, person id) pairs whose person is missing from the tree."""
        missing = []
        for family_id in sorted(self.families_by_id):
            for person_id in self.families_by_id[family_id].member_ids:
                if person_id not in self.persons_by_id:
                    missing.append((family_id, person_id))
        return missing


def _freeze(index: dict) -> Mapping:
    return MappingProxyType({k: tuple(sorted(v)) for k, v in index.items()})


def build_index(persons: Mapping[str, PersonRecord], families: Mapping[str, FamilyRecord]) -> TreeGraph:
    """
    Build the tree index in one pass over persons and families.

    Family links are derived from the family records. Member ids that point at
    unknown persons stay in the family record and are still indexed; callers
    check `dangling_references()` or look the person up before using it.

    Args:
        persons: Person records keyed by id
        families: Family records keyed by id

    Returns:
        An immutable TreeGraph
    """
    as_spouse: dict[str, set[str]] = {}
    as_child: dict[str, set[str]] = {}
    for family_id, family in families.items():
        for person_id in family.spouse_ids:
            as_spouse.setdefault(person_id, set()).add(family_id)
        for person_id in family.child_ids:
            as_child.setdefault(person_id, set()).add(family_id)

    by_year: dict[int, set[str]] = {}
    by_last_name: dict[str, set[str]] = {}
    for person_id, person in persons.items():
        if person.birth_year is not None:
            by_year.setdefault(person.birth_year, set()).add(person_id)
        if person.normalized_last_name:
            by_last_name.setdefault(person.normalized_last_name, set()).add(person_id)

    return TreeGraph(
        persons_by_id=MappingProxyType(dict(persons)),
        families_by_id=MappingProxyType(dict(families)),
        families_as_spouse=_freeze(as_spouse),
        families_as_child=_freeze(as_child),
        persons_by_birth_year=_freeze(by_year),
        persons_by_last_name=_freeze(by_last_name),
    )


def to_person_graph(tree: TreeGraph) -> nx.DiGraph:
    """Build a directed person graph with PARENT_OF and SPOUSE_OF edges."""
    G = nx.DiGraph()
    for person_id, person in tree.persons_by_id.items():
        G.add_node(
            person_id,
            person_name=person.full_name,
            sex=person.gender.value,
            birth_year=person.birth_year,
        )

    for family in tree.families_by_id.values():
        parents = [p for p in family.spouse_ids if p in tree.persons_by_id]
        if len(parents) == 2:
            G.add_edge(parents[0], parents[1], relationship_type="SPOUSE_OF")
        for child_id in family.child_ids:
            if child_id not in tree.persons_by_id:
                continue
            for parent_id in parents:
                G.add_edge(parent_id, child_id, relationship_type="PARENT_OF")

    return G


def nearest_mapped(G: nx.DiGraph, mapped_levels: Mapping[str, int]) -> dict[str, tuple[str, int]]:
    """
    Find the closest mapped person for every node of the graph.

    Args:
        G: Person graph from to_person_graph
        mapped_levels: Mapped person id -> wave level

    Returns:
        Node id -> (nearest mapped person id, its level). Nodes with no mapped
        person in their component are left out.
    """
    seeds = sorted((p for p in mapped_levels if p in G), key=lambda p: (mapped_levels[p], p))
    if not seeds:
        return {}
    undirected = G.to_undirected(as_view=True)
    _, paths = nx.multi_source_dijkstra(undirected, seeds)
    return {node: (path[0], mapped_levels[path[0]]) for node, path in paths.items()}

