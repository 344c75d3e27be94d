"""Relationship traversal over a TreeGraph.

Every function returns a fresh generator, so callers can iterate the same
query more than once. Unknown ids yield nothing.
"""

from typing import Iterator

from graph import TreeGraph
from models import FamilyRecord, FamilyRole, RelationKind


def _unique(ids: Iterator[str]) -> Iterator[str]:
    seen: set[str] = set()
    for person_id in ids:
        if person_id not in seen:
            seen.add(person_id)
            yield person_id


def families_as_spouse(tree: TreeGraph, person_id: str) -> Iterator[FamilyRecord]:
    for family_id in tree.families_as_spouse.get(person_id, ()):
        family = tree.families_by_id.get(family_id)
        if family is not None:
            yield family


def families_as_child(tree: TreeGraph, person_id: str) -> Iterator[FamilyRecord]:
    for family_id in tree.families_as_child.get(person_id, ()):
        family = tree.families_by_id.get(family_id)
        if family is not None:
            yield family


def parents(tree: TreeGraph, person_id: str) -> Iterator[str]:
    return _unique(p for f in families_as_child(tree, person_id) for p in f.spouse_ids)


def spouses(tree: TreeGraph, person_id: str) -> Iterator[str]:
    return _unique(
        p for f in families_as_spouse(tree, person_id) for p in f.spouse_ids if p != person_id
    )


def children(tree: TreeGraph, person_id: str) -> Iterator[str]:
    return _unique(c for f in families_as_spouse(tree, person_id) for c in f.child_ids)


def siblings(tree: TreeGraph, person_id: str) -> Iterator[str]:
    """Full and half siblings, each once, never the person itself."""
    return _unique(
        c for f in families_as_child(tree, person_id) for c in f.child_ids if c != person_id
    )


def immediate_relatives(tree: TreeGraph, person_id: str) -> Iterator[tuple[str, RelationKind]]:
    """Parents, spouses, children and siblings, each once, with their relation to the person."""
    seen: set[str] = set()
    relatives = (
        (parents, RelationKind.PARENT),
        (spouses, RelationKind.SPOUSE),
        (children, RelationKind.CHILD),
        (siblings, RelationKind.SIBLING),
    )
    for query, relation in relatives:
        for other in query(tree, person_id):
            if other not in seen:
                seen.add(other)
                yield other, relation


def all_families(tree: TreeGraph, person_id: str) -> Iterator[tuple[FamilyRecord, FamilyRole]]:
    """Families where the person is a spouse first, then those where it is a child."""
    for family in families_as_spouse(tree, person_id):
        yield family, FamilyRole.SPOUSE
    for family in families_as_child(tree, person_id):
        yield family, FamilyRole.CHILD


def relatives_within(tree: TreeGraph, person_id: str, depth: int = 2) -> list[str]:
    """
    Collect relatives reachable through up to `depth` immediate-relative hops.

    The person itself comes first, then relatives in discovery order. With the
    default depth this covers grandparents, grandchildren, aunts, uncles,
    nieces, nephews and in-laws.
    """
    if person_id not in tree.persons_by_id:
        return []
    found = [person_id]
    seen = {person_id}
    frontier = [person_id]
    for _ in range(depth):
        next_frontier = []
        for current in frontier:
            for other, _relation in immediate_relatives(tree, current):
                if other in seen or other not in tree.persons_by_id:
                    continue
                seen.add(other)
                found.append(other)
                next_frontier.append(other)
        frontier = next_frontier
    return found
