"""Reassigning ambiguous mappings after propagation."""

from dataclasses import dataclass, field, replace
from typing import Iterable

from loguru import logger

from graph import TreeGraph
from matcher import FuzzyMatcher
from models import PersonMapping, PersonRecord, RelationKind

MIN_CANDIDATE_SCORE = 50


@dataclass
class ConflictResolution:
    mappings: list[PersonMapping] = field(default_factory=list)
    dropped: list[PersonMapping] = field(default_factory=list)
    changed: list[tuple[PersonMapping, PersonMapping]] = field(default_factory=list)


class MappingConflictResolver:
    """
    Re-check every non-anchor mapping against the whole destination tree.

    Sources whose best candidate clearly beats the runner-up (high exclusivity)
    pick first; a destination is never given out twice. Anchors are locked.
    """

    def __init__(self, matcher: FuzzyMatcher, min_score: float = MIN_CANDIDATE_SCORE):
        self.matcher = matcher
        self.min_score = min_score

    def _pool(self, source: PersonRecord, dest_tree: TreeGraph) -> Iterable[PersonRecord]:
        year = source.birth_year
        if year is None:
            return dest_tree.persons_by_id.values()
        spread = self.matcher.options.max_birth_year_difference
        ids = set()
        for y in range(year - spread, year + spread + 1):
            ids.update(dest_tree.persons_by_birth_year.get(y, ()))
        undated = (p for p in dest_tree.persons_by_id.values() if p.birth_year is None)
        return [dest_tree.persons_by_id[i] for i in sorted(ids)] + list(undated)

    def _candidates(self, mapping: PersonMapping, source_tree: TreeGraph, dest_tree: TreeGraph) -> list[tuple[str, float]]:
        source = source_tree.person(mapping.source_id)
        if source is None:
            return []
        scores = {m.target.id: m.score for m in self.matcher.find_matches(source, self._pool(source, dest_tree), self.min_score)}
        current = dest_tree.person(mapping.destination_id)
        if current is not None and current.id not in scores:
            scores[current.id] = self.matcher.compare(source, current).score
        return sorted(scores.items(), key=lambda item: (-item[1], item[0]))

    def resolve(
        self, mappings: list[PersonMapping], source_tree: TreeGraph, dest_tree: TreeGraph
    ) -> ConflictResolution:
        locked = [m for m in mappings if m.found_via == RelationKind.ANCHOR]
        used = {m.destination_id for m in locked}

        options = []
        for m in mappings:
            if m.found_via == RelationKind.ANCHOR:
                continue
            ranked = self._candidates(m, source_tree, dest_tree)
            if not ranked:
                continue
            best = ranked[0][1]
            second = ranked[1][1] if len(ranked) > 1 else 0
            exclusivity = (best - second) / best if best > 0 else 0
            for dest_id, score in ranked:
                options.append((exclusivity, score, m.source_id, dest_id))

        options.sort(key=lambda o: (-o[0], -o[1], o[2], o[3]))
        assigned: dict[str, tuple[str, float]] = {}
        for exclusivity, score, source_id, dest_id in options:
            if source_id in assigned or dest_id in used:
                continue
            assigned[source_id] = (dest_id, score)
            used.add(dest_id)

        resolution = ConflictResolution()
        for m in mappings:
            if m.found_via == RelationKind.ANCHOR:
                resolution.mappings.append(m)
                continue
            if m.source_id not in assigned:
                logger.info(f"Conflict resolution dropped {m.source_id} -> {m.destination_id}")
                resolution.dropped.append(m)
                continue
            dest_id, score = assigned[m.source_id]
            if dest_id == m.destination_id:
                resolution.mappings.append(m)
                continue
            updated = replace(m, destination_id=dest_id, match_score=int(round(score)))
            logger.info(f"Conflict resolution moved {m.source_id} from {m.destination_id} to {dest_id}")
            resolution.changed.append((m, updated))
            resolution.mappings.append(updated)
        return resolution
