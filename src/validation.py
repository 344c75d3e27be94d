"""Validation of person mappings and of the loaded trees."""

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Mapping

import networkx as nx

from graph import TreeGraph
from matcher import gender_conflict, year_difference
import navigator
from models import IssueType, PersonMapping, PersonRecord, Severity, ValidationIssue

LOW_SCORE_MARGIN = 10


@dataclass(frozen=True)
class MappingCheck:
    is_valid: bool
    issues: tuple[ValidationIssue, ...] = ()


class MappingValidator:
    def __init__(self, suspicious_score: int = 40, year_tolerance: int = 5, year_hard_tolerance: int = 15):
        self.suspicious_score = suspicious_score
        self.year_tolerance = year_tolerance
        self.year_hard_tolerance = year_hard_tolerance

    # ------------------------------------------------------------------
    # Per-pair checks
    # ------------------------------------------------------------------

    def _pair_issues(self, source: PersonRecord, dest: PersonRecord) -> list[ValidationIssue]:
        issues = []
        if gender_conflict(source, dest):
            issues.append(
                ValidationIssue(
                    Severity.HIGH,
                    IssueType.GENDER_MISMATCH,
                    f"Gender {source.gender.value} vs {dest.gender.value}",
                    source.id,
                    dest.id,
                )
            )
        years = (
            (IssueType.BIRTH_YEAR_MISMATCH, "Birth", source.birth_date, dest.birth_date),
            (IssueType.DEATH_YEAR_MISMATCH, "Death", source.death_date, dest.death_date),
        )
        for issue_type, label, a, b in years:
            diff = year_difference(a, b)
            if diff is None or diff <= self.year_tolerance:
                continue
            severity = Severity.HIGH if diff > self.year_hard_tolerance else Severity.MEDIUM
            issues.append(
                ValidationIssue(
                    severity, issue_type, f"{label} years {a.year} vs {b.year} differ by {diff}", source.id, dest.id
                )
            )
        return issues

    def _family_issues(
        self, source_id: str, dest_id: str, mapped: Mapping[str, str], source_tree: TreeGraph, dest_tree: TreeGraph
    ) -> list[ValidationIssue]:
        issues = []
        relations = (
            ("parent", navigator.parents),
            ("spouse", navigator.spouses),
            ("child", navigator.children),
        )
        for label, query in relations:
            dest_relatives = set(query(dest_tree, dest_id))
            for relative in query(source_tree, source_id):
                target = mapped.get(relative)
                if target is None or target in dest_relatives:
                    continue
                issues.append(
                    ValidationIssue(
                        Severity.MEDIUM,
                        IssueType.FAMILY_INCONSISTENCY,
                        f"{label} {relative} is mapped to {target}, which is not a {label} of {dest_id}",
                        source_id,
                        dest_id,
                    )
                )
        return issues

    def _generational_issues(
        self, source_id: str, dest_id: str, mapped: Mapping[str, str], source_tree: TreeGraph, dest_tree: TreeGraph
    ) -> list[ValidationIssue]:
        parent_targets = {mapped[p] for p in navigator.parents(source_tree, source_id) if p in mapped}
        child_targets = {mapped[c] for c in navigator.children(source_tree, source_id) if c in mapped}
        issues = []
        for target in sorted(parent_targets & child_targets):
            issues.append(
                ValidationIssue(
                    Severity.HIGH,
                    IssueType.GENERATIONAL_INCONSISTENCY,
                    f"{target} is the counterpart of both a parent and a child",
                    source_id,
                    dest_id,
                )
            )
        dest_children = set(navigator.children(dest_tree, dest_id))
        dest_parents = set(navigator.parents(dest_tree, dest_id))
        for target in sorted(parent_targets & dest_children):
            issues.append(
                ValidationIssue(
                    Severity.HIGH,
                    IssueType.GENERATIONAL_INCONSISTENCY,
                    f"a parent is mapped to {target}, a child of {dest_id}",
                    source_id,
                    dest_id,
                )
            )
        for target in sorted(child_targets & dest_parents):
            issues.append(
                ValidationIssue(
                    Severity.HIGH,
                    IssueType.GENERATIONAL_INCONSISTENCY,
                    f"a child is mapped to {target}, a parent of {dest_id}",
                    source_id,
                    dest_id,
                )
            )
        return issues

    def _invalid_ids(self, mapping: PersonMapping, source_tree: TreeGraph, dest_tree: TreeGraph):
        issues = []
        if mapping.source_id not in source_tree:
            issues.append(
                ValidationIssue(
                    Severity.HIGH, IssueType.INVALID_SOURCE_ID, "Source person does not exist",
                    mapping.source_id, mapping.destination_id,
                )
            )
        if mapping.destination_id not in dest_tree:
            issues.append(
                ValidationIssue(
                    Severity.HIGH, IssueType.INVALID_DEST_ID, "Destination person does not exist",
                    mapping.source_id, mapping.destination_id,
                )
            )
        return issues

    def check_mapping(
        self,
        mapping: PersonMapping,
        existing: Mapping[str, str],
        source_tree: TreeGraph,
        dest_tree: TreeGraph,
        used_by: Mapping[str, str] | None = None,
    ) -> MappingCheck:
        """
        Check a proposed mapping against the mappings made so far.

        Args:
            mapping: The proposed mapping
            existing: Current source id -> destination id mappings
            source_tree: Source tree index
            dest_tree: Destination tree index
            used_by: Destination id -> source id index of `existing`; built when omitted

        Returns:
            MappingCheck; invalid when any HIGH issue was found
        """
        issues = self._invalid_ids(mapping, source_tree, dest_tree)
        if issues:
            return MappingCheck(False, tuple(issues))

        source = source_tree.person(mapping.source_id)
        dest = dest_tree.person(mapping.destination_id)
        issues.extend(self._pair_issues(source, dest))

        if used_by is None:
            used_by = {d: s for s, d in existing.items()}
        owner = used_by.get(mapping.destination_id)
        if owner is not None and owner != mapping.source_id:
            issues.append(
                ValidationIssue(
                    Severity.HIGH,
                    IssueType.DUPLICATE_MAPPING,
                    f"Destination already mapped from {owner}",
                    mapping.source_id,
                    mapping.destination_id,
                )
            )
        if mapping.match_score < self.suspicious_score:
            issues.append(
                ValidationIssue(
                    Severity.MEDIUM,
                    IssueType.LOW_MATCH_SCORE,
                    f"Score {mapping.match_score} below {self.suspicious_score}",
                    mapping.source_id,
                    mapping.destination_id,
                )
            )
        issues.extend(self._family_issues(mapping.source_id, mapping.destination_id, existing, source_tree, dest_tree))

        issues.sort(key=ValidationIssue.sort_key)
        is_valid = not any(i.severity == Severity.HIGH for i in issues)
        return MappingCheck(is_valid, tuple(issues))

    # ------------------------------------------------------------------
    # Whole-set pass
    # ------------------------------------------------------------------

    def validate(
        self, mappings: Iterable[PersonMapping], source_tree: TreeGraph, dest_tree: TreeGraph
    ) -> list[ValidationIssue]:
        """Check a finished mapping set. Pure: same input, same sorted output."""
        mappings = list(mappings)
        issues: set[ValidationIssue] = set()

        source_counts = Counter(m.source_id for m in mappings)
        dest_counts = Counter(m.destination_id for m in mappings)
        mapped: dict[str, str] = {}
        for m in mappings:
            mapped.setdefault(m.source_id, m.destination_id)

        for m in mappings:
            if source_counts[m.source_id] > 1:
                issues.add(
                    ValidationIssue(
                        Severity.HIGH, IssueType.DUPLICATE_MAPPING,
                        f"Source mapped {source_counts[m.source_id]} times", m.source_id, m.destination_id,
                    )
                )
            if dest_counts[m.destination_id] > 1:
                issues.add(
                    ValidationIssue(
                        Severity.HIGH, IssueType.DUPLICATE_MAPPING,
                        f"Destination mapped {dest_counts[m.destination_id]} times", m.source_id, m.destination_id,
                    )
                )

            invalid = self._invalid_ids(m, source_tree, dest_tree)
            if invalid:
                issues.update(invalid)
                continue

            issues.update(self._pair_issues(source_tree.person(m.source_id), dest_tree.person(m.destination_id)))

            if m.match_score < self.suspicious_score:
                severity = (
                    Severity.LOW if m.match_score >= self.suspicious_score - LOW_SCORE_MARGIN else Severity.MEDIUM
                )
                issues.add(
                    ValidationIssue(
                        severity, IssueType.LOW_MATCH_SCORE,
                        f"Score {m.match_score} below {self.suspicious_score}", m.source_id, m.destination_id,
                    )
                )

            issues.update(self._family_issues(m.source_id, m.destination_id, mapped, source_tree, dest_tree))
            issues.update(self._generational_issues(m.source_id, m.destination_id, mapped, source_tree, dest_tree))

        return sorted(issues, key=ValidationIssue.sort_key)


def validate_tree(G: nx.DiGraph) -> list[str]:
    """
    Sanity-check a person graph built by graph.to_person_graph:
    - Cycles in parent-child relationships
    - Children born before a parent, or when the parent was under 12

    Returns a list of warning messages.
    """
    warnings: list[str] = []

    parent_edges = [
        (u, v) for u, v, d in G.edges(data=True) if d.get("relationship_type") == "PARENT_OF"
    ]
    parent_graph = nx.DiGraph(parent_edges)

    try:
        cycle = nx.find_cycle(parent_graph, orientation="original")
        cycle_nodes = [edge[0] for edge in cycle]
        warnings.append(f"Cycle detected in parent-child relationships: {cycle_nodes}")
    except nx.NetworkXNoCycle:
        pass

    for parent, child in parent_edges:
        parent_data = G.nodes[parent]
        child_data = G.nodes[child]
        parent_year = parent_data.get("birth_year")
        child_year = child_data.get("birth_year")
        if parent_year is None or child_year is None:
            continue
        if child_year < parent_year:
            warnings.append(
                f"Impossible: {child_data.get('person_name')} born before parent "
                f"{parent_data.get('person_name')}"
            )
        elif child_year - parent_year < 12:
            warnings.append(
                f"Suspicious: {parent_data.get('person_name')} was less than 12 years "
                f"old when {child_data.get('person_name')} was born"
            )

    return warnings
