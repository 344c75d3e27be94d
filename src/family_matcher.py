"""Structural matching of source families against destination families."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping

from loguru import logger

from graph import TreeGraph
from matcher import FuzzyMatcher, gender_conflict
from models import FamilyRecord, FamilyRole
from wave_log import CandidateFamilyLog, FamilyMatchAttemptLog, ScoreComponent, describe_family

MAPPED_SPOUSE_POINTS = 50
UNMAPPED_SPOUSES_POINTS = 10
MAPPED_CHILD_POINTS = 20


class FamilyMatchResult(Enum):
    MATCHED = "Matched"
    NO_MATCH = "NoMatch"
    CONFLICT = "Conflict"
    NO_CANDIDATES = "NoCandidates"


@dataclass(frozen=True)
class FamilyMatchOutcome:
    result: FamilyMatchResult
    family: FamilyRecord | None
    score: float
    log: FamilyMatchAttemptLog


class FamilyMatcher:
    """Pick the destination family that corresponds to a source family.

    Points come from members that are already mapped. With a fuzzy matcher the
    unmapped spouses are also compared personally and blended in.
    """

    def __init__(self, matcher: FuzzyMatcher | None = None):
        self.matcher = matcher

    def _spouse_slot(
        self,
        label: str,
        source_id: str | None,
        dest_id: str | None,
        mappings: Mapping[str, str],
        log: CandidateFamilyLog,
    ) -> int:
        if source_id is not None and source_id in mappings:
            if mappings[source_id] == dest_id:
                log.components.append(
                    ScoreComponent(label, MAPPED_SPOUSE_POINTS, f"{source_id} already mapped to {dest_id}")
                )
                return MAPPED_SPOUSE_POINTS
            if dest_id is not None:
                log.conflict = f"{label.lower()} {source_id} is mapped to {mappings[source_id]}, not {dest_id}"
            return 0
        if source_id is not None and dest_id is not None:
            log.components.append(ScoreComponent(label, UNMAPPED_SPOUSES_POINTS, "both families have one"))
            return UNMAPPED_SPOUSES_POINTS
        return 0

    def _personal_score(
        self, source_id: str, dest_id: str, source_tree: TreeGraph, dest_tree: TreeGraph
    ) -> float | None:
        source = source_tree.person(source_id)
        dest = dest_tree.person(dest_id)
        if source is None or dest is None:
            return None
        if gender_conflict(source, dest):
            return 0.0
        return self.matcher.compare(source, dest).score

    def score_family(
        self,
        source_family: FamilyRecord,
        dest_family: FamilyRecord,
        mappings: Mapping[str, str],
        source_tree: TreeGraph,
        dest_tree: TreeGraph,
    ) -> CandidateFamilyLog:
        log = CandidateFamilyLog(family_id=dest_family.id, description=describe_family(dest_family, dest_tree))

        structure = self._spouse_slot("Husband", source_family.husband_id, dest_family.husband_id, mappings, log)
        structure += self._spouse_slot("Wife", source_family.wife_id, dest_family.wife_id, mappings, log)

        dest_children = set(dest_family.child_ids)
        for child_id in source_family.child_ids:
            if child_id not in mappings:
                continue
            if mappings[child_id] in dest_children:
                structure += MAPPED_CHILD_POINTS
                log.components.append(
                    ScoreComponent("Child", MAPPED_CHILD_POINTS, f"{child_id} mapped to {mappings[child_id]}")
                )
            elif log.conflict is None:
                log.conflict = f"child {child_id} is mapped to {mappings[child_id]} outside this family"

        log.score = structure
        if log.conflict is not None or self.matcher is None:
            return log

        # Blend in personal similarity of spouses that are not mapped yet
        personal = []
        pairs = (
            ("Husband", source_family.husband_id, dest_family.husband_id),
            ("Wife", source_family.wife_id, dest_family.wife_id),
        )
        for label, source_id, dest_id in pairs:
            if source_id is None or dest_id is None or source_id in mappings:
                continue
            score = self._personal_score(source_id, dest_id, source_tree, dest_tree)
            if score is not None:
                personal.append(score)
                log.components.append(ScoreComponent(f"{label}Similarity", score, f"{source_id} ~ {dest_id}"))

        if len(personal) == 2:
            log.score = int(0.4 * structure + 0.3 * personal[0] + 0.3 * personal[1])
        elif len(personal) == 1:
            log.score = int(0.4 * structure + 0.6 * personal[0])
        return log

    def find_matching_family(
        self,
        source_family: FamilyRecord,
        candidates: Iterable[FamilyRecord],
        mappings: Mapping[str, str],
        source_tree: TreeGraph,
        dest_tree: TreeGraph,
        floor: float = 0,
        role: FamilyRole = FamilyRole.SPOUSE,
    ) -> FamilyMatchOutcome:
        """
        Find the destination family matching a source family.

        Args:
            source_family: The family being processed
            candidates: Destination families of the mapped person in the same role
            mappings: Current source id -> destination id mappings
            source_tree: Source tree index
            dest_tree: Destination tree index
            floor: A candidate must score strictly above this
            role: Role of the mapped person in the family, for the log

        Returns:
            FamilyMatchOutcome with the selected family, if any, and the attempt log
        """
        attempt = FamilyMatchAttemptLog(
            source_family_id=source_family.id,
            role=role.value,
            source_description=describe_family(source_family, source_tree),
        )
        ordered = sorted(candidates, key=lambda f: f.id)
        if not ordered:
            attempt.result = FamilyMatchResult.NO_CANDIDATES.value
            return FamilyMatchOutcome(FamilyMatchResult.NO_CANDIDATES, None, 0, attempt)

        best: CandidateFamilyLog | None = None
        best_family: FamilyRecord | None = None
        tied: list[str] = []
        any_conflict = False
        for family in ordered:
            entry = self.score_family(source_family, family, mappings, source_tree, dest_tree)
            attempt.candidates.append(entry)
            if entry.conflict is not None:
                any_conflict = True
                logger.debug(f"Family {family.id} conflicts with {source_family.id}: {entry.conflict}")
                continue
            if entry.score <= floor:
                continue
            if best is None or entry.score > best.score:
                best, best_family, tied = entry, family, []
            elif entry.score == best.score:
                tied.append(family.id)

        if best is not None:
            if tied:
                logger.warning(
                    f"Families {best_family.id}, {', '.join(tied)} tie at {best.score} "
                    f"for {source_family.id}; using {best_family.id}"
                )
            best.selected = True
            attempt.result = FamilyMatchResult.MATCHED.value
            attempt.selected_family_id = best_family.id
            attempt.score = best.score
            return FamilyMatchOutcome(FamilyMatchResult.MATCHED, best_family, best.score, attempt)

        result = FamilyMatchResult.CONFLICT if any_conflict else FamilyMatchResult.NO_MATCH
        attempt.result = result.value
        return FamilyMatchOutcome(result, None, 0, attempt)
