"""Matching the members of two corresponding families."""

from dataclasses import dataclass, field
from typing import AbstractSet, Mapping

from loguru import logger

from graph import TreeGraph
from matcher import FuzzyMatcher, gender_conflict, year_difference
from models import FamilyRecord, FamilyRole, PersonMapping, PersonRecord, RelationKind
from thresholds import ThresholdCalculator
from wave_log import GreedyMatchLog, GreedyMatchStep


@dataclass
class MatchContext:
    source_family: FamilyRecord
    dest_family: FamilyRecord
    role: FamilyRole
    from_source_id: str
    from_dest_id: str
    mappings: Mapping[str, str]
    used_destinations: AbstractSet[str]
    source_tree: TreeGraph
    dest_tree: TreeGraph
    level: int


@dataclass
class MemberMatchOutcome:
    mappings: list[PersonMapping] = field(default_factory=list)
    greedy_log: GreedyMatchLog | None = None


def score_child(
    source: PersonRecord, dest: PersonRecord, fuzzy_score: float, source_index: int, dest_index: int
) -> int:
    """
    Score a source child against a destination child of the matched family.

    Args:
        source: Child from the source family
        dest: Child from the destination family
        fuzzy_score: FuzzyMatcher score of the pair
        source_index: Birth-order position in the source family
        dest_index: Birth-order position in the destination family

    Returns:
        Score in [0, 100]; 0 when the genders are known and differ
    """
    if gender_conflict(source, dest):
        return 0
    score = 15 + int(0.6 * fuzzy_score)

    order_distance = abs(source_index - dest_index)
    if order_distance <= 1:
        score += 10
    elif order_distance == 2:
        score += 5

    diff = year_difference(source.birth_date, dest.birth_date)
    if diff is not None:
        if diff == 0:
            score += 15
        elif diff <= 2:
            score += 10
        elif diff <= 5:
            score += 5
    return min(score, 100)


def greedy_select(matrix: list[list[int]], threshold: int) -> list[tuple[int, int, int, bool]]:
    """
    Greedy one-to-one assignment over a score matrix.

    Repeatedly takes the highest remaining pair (ties by lower row, then lower
    column) until the best remaining pair is below threshold or a side runs out.

    Returns:
        Steps as (row, column, score, accepted). Only the last step can be a rejection.
    """
    pairs = sorted(
        ((score, i, j) for i, row in enumerate(matrix) for j, score in enumerate(row)),
        key=lambda p: (-p[0], p[1], p[2]),
    )
    rows = len(matrix)
    cols = max((len(row) for row in matrix), default=0)
    used_rows: set[int] = set()
    used_cols: set[int] = set()
    steps = []
    for score, i, j in pairs:
        if len(used_rows) == rows or len(used_cols) == cols:
            break
        if i in used_rows or j in used_cols:
            continue
        if score < threshold:
            steps.append((i, j, score, False))
            break
        used_rows.add(i)
        used_cols.add(j)
        steps.append((i, j, score, True))
    return steps


class FamilyMemberMatcher:
    def __init__(self, matcher: FuzzyMatcher, thresholds: ThresholdCalculator):
        self.matcher = matcher
        self.thresholds = thresholds

    @staticmethod
    def _taken(ctx: MatchContext, taken: set[str], dest_id: str) -> bool:
        return dest_id in taken or dest_id in ctx.used_destinations

    def _mapping(self, ctx: MatchContext, source_id: str, dest_id: str, score: float, via: RelationKind):
        return PersonMapping(
            source_id=source_id,
            destination_id=dest_id,
            match_score=int(round(score)),
            level=ctx.level,
            found_via=via,
            found_in_family_id=ctx.source_family.id,
            found_from_person_id=ctx.from_source_id,
        )

    def _match_spouses(self, ctx: MatchContext, outcome: MemberMatchOutcome, taken: set[str]):
        if ctx.role == FamilyRole.SPOUSE:
            relation = RelationKind.SPOUSE
            threshold = self.thresholds.spouse_threshold(ctx.level)
        else:
            relation = RelationKind.PARENT
            threshold = self.thresholds.parent_threshold(ctx.level)

        slots = (
            (ctx.source_family.husband_id, ctx.dest_family.husband_id),
            (ctx.source_family.wife_id, ctx.dest_family.wife_id),
        )
        for source_id, dest_id in slots:
            if source_id is None or dest_id is None or source_id in ctx.mappings:
                continue
            if self._taken(ctx, taken, dest_id):
                continue
            source = ctx.source_tree.person(source_id)
            dest = ctx.dest_tree.person(dest_id)
            if source is None or dest is None or gender_conflict(source, dest):
                continue
            candidate = self.matcher.compare(source, dest)
            if candidate.score >= threshold:
                outcome.mappings.append(self._mapping(ctx, source_id, dest_id, candidate.score, relation))
                taken.add(dest_id)
            else:
                logger.debug(f"{relation.value} {source_id} -> {dest_id} scored {candidate.score} < {threshold}")

    def _match_children(self, ctx: MatchContext, outcome: MemberMatchOutcome, taken: set[str]):
        relation = RelationKind.CHILD if ctx.role == FamilyRole.SPOUSE else RelationKind.SIBLING
        source_all = list(ctx.source_family.child_ids)
        dest_all = list(ctx.dest_family.child_ids)

        source_ids = [
            c for c in source_all if c not in ctx.mappings and ctx.source_tree.person(c) is not None
        ]
        dest_ids = [
            c for c in dest_all if not self._taken(ctx, taken, c) and ctx.dest_tree.person(c) is not None
        ]
        if not source_ids or not dest_ids:
            return

        threshold = self.thresholds.threshold(relation, min(len(source_ids), len(dest_ids)), ctx.level)
        matrix = []
        for i, source_id in enumerate(source_ids):
            source = ctx.source_tree.person(source_id)
            row = []
            for j, dest_id in enumerate(dest_ids):
                dest = ctx.dest_tree.person(dest_id)
                fuzzy_score = self.matcher.compare(source, dest).score
                row.append(score_child(source, dest, fuzzy_score, source_all.index(source_id), dest_all.index(dest_id)))
            matrix.append(row)

        log = GreedyMatchLog(
            family_id=ctx.source_family.id,
            threshold=threshold,
            source_ids=source_ids,
            destination_ids=dest_ids,
            matrix=matrix,
        )
        for i, j, score, accepted in greedy_select(matrix, threshold):
            log.steps.append(
                GreedyMatchStep(
                    source_id=source_ids[i],
                    destination_id=dest_ids[j],
                    score=score,
                    accepted=accepted,
                    reason="" if accepted else f"best remaining score {score} below {threshold}",
                )
            )
            if accepted:
                dest_id = dest_ids[j]
                taken.add(dest_id)
                outcome.mappings.append(self._mapping(ctx, source_ids[i], dest_id, score, relation))
        outcome.greedy_log = log

    def match_members(self, ctx: MatchContext) -> MemberMatchOutcome:
        """Propose mappings for the unmapped spouses and children of a matched family pair."""
        outcome = MemberMatchOutcome()
        # Destinations given out by this call
        taken: set[str] = set()
        self._match_spouses(ctx, outcome, taken)
        self._match_children(ctx, outcome, taken)
        return outcome
