"""Interactive confirmation of medium-confidence matches."""

from dataclasses import dataclass, field
from typing import AbstractSet, Callable, Protocol

from graph import TreeGraph
from matcher import FuzzyMatcher
import navigator
from models import Decision, MatchReason, PersonRecord, RelationKind

RELATIVE_MATCH_SCORE = 70
MAX_CHILDREN_COMPARED = 10


@dataclass(frozen=True)
class ScoreBreakdown:
    fuzzy_score: float
    parents_matched: int = 0
    parents_total: int = 0
    children_matched: int = 0
    children_total: int = 0
    siblings_matched: int = 0
    siblings_total: int = 0
    spouses_matched: int = 0
    spouses_total: int = 0

    def __str__(self) -> str:
        return (
            f"score {self.fuzzy_score:.0f}, parents {self.parents_matched}/{self.parents_total}, "
            f"spouses {self.spouses_matched}/{self.spouses_total}, "
            f"children {self.children_matched}/{self.children_total}, "
            f"siblings {self.siblings_matched}/{self.siblings_total}"
        )


@dataclass(frozen=True)
class ConfirmationCandidate:
    person: PersonRecord
    score: float
    breakdown: ScoreBreakdown
    reasons: tuple[MatchReason, ...] = ()


@dataclass(frozen=True)
class ConfirmationRequest:
    source: PersonRecord
    proposed: ConfirmationCandidate
    candidates: tuple[ConfirmationCandidate, ...]
    relation: RelationKind
    level: int
    from_person: PersonRecord | None = None


@dataclass(frozen=True)
class ConfirmationResult:
    decision: Decision
    destination_id: str | None = None
    comment: str | None = None


class Confirmation(Protocol):
    def ask_user(self, request: ConfirmationRequest) -> ConfirmationResult: ...


# ============================================================================
# Score breakdown
# ============================================================================


def _parent_slots(tree: TreeGraph, person_id: str) -> tuple[str | None, str | None]:
    for family in navigator.families_as_child(tree, person_id):
        return family.husband_id, family.wife_id
    return None, None


def _count_matched(
    matcher: FuzzyMatcher, tree_a: TreeGraph, ids_a: list[str], tree_b: TreeGraph, ids_b: list[str]
) -> int:
    others = [p for p in (tree_b.person(i) for i in ids_b) if p is not None]
    matched = 0
    for person in (tree_a.person(i) for i in ids_a):
        if person is None:
            continue
        if any(matcher.compare(person, other).score >= RELATIVE_MATCH_SCORE for other in others):
            matched += 1
    return matched


def build_breakdown(
    matcher: FuzzyMatcher,
    source: PersonRecord,
    dest: PersonRecord,
    source_tree: TreeGraph,
    dest_tree: TreeGraph,
) -> ScoreBreakdown:
    """Compare the close families of two persons to back up a fuzzy score."""
    score = matcher.compare(source, dest).score

    parents_matched = 0
    parents_total = 0
    for s_parent, d_parent in zip(_parent_slots(source_tree, source.id), _parent_slots(dest_tree, dest.id)):
        if s_parent is None and d_parent is None:
            continue
        parents_total += 1
        s_person = source_tree.person(s_parent)
        d_person = dest_tree.person(d_parent)
        if s_person and d_person and matcher.compare(s_person, d_person).score >= RELATIVE_MATCH_SCORE:
            parents_matched += 1

    def relation_counts(query) -> tuple[int, int]:
        ids_a = list(query(source_tree, source.id))
        ids_b = list(query(dest_tree, dest.id))
        if query is navigator.children:
            ids_a = ids_a[:MAX_CHILDREN_COMPARED]
        return _count_matched(matcher, source_tree, ids_a, dest_tree, ids_b), max(len(ids_a), len(ids_b))

    children_matched, children_total = relation_counts(navigator.children)
    siblings_matched, siblings_total = relation_counts(navigator.siblings)
    spouses_matched, spouses_total = relation_counts(navigator.spouses)
    return ScoreBreakdown(
        fuzzy_score=score,
        parents_matched=parents_matched,
        parents_total=parents_total,
        children_matched=children_matched,
        children_total=children_total,
        siblings_matched=siblings_matched,
        siblings_total=siblings_total,
        spouses_matched=spouses_matched,
        spouses_total=spouses_total,
    )


def collect_candidates(
    matcher: FuzzyMatcher,
    source: PersonRecord,
    proposed: PersonRecord,
    around_dest_id: str | None,
    source_tree: TreeGraph,
    dest_tree: TreeGraph,
    min_score: float,
    max_candidates: int,
    exclude: AbstractSet[str] = frozenset(),
) -> tuple[ConfirmationCandidate, tuple[ConfirmationCandidate, ...]]:
    """
    Build the proposed candidate and the alternatives shown to the user.

    Alternatives come from the second-degree relatives of `around_dest_id`
    (the counterpart of the person the source was reached from). The proposed
    destination is always part of the list.

    Returns:
        (proposed candidate, all candidates best first)
    """
    pool = []
    if around_dest_id is not None:
        pool = [
            p for p in (dest_tree.person(i) for i in navigator.relatives_within(dest_tree, around_dest_id))
            if p is not None and p.id != proposed.id and p.id not in exclude
        ]
    matches = matcher.find_matches(source, pool, min_score)[: max(0, max_candidates - 1)]

    proposed_match = matcher.compare(source, proposed)
    proposed_candidate = ConfirmationCandidate(
        person=proposed,
        score=proposed_match.score,
        breakdown=build_breakdown(matcher, source, proposed, source_tree, dest_tree),
        reasons=proposed_match.reasons,
    )
    candidates = [proposed_candidate] + [
        ConfirmationCandidate(
            person=m.target,
            score=m.score,
            breakdown=build_breakdown(matcher, source, m.target, source_tree, dest_tree),
            reasons=m.reasons,
        )
        for m in matches
    ]
    candidates.sort(key=lambda c: (-c.score, c.person.id))
    return proposed_candidate, tuple(candidates)


# ============================================================================
# Console
# ============================================================================


@dataclass
class ConsoleConfirmation:
    """Ask on the terminal. Enter a candidate number, 'r' to reject or 's' to skip."""

    input_fn: Callable[[str], str] = input
    output_fn: Callable[[str], None] = print
    history: list[ConfirmationResult] = field(default_factory=list)

    def ask_user(self, request: ConfirmationRequest) -> ConfirmationResult:
        out = self.output_fn
        out("")
        out(f"Level {request.level}, {request.relation.value.lower()} of {request.from_person or '?'}")
        out(f"Source: {request.source}")
        for number, candidate in enumerate(request.candidates, start=1):
            marker = "*" if candidate.person.id == request.proposed.person.id else " "
            out(f" {marker}{number}. {candidate.person}  {candidate.breakdown}")

        while True:
            answer = self.input_fn(f"Choose [1-{len(request.candidates)}], r=reject, s=skip: ").strip().lower()
            if answer in ("", "s"):
                result = ConfirmationResult(Decision.SKIPPED)
                break
            if answer == "r":
                result = ConfirmationResult(Decision.REJECTED, request.proposed.person.id)
                break
            if answer.isdigit() and 1 <= int(answer) <= len(request.candidates):
                chosen = request.candidates[int(answer) - 1]
                result = ConfirmationResult(Decision.CONFIRMED, chosen.person.id)
                break
            out("Invalid choice")
        self.history.append(result)
        return result
