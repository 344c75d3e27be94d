"""
Wave propagation engine.

Starting from a confirmed anchor pair, walks both trees ring by ring: every
mapped person's families are matched against its counterpart's families,
and the members of matched families become the next ring.
"""

import time
from collections import deque
from dataclasses import replace
from datetime import timedelta
from types import MappingProxyType
from typing import Callable, Mapping

from loguru import logger

from child_matcher import FamilyMemberMatcher, MatchContext
from conflicts import MappingConflictResolver
from family_matcher import FamilyMatcher, FamilyMatchResult
from graph import TreeGraph, nearest_mapped, to_person_graph
from interactive import Confirmation, ConfirmationRequest, ConfirmationResult, collect_candidates
from matcher import FuzzyMatcher
import navigator
from models import (
    AnchorInfo,
    AnchorNotFoundError,
    CompareStatistics,
    Decision,
    DecisionRecord,
    EngineState,
    FamilyRecord,
    FamilyRole,
    IssueType,
    LevelStatistics,
    PersonMapping,
    RelationKind,
    Severity,
    UnmatchReason,
    UnmatchedPerson,
    ValidationIssue,
    WaveCompareOptions,
    WaveCompareResult,
    WaveState,
    utc_now,
)
from store import ConfirmedMapping
from thresholds import ThresholdCalculator
from validation import MappingValidator
from wave_log import PersonProcessingLog, WaveCompareLog


class _Cancelled(Exception):
    pass


class _LevelCounter:
    def __init__(self, level: int):
        self.level = level
        self.persons_processed = 0
        self.new_mappings = 0
        self.families_examined = 0
        self.seconds = 0.0

    def freeze(self) -> LevelStatistics:
        return LevelStatistics(
            level=self.level,
            persons_processed=self.persons_processed,
            new_mappings=self.new_mappings,
            families_examined=self.families_examined,
            duration=timedelta(seconds=self.seconds),
        )


class _WaveRun:
    """Mutable state of one compare run. Owned by a single WaveEngine call."""

    def __init__(
        self,
        engine: "WaveEngine",
        source_tree: TreeGraph,
        dest_tree: TreeGraph,
        options: WaveCompareOptions,
        cancel: Callable[[], bool] | None,
        log: WaveCompareLog,
    ):
        self.engine = engine
        self.source_tree = source_tree
        self.dest_tree = dest_tree
        self.options = options
        self.cancel = cancel or (lambda: False)
        self.log = log

        self.thresholds = ThresholdCalculator(options)
        self.members = FamilyMemberMatcher(engine.matcher, self.thresholds)
        self.band = self.thresholds.confirmation_band(
            options.min_confidence_threshold, options.low_confidence_threshold
        )

        self.mappings: dict[str, PersonMapping] = {}
        self.mapped: dict[str, str] = {}
        # destination id -> source id
        self.used_destinations: dict[str, str] = {}
        self.processed: set[str] = set()
        self.explored: set[str] = set()
        self.reached_source: set[str] = set()
        self.reached_dest: set[str] = set()
        self.queue: deque[tuple[str, int]] = deque()
        self.issues: list[ValidationIssue] = []
        self.reported_stale: set[tuple[IssueType, str]] = set()
        self.unmatch_reasons: dict[str, UnmatchReason] = {}
        self.decisions: list[DecisionRecord] = []
        self.answered: dict[tuple[str, str], Decision] = {}
        self.levels: dict[int, _LevelCounter] = {}
        self.cancelled = False
        self.state = EngineState.NOT_STARTED

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def counter(self, level: int) -> _LevelCounter:
        if level not in self.levels:
            self.levels[level] = _LevelCounter(level)
        return self.levels[level]

    def add_mapping(self, mapping: PersonMapping) -> None:
        self.mappings[mapping.source_id] = mapping
        self.mapped[mapping.source_id] = mapping.destination_id
        self.used_destinations[mapping.destination_id] = mapping.source_id
        self.reached_source.add(mapping.source_id)
        self.reached_dest.add(mapping.destination_id)
        self.unmatch_reasons.pop(mapping.source_id, None)
        self.queue.append((mapping.source_id, mapping.level))
        self.counter(mapping.level).new_mappings += 1
        self.log.level(mapping.level).new_mappings += 1

    def seed(self, anchor_source_id: str, anchor_dest_id: str, confirmed: Mapping[str, ConfirmedMapping]) -> None:
        self.add_mapping(
            PersonMapping(
                source_id=anchor_source_id,
                destination_id=anchor_dest_id,
                match_score=100,
                level=0,
                found_via=RelationKind.ANCHOR,
            )
        )
        for source_id, entry in confirmed.items():
            if entry.type != Decision.CONFIRMED or not entry.destination_id:
                continue
            if source_id not in self.source_tree or entry.destination_id not in self.dest_tree:
                logger.warning(f"Confirmed mapping {source_id} -> {entry.destination_id} refers to unknown persons")
                continue
            if source_id in self.mappings or entry.destination_id in self.used_destinations:
                continue
            self.add_mapping(
                PersonMapping(
                    source_id=source_id,
                    destination_id=entry.destination_id,
                    match_score=100,
                    level=0,
                    found_via=RelationKind.ANCHOR,
                )
            )
            self.log.notes.append(f"Confirmed anchor {source_id} -> {entry.destination_id}")
        self.state = EngineState.ANCHORED

    def restore(self, state: WaveState) -> None:
        for mapping in state.mappings:
            self.mappings[mapping.source_id] = mapping
            self.mapped[mapping.source_id] = mapping.destination_id
            self.used_destinations[mapping.destination_id] = mapping.source_id
            self.reached_source.add(mapping.source_id)
            self.reached_dest.add(mapping.destination_id)
        self.processed.update(state.processed)
        self.queue.extend(state.queue)
        for person_id, _level in state.queue:
            self.reached_source.add(person_id)
            if person_id not in self.mappings:
                self.explored.add(person_id)
        self.state = EngineState.ANCHORED

    def snapshot(self) -> WaveState:
        return WaveState(
            queue=list(self.queue),
            processed=sorted(self.processed),
            mappings=list(self.mappings.values()),
        )

    def record_stale(self, family: FamilyRecord, tree: TreeGraph, issue_type: IssueType) -> None:
        for person_id in family.member_ids:
            if person_id in tree or (issue_type, person_id) in self.reported_stale:
                continue
            self.reported_stale.add((issue_type, person_id))
            logger.warning(f"Family {family.id} refers to unknown person {person_id}")
            source_id = person_id if issue_type == IssueType.INVALID_SOURCE_ID else None
            dest_id = person_id if issue_type == IssueType.INVALID_DEST_ID else None
            self.issues.append(
                ValidationIssue(
                    Severity.HIGH, issue_type, f"Family {family.id} refers to unknown person", source_id, dest_id
                )
            )

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    def propagate(self) -> None:
        self.state = EngineState.PROPAGATING
        while self.queue:
            level = self.queue[0][1]
            if self.cancel():
                self.cancelled = True
                logger.info(f"Compare cancelled before level {level}")
                return
            ring = []
            while self.queue and self.queue[0][1] == level:
                ring.append(self.queue.popleft())

            logger.info(f"Level {level}: {len(ring)} persons queued")
            started = time.perf_counter()
            try:
                for position, (person_id, person_level) in enumerate(ring):
                    try:
                        self.process_person(person_id, person_level)
                    except _Cancelled:
                        # Put the unfinished part of the ring back for resume
                        self.processed.discard(person_id)
                        self.queue.extendleft(reversed(ring[position:]))
                        raise
            except _Cancelled:
                self.cancelled = True
                logger.info(f"Compare cancelled during level {level}")
                return
            finally:
                self.counter(level).seconds += time.perf_counter() - started
                self.log.level(level).duration = timedelta(seconds=self.counter(level).seconds)

    def process_person(self, person_id: str, level: int) -> None:
        if person_id in self.processed:
            return
        mapping = self.mappings.get(person_id)
        source = self.source_tree.person(person_id)
        plog = PersonProcessingLog(
            person_id=person_id,
            destination_id=mapping.destination_id if mapping else None,
            level=level,
            summary=str(source) if source else person_id,
        )
        self.log.level(level).persons.append(plog)
        self.counter(level).persons_processed += 1

        if mapping is None:
            plog.notes.append("No counterpart, reached for exploration only")
            return
        self.processed.add(person_id)
        if level >= self.options.max_level:
            plog.notes.append(f"Maximum level {self.options.max_level} reached, not expanded")
            return

        dest_id = mapping.destination_id
        for family, role in navigator.all_families(self.source_tree, person_id):
            if role == FamilyRole.SPOUSE:
                candidates = list(navigator.families_as_spouse(self.dest_tree, dest_id))
            else:
                candidates = list(navigator.families_as_child(self.dest_tree, dest_id))
            self.record_stale(family, self.source_tree, IssueType.INVALID_SOURCE_ID)
            self.counter(level).families_examined += 1

            outcome = self.engine.family_matcher.find_matching_family(
                family,
                candidates,
                self.mapped,
                self.source_tree,
                self.dest_tree,
                floor=self.options.family_score_floor,
                role=role,
            )
            plog.family_attempts.append(outcome.log)
            logger.debug(f"{person_id}: family {family.id} as {role.value} -> {outcome.result.value}")
            if outcome.result != FamilyMatchResult.MATCHED:
                continue
            self.record_stale(outcome.family, self.dest_tree, IssueType.INVALID_DEST_ID)
            self.process_matched_family(family, outcome.family, role, person_id, dest_id, level, plog)

    def process_matched_family(
        self,
        family: FamilyRecord,
        dest_family: FamilyRecord,
        role: FamilyRole,
        from_source_id: str,
        from_dest_id: str,
        level: int,
        plog: PersonProcessingLog,
    ) -> None:
        self.reached_source.update(p for p in family.member_ids if p in self.source_tree)
        self.reached_dest.update(p for p in dest_family.member_ids if p in self.dest_tree)

        ctx = MatchContext(
            source_family=family,
            dest_family=dest_family,
            role=role,
            from_source_id=from_source_id,
            from_dest_id=from_dest_id,
            mappings=MappingProxyType(self.mapped),
            used_destinations=self.used_destinations.keys(),
            source_tree=self.source_tree,
            dest_tree=self.dest_tree,
            level=level + 1,
        )
        outcome = self.members.match_members(ctx)
        if outcome.greedy_log is not None:
            plog.greedy_logs.append(outcome.greedy_log)

        any_matched = False
        for proposed in outcome.mappings:
            if proposed.source_id in self.mappings or proposed.destination_id in self.used_destinations:
                continue
            check = self.engine.validator.check_mapping(
                proposed, self.mapped, self.source_tree, self.dest_tree, used_by=self.used_destinations
            )
            if not check.is_valid:
                logger.debug(f"Rejected {proposed.source_id} -> {proposed.destination_id}: validation failed")
                self.issues.extend(check.issues)
                self.unmatch_reasons[proposed.source_id] = UnmatchReason.VALIDATION_FAILED
                continue

            accepted = self.confirm(proposed)
            if accepted is None:
                continue
            self.add_mapping(accepted)
            plog.new_mappings.append(f"{accepted.source_id}->{accepted.destination_id}")
            any_matched = True
            logger.debug(
                f"Level {accepted.level}: {accepted.source_id} -> {accepted.destination_id} "
                f"({accepted.found_via.value}, {accepted.match_score})"
            )

        if any_matched:
            # Next ring: the neighbours of the expanded person that belong to this family
            members = set(family.member_ids)
            for member_id, _relation in navigator.immediate_relatives(self.source_tree, from_source_id):
                if member_id not in members or member_id not in self.source_tree:
                    continue
                if member_id not in self.mappings and member_id not in self.explored:
                    self.explored.add(member_id)
                    self.queue.append((member_id, level + 1))

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm(self, proposed: PersonMapping) -> PersonMapping | None:
        """Apply the confirmation policy. Returns the mapping to record, or None."""
        memo = self.engine.store_decisions.get(proposed.source_id)
        if memo is not None:
            if memo.type == Decision.CONFIRMED and memo.destination_id == proposed.destination_id:
                return proposed
            if memo.type == Decision.REJECTED and memo.destination_id in (None, proposed.destination_id):
                logger.debug(f"{proposed.source_id} -> {proposed.destination_id} rejected earlier")
                self.unmatch_reasons[proposed.source_id] = UnmatchReason.REJECTED
                return None

        confirmation = self.engine.confirmation
        if not self.options.interactive or confirmation is None:
            return proposed

        minimum, low = self.band
        if proposed.match_score >= low:
            return proposed
        if proposed.match_score < minimum:
            self.unmatch_reasons[proposed.source_id] = UnmatchReason.NO_MATCH
            return None

        pair = (proposed.source_id, proposed.destination_id)
        if pair in self.answered:
            # Already asked about this pair during the run
            previous = self.answered[pair]
            self.unmatch_reasons[proposed.source_id] = (
                UnmatchReason.REJECTED if previous == Decision.REJECTED else UnmatchReason.SKIPPED
            )
            return None

        if self.cancel():
            raise _Cancelled()

        source = self.source_tree.person(proposed.source_id)
        dest = self.dest_tree.person(proposed.destination_id)
        from_mapping = self.mappings.get(proposed.found_from_person_id)
        proposed_candidate, candidates = collect_candidates(
            self.engine.matcher,
            source,
            dest,
            from_mapping.destination_id if from_mapping else None,
            self.source_tree,
            self.dest_tree,
            minimum,
            self.options.max_candidates,
            exclude=self.used_destinations.keys(),
        )
        request = ConfirmationRequest(
            source=source,
            proposed=proposed_candidate,
            candidates=candidates,
            relation=proposed.found_via,
            level=proposed.level,
            from_person=self.source_tree.person(proposed.found_from_person_id),
        )
        try:
            result = confirmation.ask_user(request)
        except Exception:
            logger.exception(f"Confirmation failed for {proposed.source_id}, treating as skipped")
            self.answered[pair] = Decision.SKIPPED
            self.unmatch_reasons[proposed.source_id] = UnmatchReason.SKIPPED
            return None

        self.decisions.append(
            DecisionRecord(
                source_id=proposed.source_id,
                destination_id=result.destination_id,
                decision=result.decision,
                original_score=proposed.match_score,
            )
        )
        self.answered[pair] = result.decision
        return self.apply_decision(proposed, result, candidates)

    def apply_decision(self, proposed: PersonMapping, result: ConfirmationResult, candidates) -> PersonMapping | None:
        if result.decision == Decision.REJECTED:
            self.unmatch_reasons[proposed.source_id] = UnmatchReason.REJECTED
            return None
        if result.decision != Decision.CONFIRMED:
            self.unmatch_reasons[proposed.source_id] = UnmatchReason.SKIPPED
            return None

        dest_id = result.destination_id or proposed.destination_id
        if dest_id == proposed.destination_id:
            return proposed
        if dest_id not in self.dest_tree or dest_id in self.used_destinations:
            logger.warning(f"Chosen destination {dest_id} for {proposed.source_id} is unknown or taken")
            self.unmatch_reasons[proposed.source_id] = UnmatchReason.SKIPPED
            return None
        score = next((c.score for c in candidates if c.person.id == dest_id), None)
        if score is None:
            score = self.engine.matcher.compare(
                self.source_tree.person(proposed.source_id), self.dest_tree.person(dest_id)
            ).score
        chosen = replace(proposed, destination_id=dest_id, match_score=int(round(score)))
        check = self.engine.validator.check_mapping(
            chosen, self.mapped, self.source_tree, self.dest_tree, used_by=self.used_destinations
        )
        if not check.is_valid:
            self.issues.extend(check.issues)
            self.unmatch_reasons[proposed.source_id] = UnmatchReason.VALIDATION_FAILED
            return None
        return chosen

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def unmatched(self, tree: TreeGraph, mapped_ids: set[str], reached: set[str], levels: Mapping[str, int], reasons):
        nearest = nearest_mapped(to_person_graph(tree), levels)
        result = []
        for person_id in sorted(tree.persons_by_id):
            if person_id in mapped_ids:
                continue
            reason = reasons.get(person_id)
            if reason is None:
                reason = UnmatchReason.NO_MATCH if person_id in reached else UnmatchReason.NOT_REACHED
            near = nearest.get(person_id)
            result.append(
                UnmatchedPerson(
                    id=person_id,
                    summary=str(tree.persons_by_id[person_id]),
                    reason=reason,
                    nearest_matched_person_id=near[0] if near else None,
                    nearest_matched_level=near[1] if near else None,
                )
            )
        return result


class WaveEngine:
    """
    Compare two trees by wave propagation from an anchor pair.

    Args:
        matcher: Fuzzy matcher used for every person comparison
        validator: Gate for each proposed mapping and the final second pass
        family_matcher: Structural family matcher, defaults to one using `matcher`
        confirmation: Collaborator asked about medium-confidence matches
        store_decisions: Earlier decisions by source id, from ConfirmedMappingsStore.decisions
    """

    def __init__(
        self,
        matcher: FuzzyMatcher,
        validator: MappingValidator,
        family_matcher: FamilyMatcher | None = None,
        confirmation: Confirmation | None = None,
        store_decisions: Mapping[str, ConfirmedMapping] | None = None,
    ):
        self.matcher = matcher
        self.validator = validator
        self.family_matcher = family_matcher or FamilyMatcher(matcher)
        self.confirmation = confirmation
        self.store_decisions = dict(store_decisions or {})
        self.last_log: WaveCompareLog | None = None

    def _check_anchors(self, source_tree: TreeGraph, dest_tree: TreeGraph, anchor_source_id: str, anchor_dest_id: str):
        if anchor_source_id not in source_tree:
            raise AnchorNotFoundError("source", anchor_source_id)
        if anchor_dest_id not in dest_tree:
            raise AnchorNotFoundError("destination", anchor_dest_id)

    def compare(
        self,
        source_tree: TreeGraph,
        dest_tree: TreeGraph,
        anchor_source_id: str,
        anchor_dest_id: str,
        options: WaveCompareOptions | None = None,
        *,
        cancel: Callable[[], bool] | None = None,
        source_file: str | None = None,
        destination_file: str | None = None,
    ) -> WaveCompareResult:
        """
        Run a full compare.

        Raises:
            AnchorNotFoundError: when either anchor id is missing from its tree
        """
        options = options or WaveCompareOptions()
        self._check_anchors(source_tree, dest_tree, anchor_source_id, anchor_dest_id)
        if options.interactive and self.confirmation is None:
            logger.warning("Interactive mode requested without a confirmation handler, accepting all matches")

        log = WaveCompareLog(anchor_source_id=anchor_source_id, anchor_dest_id=anchor_dest_id, started_at=utc_now())
        run = _WaveRun(self, source_tree, dest_tree, options, cancel, log)
        logger.info(
            f"Wave compare {anchor_source_id} <-> {anchor_dest_id}: "
            f"{len(source_tree)} source persons, {len(dest_tree)} destination persons"
        )
        run.seed(anchor_source_id, anchor_dest_id, self.store_decisions)
        run.propagate()
        return self._finish(run, anchor_source_id, anchor_dest_id, source_file, destination_file)

    def resume(
        self,
        state: WaveState,
        source_tree: TreeGraph,
        dest_tree: TreeGraph,
        anchor_source_id: str,
        anchor_dest_id: str,
        options: WaveCompareOptions | None = None,
        *,
        cancel: Callable[[], bool] | None = None,
        source_file: str | None = None,
        destination_file: str | None = None,
    ) -> WaveCompareResult:
        """Continue a cancelled run from its pending WaveState."""
        options = options or WaveCompareOptions()
        self._check_anchors(source_tree, dest_tree, anchor_source_id, anchor_dest_id)
        log = WaveCompareLog(anchor_source_id=anchor_source_id, anchor_dest_id=anchor_dest_id, started_at=utc_now())
        log.notes.append(f"Resumed with {len(state.mappings)} mappings and {len(state.queue)} queued persons")
        run = _WaveRun(self, source_tree, dest_tree, options, cancel, log)
        run.restore(state)
        run.propagate()
        return self._finish(run, anchor_source_id, anchor_dest_id, source_file, destination_file)

    def _finish(
        self,
        run: _WaveRun,
        anchor_source_id: str,
        anchor_dest_id: str,
        source_file: str | None,
        destination_file: str | None,
    ) -> WaveCompareResult:
        started = run.log.started_at
        mappings = list(run.mappings.values())

        if run.options.resolve_conflicts and not run.cancelled:
            resolution = MappingConflictResolver(self.matcher).resolve(mappings, run.source_tree, run.dest_tree)
            mappings = resolution.mappings
            for dropped in resolution.dropped:
                run.unmatch_reasons[dropped.source_id] = UnmatchReason.NO_MATCH
            run.log.notes.append(
                f"Conflict resolution: {len(resolution.changed)} changed, {len(resolution.dropped)} dropped"
            )

        issues = set(run.issues)
        issues.update(self.validator.validate(mappings, run.source_tree, run.dest_tree))
        validation_issues = sorted(issues, key=ValidationIssue.sort_key)

        source_levels = {m.source_id: m.level for m in mappings}
        dest_levels = {m.destination_id: m.level for m in mappings}
        unmatched_source = run.unmatched(
            run.source_tree, set(source_levels), run.reached_source, source_levels, run.unmatch_reasons
        )
        unmatched_destination = run.unmatched(run.dest_tree, set(dest_levels), run.reached_dest, dest_levels, {})

        finished = utc_now()
        run.log.finished_at = finished
        run.log.cancelled = run.cancelled
        self.last_log = run.log

        statistics = CompareStatistics(
            total_source_persons=len(run.source_tree),
            total_destination_persons=len(run.dest_tree),
            total_mappings=len(mappings),
            unmatched_source_count=len(unmatched_source),
            unmatched_destination_count=len(unmatched_destination),
            validation_issue_count=len(validation_issues),
            duration=finished - started,
        )
        logger.info(
            f"Wave compare finished: {statistics.total_mappings} mappings, "
            f"{statistics.unmatched_source_count} unmatched source persons, "
            f"{statistics.validation_issue_count} issues"
            + (" (cancelled)" if run.cancelled else "")
        )

        source = run.source_tree.person(anchor_source_id)
        dest = run.dest_tree.person(anchor_dest_id)
        return WaveCompareResult(
            source_file=source_file,
            destination_file=destination_file,
            compared_at=started,
            anchors=AnchorInfo(anchor_source_id, anchor_dest_id, str(source), str(dest)),
            options=run.options,
            mappings=mappings,
            unmatched_source=unmatched_source,
            unmatched_destination=unmatched_destination,
            validation_issues=validation_issues,
            level_statistics=[run.levels[level].freeze() for level in sorted(run.levels)],
            statistics=statistics,
            decisions=list(run.decisions),
            state=EngineState.TERMINATED,
            cancelled=run.cancelled,
            pending=run.snapshot() if run.cancelled else None,
        )
