"""Tests for the wave propagation engine."""

from dataclasses import replace

import pytest

from conftest import dest_families, dest_persons, make_tree, source_families, source_persons
from engine import WaveEngine
from interactive import ConfirmationRequest, ConfirmationResult
from models import (
    AnchorNotFoundError,
    Decision,
    IssueType,
    RelationKind,
    UnmatchReason,
    Severity,
    WaveCompareOptions,
)
from store import ConfirmedMapping
from wave_log import format_level_summary, format_log

EXPECTED = {"S1": "D1", "S2": "D2", "S3": "D3", "S4": "D4", "S5": "D5", "S6": "D6"}


def pairs(result) -> dict[str, str]:
    return {m.source_id: m.destination_id for m in result.mappings}


class RecordingConfirmation:
    """Answers every request with a fixed decision and remembers the requests."""

    def __init__(self, decision: Decision, destination_id: str | None = None):
        self.decision = decision
        self.destination_id = destination_id
        self.requests: list[ConfirmationRequest] = []

    def ask_user(self, request: ConfirmationRequest) -> ConfirmationResult:
        self.requests.append(request)
        return ConfirmationResult(self.decision, self.destination_id or request.proposed.person.id)


class FailingConfirmation:
    def __init__(self):
        self.calls = 0

    def ask_user(self, request: ConfirmationRequest) -> ConfirmationResult:
        self.calls += 1
        raise RuntimeError("terminal closed")


class TestWavePropagation:
    """Full compare of the two fixture trees."""

    # =========================================================================
    # Basic scenario
    # =========================================================================

    def test_maps_whole_family(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        assert pairs(result) == EXPECTED
        assert not result.cancelled
        assert result.pending is None

    def test_anchor_is_level_zero(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        anchor = result.mapping_for("S1")
        assert anchor.level == 0
        assert anchor.match_score == 100
        assert anchor.found_via == RelationKind.ANCHOR
        assert result.mappings[0] == anchor

    def test_spouse_found_at_level_one(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        spouse = result.mapping_for("S2")
        assert spouse.destination_id == "D2"
        assert spouse.level == 1
        assert spouse.found_via == RelationKind.SPOUSE
        assert spouse.match_score >= 90
        assert spouse.found_from_person_id == "S1"
        assert spouse.found_in_family_id == "SF1"

    def test_relation_kinds(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        assert result.mapping_for("S3").found_via == RelationKind.CHILD
        assert result.mapping_for("S4").found_via == RelationKind.CHILD
        assert result.mapping_for("S5").found_via == RelationKind.PARENT
        assert result.mapping_for("S6").found_via == RelationKind.PARENT

    def test_nickname_child_matched(self, engine, source_tree, dest_tree):
        """Robert and Bob are the same child."""
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        assert result.mapping_for("S3").destination_id == "D3"

    def test_levels_grow_by_one(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        by_source = {m.source_id: m for m in result.mappings}
        for m in result.mappings:
            if m.found_via == RelationKind.ANCHOR:
                continue
            assert by_source[m.found_from_person_id].level == m.level - 1

    def test_no_duplicate_mappings(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        sources = [m.source_id for m in result.mappings]
        destinations = [m.destination_id for m in result.mappings]
        assert len(sources) == len(set(sources))
        assert len(destinations) == len(set(destinations))

    def test_deterministic(self, engine, source_tree, dest_tree):
        def summary(result):
            return [(m.source_id, m.destination_id, m.match_score, m.level, m.found_via) for m in result.mappings]

        first = engine.compare(source_tree, dest_tree, "S1", "D1")
        second = engine.compare(source_tree, dest_tree, "S1", "D1")

        assert summary(first) == summary(second)
        assert first.validation_issues == second.validation_issues

    def test_no_high_issues(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        assert not [i for i in result.validation_issues if i.severity == Severity.HIGH]

    # =========================================================================
    # Unmatched persons and statistics
    # =========================================================================

    def test_unmatched_source_reached(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        assert [u.id for u in result.unmatched_source] == ["S7"]
        peter = result.unmatched_source[0]
        assert peter.reason == UnmatchReason.NO_MATCH
        assert peter.nearest_matched_person_id in ("S1", "S2")
        assert peter.nearest_matched_level in (0, 1)

    def test_unmatched_destination_not_reached(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        assert [u.id for u in result.unmatched_destination] == ["D9"]
        olga = result.unmatched_destination[0]
        assert olga.reason == UnmatchReason.NOT_REACHED
        assert olga.nearest_matched_person_id is None

    def test_statistics(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1")

        stats = result.statistics
        assert stats.total_source_persons == 7
        assert stats.total_destination_persons == 7
        assert stats.total_mappings == 6
        assert stats.unmatched_source_count == 1
        assert [s.level for s in result.level_statistics] == [0, 1]
        assert result.level_statistics[0].new_mappings == 1
        assert result.level_statistics[1].new_mappings == 5
        assert "Level" in format_level_summary(result.level_statistics)

    def test_detailed_log(self, engine, source_tree, dest_tree):
        engine.compare(source_tree, dest_tree, "S1", "D1")

        text = format_log(engine.last_log)
        assert "=== Level 0" in text
        assert "Family SF1 as Spouse" in text
        assert "S3 -> D3" in text

    # =========================================================================
    # Options
    # =========================================================================

    def test_max_level_zero_maps_anchor_only(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1", WaveCompareOptions(max_level=0))

        assert pairs(result) == {"S1": "D1"}
        assert {u.reason for u in result.unmatched_source} == {UnmatchReason.NOT_REACHED}

    def test_max_level_bounds_levels(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S2", "D2", WaveCompareOptions(max_level=1))

        assert max(m.level for m in result.mappings) <= 1
        # Mary's parents-in-law are two steps away
        assert result.mapping_for("S5") is None

    def test_start_from_child(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S4", "D4")

        assert pairs(result) == EXPECTED
        assert result.mapping_for("S5").level == 2

    def test_conflict_resolution_keeps_good_mappings(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1", WaveCompareOptions(resolve_conflicts=True))

        assert pairs(result) == EXPECTED

    # =========================================================================
    # Errors
    # =========================================================================

    def test_missing_source_anchor(self, engine, source_tree, dest_tree):
        with pytest.raises(AnchorNotFoundError) as exc_info:
            engine.compare(source_tree, dest_tree, "S99", "D1")

        assert exc_info.value.side == "source"
        assert exc_info.value.person_id == "S99"

    def test_missing_destination_anchor(self, engine, source_tree, dest_tree):
        with pytest.raises(AnchorNotFoundError, match="destination"):
            engine.compare(source_tree, dest_tree, "S1", "D99")


class TestConfirmation:
    """Interactive confirmation and stored decisions."""

    def test_medium_score_rejected_once(self, matcher, validator, source_tree, uncertain_dest_tree):
        confirmation = RecordingConfirmation(Decision.REJECTED)
        engine = WaveEngine(matcher, validator, confirmation=confirmation)

        result = engine.compare(
            source_tree, uncertain_dest_tree, "S1", "D1", WaveCompareOptions(interactive=True)
        )

        assert len(confirmation.requests) == 1
        request = confirmation.requests[0]
        assert request.source.id == "S2"
        assert request.proposed.person.id == "D2"
        assert 50 <= request.proposed.score < 70
        assert request.relation == RelationKind.SPOUSE
        assert request.proposed in request.candidates

        assert result.mapping_for("S2") is None
        mary = next(u for u in result.unmatched_source if u.id == "S2")
        assert mary.reason == UnmatchReason.REJECTED
        assert [(d.source_id, d.decision) for d in result.decisions] == [("S2", Decision.REJECTED)]

    def test_medium_score_confirmed(self, matcher, validator, source_tree, uncertain_dest_tree):
        confirmation = RecordingConfirmation(Decision.CONFIRMED)
        engine = WaveEngine(matcher, validator, confirmation=confirmation)

        result = engine.compare(
            source_tree, uncertain_dest_tree, "S1", "D1", WaveCompareOptions(interactive=True)
        )

        assert result.mapping_for("S2").destination_id == "D2"
        assert result.decisions[0].decision == Decision.CONFIRMED
        assert result.decisions[0].original_score == result.mapping_for("S2").match_score

    def test_collaborator_failure_is_skip(self, matcher, validator, source_tree, uncertain_dest_tree):
        confirmation = FailingConfirmation()
        engine = WaveEngine(matcher, validator, confirmation=confirmation)

        result = engine.compare(
            source_tree, uncertain_dest_tree, "S1", "D1", WaveCompareOptions(interactive=True)
        )

        assert confirmation.calls == 1
        assert result.mapping_for("S2") is None
        mary = next(u for u in result.unmatched_source if u.id == "S2")
        assert mary.reason == UnmatchReason.SKIPPED
        assert result.decisions == []
        # The rest of the family is still matched
        assert result.mapping_for("S3").destination_id == "D3"

    def test_non_interactive_accepts(self, matcher, validator, source_tree, uncertain_dest_tree):
        confirmation = RecordingConfirmation(Decision.REJECTED)
        engine = WaveEngine(matcher, validator, confirmation=confirmation)

        result = engine.compare(source_tree, uncertain_dest_tree, "S1", "D1")

        assert confirmation.requests == []
        assert result.mapping_for("S2").destination_id == "D2"

    def test_stored_rejection_applies_without_prompt(self, matcher, validator, source_tree, dest_tree):
        confirmation = RecordingConfirmation(Decision.CONFIRMED)
        stored = {"S2": ConfirmedMapping(source_id="S2", destination_id="D2", type=Decision.REJECTED)}
        engine = WaveEngine(matcher, validator, confirmation=confirmation, store_decisions=stored)

        result = engine.compare(source_tree, dest_tree, "S1", "D1", WaveCompareOptions(interactive=True))

        assert confirmation.requests == []
        assert result.mapping_for("S2") is None
        mary = next(u for u in result.unmatched_source if u.id == "S2")
        assert mary.reason == UnmatchReason.REJECTED

    def test_stored_confirmation_becomes_anchor(self, matcher, validator, source_tree, dest_tree):
        stored = {"S5": ConfirmedMapping(source_id="S5", destination_id="D5", type=Decision.CONFIRMED)}
        engine = WaveEngine(matcher, validator, store_decisions=stored)

        result = engine.compare(source_tree, dest_tree, "S3", "D3", WaveCompareOptions(max_level=0))

        assert pairs(result) == {"S3": "D3", "S5": "D5"}
        assert result.mapping_for("S5").level == 0
        assert result.mapping_for("S5").found_via == RelationKind.ANCHOR


class TestCancellation:
    def test_cancel_returns_partial_result(self, engine, source_tree, dest_tree):
        calls = []

        def cancel():
            calls.append(1)
            return len(calls) > 1

        result = engine.compare(source_tree, dest_tree, "S1", "D1", cancel=cancel)

        assert result.cancelled
        assert result.is_partial
        assert result.pending is not None
        assert {person_id for person_id, level in result.pending.queue} >= {"S2", "S3", "S4"}
        assert result.pending.processed == ["S1"]
        assert result.mapping_for("S1").level == 0

    def test_resume_finishes_run(self, engine, source_tree, dest_tree):
        calls = []

        def cancel():
            calls.append(1)
            return len(calls) > 1

        partial = engine.compare(source_tree, dest_tree, "S1", "D1", cancel=cancel)
        resumed = engine.resume(partial.pending, source_tree, dest_tree, "S1", "D1")

        assert not resumed.cancelled
        assert resumed.pending is None
        assert pairs(resumed) == EXPECTED
        assert [u.id for u in resumed.unmatched_source] == ["S7"]

    def test_cancel_before_start(self, engine, source_tree, dest_tree):
        result = engine.compare(source_tree, dest_tree, "S1", "D1", cancel=lambda: True)

        assert result.cancelled
        assert pairs(result) == {"S1": "D1"}
        assert result.pending.queue == [("S1", 0)]

    def test_cancel_at_confirmation_prompt(self, matcher, validator, source_tree, uncertain_dest_tree):
        """The second check comes right before Mary's prompt, so nobody is asked."""
        confirmation = RecordingConfirmation(Decision.CONFIRMED)
        engine = WaveEngine(matcher, validator, confirmation=confirmation)
        options = WaveCompareOptions(interactive=True)
        calls = []

        def cancel():
            calls.append(1)
            return len(calls) > 1

        partial = engine.compare(source_tree, uncertain_dest_tree, "S1", "D1", options, cancel=cancel)

        assert partial.cancelled
        assert confirmation.requests == []
        assert partial.mapping_for("S2") is None
        assert ("S1", 0) in partial.pending.queue

        resumed = engine.resume(partial.pending, source_tree, uncertain_dest_tree, "S1", "D1", options)

        assert not resumed.cancelled
        assert len(confirmation.requests) == 1
        assert resumed.mapping_for("S2").destination_id == "D2"


class TestStaleReferences:
    def test_unknown_family_members_reported(self, engine):
        source_families_with_stale = [
            replace(f, child_ids=f.child_ids + ("S404",)) if f.id == "SF1" else f for f in source_families()
        ]
        dest_families_with_stale = [
            replace(f, child_ids=f.child_ids + ("D404",)) if f.id == "DF1" else f for f in dest_families()
        ]
        source = make_tree(source_persons(), source_families_with_stale)
        dest = make_tree(dest_persons(), dest_families_with_stale)

        result = engine.compare(source, dest, "S1", "D1")

        assert pairs(result) == EXPECTED
        stale = {(i.type, i.source_id or i.destination_id) for i in result.validation_issues}
        assert (IssueType.INVALID_SOURCE_ID, "S404") in stale
        assert (IssueType.INVALID_DEST_ID, "D404") in stale
        assert not result.cancelled
