"""Tests for structural family matching and greedy member matching."""

import pytest

from child_matcher import FamilyMemberMatcher, MatchContext, greedy_select, score_child
from conftest import make_person
from family_matcher import FamilyMatcher, FamilyMatchResult
from models import DateInfo, FamilyRecord, FamilyRole, Gender, RelationKind, WaveCompareOptions
from thresholds import ThresholdCalculator


class TestFamilyMatcher:
    def test_spouse_family_matched(self, matcher, source_tree, dest_tree):
        family_matcher = FamilyMatcher(matcher)

        outcome = family_matcher.find_matching_family(
            source_tree.family("SF1"), [dest_tree.family("DF1")], {"S1": "D1"}, source_tree, dest_tree
        )

        assert outcome.result == FamilyMatchResult.MATCHED
        assert outcome.family.id == "DF1"
        assert 80 <= outcome.score <= 82
        entry = outcome.log.candidates[0]
        assert entry.selected
        assert [c.component for c in entry.components] == ["Husband", "Wife", "WifeSimilarity"]

    def test_structure_only_without_matcher(self, source_tree, dest_tree):
        outcome = FamilyMatcher().find_matching_family(
            source_tree.family("SF1"), [dest_tree.family("DF1")], {"S1": "D1", "S3": "D3"}, source_tree, dest_tree
        )

        # Mapped husband 50, unmapped wives 10, mapped child 20
        assert outcome.score == 80

    def test_husband_mapped_elsewhere_is_conflict(self, matcher, source_tree, dest_tree):
        outcome = FamilyMatcher(matcher).find_matching_family(
            source_tree.family("SF1"), [dest_tree.family("DF1")], {"S1": "D9"}, source_tree, dest_tree
        )

        assert outcome.result == FamilyMatchResult.CONFLICT
        assert outcome.family is None
        assert "D9" in outcome.log.candidates[0].conflict

    def test_child_mapped_outside_family_is_conflict(self, matcher, source_tree, dest_tree):
        outcome = FamilyMatcher(matcher).find_matching_family(
            source_tree.family("SF1"), [dest_tree.family("DF1")], {"S1": "D1", "S3": "D5"}, source_tree, dest_tree
        )

        assert outcome.result == FamilyMatchResult.CONFLICT

    def test_no_candidates(self, matcher, source_tree, dest_tree):
        outcome = FamilyMatcher(matcher).find_matching_family(
            source_tree.family("SF1"), [], {"S1": "D1"}, source_tree, dest_tree, role=FamilyRole.CHILD
        )

        assert outcome.result == FamilyMatchResult.NO_CANDIDATES
        assert outcome.log.role == "Child"

    def test_tie_picks_lowest_family_id(self, source_tree, dest_tree):
        candidates = [
            FamilyRecord("DF7", husband_id="D1", wife_id="D2"),
            FamilyRecord("DF3", husband_id="D1", wife_id="D2"),
        ]

        outcome = FamilyMatcher().find_matching_family(
            source_tree.family("SF1"), candidates, {"S1": "D1"}, source_tree, dest_tree
        )

        assert outcome.family.id == "DF3"
        assert [c.family_id for c in outcome.log.candidates] == ["DF3", "DF7"]

    def test_floor_is_exclusive(self, source_tree, dest_tree):
        outcome = FamilyMatcher().find_matching_family(
            source_tree.family("SF1"), [dest_tree.family("DF1")], {"S1": "D1"}, source_tree, dest_tree, floor=60
        )

        assert outcome.result == FamilyMatchResult.NO_MATCH


class TestGreedySelect:
    def test_takes_global_best_first(self):
        """Row 0 alone would take column 0; the global best pair goes first instead."""
        steps = greedy_select([[88, 95], [90, 10]], threshold=50)

        assert steps == [(0, 1, 95, True), (1, 0, 90, True)]

    def test_stops_below_threshold(self):
        steps = greedy_select([[88, 95], [90, 10]], threshold=92)

        assert steps == [(0, 1, 95, True), (1, 0, 90, False)]

    def test_ties_by_lower_indexes(self):
        steps = greedy_select([[70, 70], [70, 70]], threshold=50)

        assert steps == [(0, 0, 70, True), (1, 1, 70, True)]

    def test_empty_matrix(self):
        assert greedy_select([], threshold=50) == []


class TestChildScore:
    def test_gender_conflict_scores_zero(self):
        son = make_person("A", "Alex", "Smith", Gender.MALE, DateInfo(1975))
        daughter = make_person("B", "Alex", "Smith", Gender.FEMALE, DateInfo(1975))

        assert score_child(son, daughter, 90, 0, 0) == 0

    def test_bonuses(self):
        a = make_person("A", "Anna", "Smith", Gender.FEMALE, DateInfo(1978))
        b = make_person("B", "Anna", "Smith", Gender.FEMALE, DateInfo(1980))

        # 15 + 0.6 * 80, same position, two years apart
        assert score_child(a, b, 80, 1, 1) == 15 + 48 + 10 + 10
        # Two positions apart, no year bonus without dates
        c = make_person("C", "Anna", "Smith", Gender.FEMALE)
        assert score_child(a, c, 80, 0, 2) == 15 + 48 + 5

    def test_capped_at_100(self):
        a = make_person("A", "Anna", "Smith", Gender.FEMALE, DateInfo(1978))

        assert score_child(a, a, 100, 0, 0) == 100


class TestFamilyMemberMatcher:
    def context(self, source_tree, dest_tree, mappings, used) -> MatchContext:
        return MatchContext(
            source_family=source_tree.family("SF1"),
            dest_family=dest_tree.family("DF1"),
            role=FamilyRole.SPOUSE,
            from_source_id="S1",
            from_dest_id="D1",
            mappings=mappings,
            used_destinations=used,
            source_tree=source_tree,
            dest_tree=dest_tree,
            level=1,
        )

    @pytest.fixture
    def members(self, matcher) -> FamilyMemberMatcher:
        return FamilyMemberMatcher(matcher, ThresholdCalculator(WaveCompareOptions()))

    def test_spouse_and_children(self, members, source_tree, dest_tree):
        outcome = members.match_members(self.context(source_tree, dest_tree, {"S1": "D1"}, {"D1"}))

        found = [(m.source_id, m.destination_id, m.found_via) for m in outcome.mappings]
        assert found == [
            ("S2", "D2", RelationKind.SPOUSE),
            ("S4", "D4", RelationKind.CHILD),
            ("S3", "D3", RelationKind.CHILD),
        ]
        assert all(m.level == 1 for m in outcome.mappings)
        assert outcome.greedy_log.threshold == 50
        assert len(outcome.greedy_log.accepted) == 2
        assert outcome.greedy_log.source_ids == ["S3", "S4", "S7"]

    def test_used_destination_excluded(self, members, source_tree, dest_tree):
        outcome = members.match_members(
            self.context(source_tree, dest_tree, {"S1": "D1", "S2": "D2"}, {"D1", "D2", "D3"})
        )

        found = {m.source_id: m.destination_id for m in outcome.mappings}
        assert found == {"S4": "D4"}
        assert outcome.greedy_log.destination_ids == ["D4"]
