"""Tests for mapping validation and post-propagation conflict resolution."""

from conflicts import MappingConflictResolver
from models import IssueType, PersonMapping, RelationKind, Severity


def mapping(source_id, dest_id, score=90, via=RelationKind.CHILD, level=1):
    return PersonMapping(source_id, dest_id, score, level, via)


ANCHOR = mapping("S1", "D1", 100, RelationKind.ANCHOR, 0)


class TestCheckMapping:
    def test_consistent_spouse_is_clean(self, validator, source_tree, dest_tree):
        check = validator.check_mapping(mapping("S2", "D2", 95, RelationKind.SPOUSE), {"S1": "D1"}, source_tree, dest_tree)

        assert check.is_valid
        assert check.issues == ()

    def test_gender_mismatch_blocks(self, validator, source_tree, dest_tree):
        check = validator.check_mapping(mapping("S2", "D1"), {}, source_tree, dest_tree)

        assert not check.is_valid
        assert check.issues[0].type == IssueType.GENDER_MISMATCH
        assert check.issues[0].severity == Severity.HIGH

    def test_destination_already_used(self, validator, source_tree, dest_tree):
        check = validator.check_mapping(mapping("S7", "D1"), {"S1": "D1"}, source_tree, dest_tree)

        assert not check.is_valid
        assert IssueType.DUPLICATE_MAPPING in {i.type for i in check.issues}

    def test_destination_owner_from_reverse_index(self, validator, source_tree, dest_tree):
        check = validator.check_mapping(
            mapping("S2", "D2", 95, RelationKind.SPOUSE), {}, source_tree, dest_tree, used_by={"D2": "S9"}
        )

        assert not check.is_valid
        duplicate = next(i for i in check.issues if i.type == IssueType.DUPLICATE_MAPPING)
        assert "S9" in duplicate.message

    def test_same_source_remapped_is_not_a_duplicate(self, validator, source_tree, dest_tree):
        check = validator.check_mapping(
            mapping("S2", "D2", 95, RelationKind.SPOUSE), {"S1": "D1"}, source_tree, dest_tree, used_by={"D2": "S2"}
        )

        assert check.is_valid

    def test_unknown_person(self, validator, source_tree, dest_tree):
        check = validator.check_mapping(mapping("S99", "D1"), {}, source_tree, dest_tree)

        assert not check.is_valid
        assert [i.type for i in check.issues] == [IssueType.INVALID_SOURCE_ID]

    def test_family_inconsistency_is_a_warning(self, validator, source_tree, dest_tree):
        """Father mapped elsewhere: flagged, but the mapping may still be made."""
        check = validator.check_mapping(mapping("S3", "D3"), {"S1": "D5"}, source_tree, dest_tree)

        assert check.is_valid
        assert [(i.severity, i.type) for i in check.issues] == [(Severity.MEDIUM, IssueType.FAMILY_INCONSISTENCY)]

    def test_low_score_is_a_warning(self, validator, source_tree, dest_tree):
        check = validator.check_mapping(mapping("S4", "D4", score=30), {}, source_tree, dest_tree)

        assert check.is_valid
        assert check.issues[0].type == IssueType.LOW_MATCH_SCORE


class TestValidate:
    def test_clean_set(self, validator, source_tree, dest_tree):
        mappings = [ANCHOR, mapping("S2", "D2", via=RelationKind.SPOUSE), mapping("S3", "D3"), mapping("S4", "D4")]

        assert validator.validate(mappings, source_tree, dest_tree) == []

    def test_generational_inconsistency(self, validator, source_tree, dest_tree):
        """A grandparent mapped onto a grandchild of the anchor's counterpart."""
        mappings = [ANCHOR, mapping("S5", "D3", via=RelationKind.PARENT)]

        issues = validator.validate(mappings, source_tree, dest_tree)

        generational = [i for i in issues if i.type == IssueType.GENERATIONAL_INCONSISTENCY]
        assert generational
        assert all(i.severity == Severity.HIGH for i in generational)
        assert issues[0].severity == Severity.HIGH

    def test_duplicates(self, validator, source_tree, dest_tree):
        mappings = [ANCHOR, mapping("S7", "D1")]

        issues = validator.validate(mappings, source_tree, dest_tree)

        duplicates = [i for i in issues if i.type == IssueType.DUPLICATE_MAPPING]
        assert {i.source_id for i in duplicates} == {"S1", "S7"}

    def test_low_score_severity_by_margin(self, validator, source_tree, dest_tree):
        mappings = [mapping("S3", "D3", score=35), mapping("S4", "D4", score=20)]

        issues = validator.validate(mappings, source_tree, dest_tree)

        severities = {i.source_id: i.severity for i in issues if i.type == IssueType.LOW_MATCH_SCORE}
        assert severities == {"S3": Severity.LOW, "S4": Severity.MEDIUM}

    def test_pure_and_repeatable(self, validator, source_tree, dest_tree):
        mappings = [ANCHOR, mapping("S5", "D3", via=RelationKind.PARENT), mapping("S7", "D1")]
        before = list(mappings)

        first = validator.validate(mappings, source_tree, dest_tree)
        second = validator.validate(mappings, source_tree, dest_tree)

        assert first == second
        assert mappings == before


class TestConflictResolver:
    def test_swapped_children_reassigned(self, matcher, source_tree, dest_tree):
        mappings = [ANCHOR, mapping("S3", "D4", score=60), mapping("S4", "D3", score=60)]

        resolution = MappingConflictResolver(matcher).resolve(mappings, source_tree, dest_tree)

        assert {m.source_id: m.destination_id for m in resolution.mappings} == {"S1": "D1", "S3": "D3", "S4": "D4"}
        assert len(resolution.changed) == 2
        assert resolution.dropped == []

    def test_anchor_locked(self, matcher, source_tree, dest_tree):
        resolution = MappingConflictResolver(matcher).resolve([ANCHOR], source_tree, dest_tree)

        assert resolution.mappings == [ANCHOR]
        assert resolution.changed == []

    def test_unknown_source_dropped(self, matcher, source_tree, dest_tree):
        stray = mapping("S99", "D9")

        resolution = MappingConflictResolver(matcher).resolve([ANCHOR, stray], source_tree, dest_tree)

        assert resolution.dropped == [stray]
        assert resolution.mappings == [ANCHOR]
