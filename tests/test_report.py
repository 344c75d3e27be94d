"""Tests for the high-confidence report."""

import json

import pytest

from conftest import make_person
from models import DateInfo, DateModifier, Gender, RelationKind
from report import (
    AdditionalRelation,
    FieldAction,
    PersonFieldComparer,
    ReportRelation,
    build_report,
    to_report_relation,
)


@pytest.fixture
def result(engine, source_tree, dest_tree):
    return engine.compare(source_tree, dest_tree, "S1", "D1", source_file="a.ged", destination_file="b.ged")


class TestBuildReport:
    def test_updates_for_less_detailed_destination(self, result, source_tree, dest_tree):
        report = build_report(result, source_tree, dest_tree, threshold=90)

        updates = report.individuals.nodes_to_update
        assert [u.source_id for u in updates] == ["S1"]
        diffs = {d.field_name: d for d in updates[0].fields_to_update}
        assert diffs["BirthDate"].action == FieldAction.UPDATE
        assert diffs["BirthDate"].source_value == "1950-03-12"
        assert diffs["BirthDate"].destination_value == "1950"
        assert diffs["BirthPlace"].action == FieldAction.ADD
        assert updates[0].matched_by == "Anchor"

    def test_unmatched_child_proposed_under_both_parents(self, result, source_tree, dest_tree):
        report = build_report(result, source_tree, dest_tree, threshold=90)

        [peter] = report.individuals.nodes_to_add
        assert peter.source_id == "S7"
        assert peter.related_to_node_id == "D1"
        assert peter.relation_type == ReportRelation.CHILD
        assert peter.additional_relations == (AdditionalRelation("D2", ReportRelation.CHILD),)
        assert peter.source_family_id == "SF1"
        assert peter.depth_from_existing == 1
        assert peter.person_data.first_name == "Peter"
        assert peter.person_data.birth_date == "1990-07-07"

    def test_untrusted_parent_not_linked(self, result, source_tree, dest_tree):
        """Mary scored 95, so a threshold of 99 leaves only the father."""
        report = build_report(result, source_tree, dest_tree, threshold=99)

        [peter] = report.individuals.nodes_to_add
        assert peter.related_to_node_id == "D1"
        assert peter.additional_relations == ()

    def test_zero_depth_adds_nothing(self, result, source_tree, dest_tree):
        report = build_report(result, source_tree, dest_tree, new_node_depth=0)

        assert report.individuals.nodes_to_add == []

    def test_result_not_modified(self, result, source_tree, dest_tree):
        before = list(result.mappings)

        build_report(result, source_tree, dest_tree)

        assert result.mappings == before

    def test_to_dict_is_json_ready(self, result, source_tree, dest_tree):
        data = build_report(result, source_tree, dest_tree).to_dict()

        text = json.dumps(data)
        assert data["source_file"] == "a.ged"
        assert data["options"]["threshold_strategy"] == "Adaptive"
        assert data["individuals"]["nodes_to_add"][0]["relation_type"] == "Child"
        assert "BirthPlace" in text


class TestFieldComparer:
    def test_photo_and_gender(self):
        source = make_person("S", "Anna", "Smith", Gender.FEMALE, photo_urls=("a.jpg", "b.jpg"))
        dest = make_person("D", "Anna", "Smith", photo_urls=("b.jpg",))

        diffs = {d.field_name: d for d in PersonFieldComparer().compare_fields(source, dest)}

        assert diffs["PhotoUrl"].action == FieldAction.ADD_PHOTO
        assert diffs["PhotoUrl"].source_value == "a.jpg"
        assert diffs["PhotoUrl"].destination_value == "b.jpg"
        assert diffs["Gender"].action == FieldAction.ADD

    def test_destination_never_overwritten(self):
        source = make_person("S", "Robert", "Smith", Gender.MALE, DateInfo(1975))
        dest = make_person("D", "Bob", "Smith", Gender.MALE, DateInfo(1975, 4, 2))

        assert PersonFieldComparer().compare_fields(source, dest) == []

    def test_blank_source_ignored(self):
        source = make_person("S", "Anna", "Smith", nickname="  ")
        dest = make_person("D", "Anna", "Smith")

        assert PersonFieldComparer().compare_fields(source, dest) == []

    def test_modified_date_keeps_original_text(self):
        about = DateInfo(1905, original="ABT 1905", modifier=DateModifier.ABOUT)
        source = make_person("S", "Anna", "Smith", born=about)
        dest = make_person("D", "Anna", "Smith")

        [diff] = PersonFieldComparer().compare_fields(source, dest)

        assert diff.source_value == "ABT 1905"


class TestReportRelation:
    @pytest.mark.parametrize(
        "relation, expected",
        [
            (RelationKind.PARENT, ReportRelation.CHILD),
            (RelationKind.CHILD, ReportRelation.PARENT),
            (RelationKind.SPOUSE, ReportRelation.SPOUSE),
            (RelationKind.SIBLING, ReportRelation.SIBLING),
        ],
    )
    def test_inverted_view(self, relation, expected):
        assert to_report_relation(relation) == expected

    def test_anchor_has_no_report_relation(self):
        with pytest.raises(ValueError):
            to_report_relation(RelationKind.ANCHOR)
