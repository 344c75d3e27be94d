"""Shared fixtures: two small in-memory trees describing the same family."""

import pytest

from engine import WaveEngine
from graph import TreeGraph, build_index
from matcher import FuzzyMatcher
from models import DateInfo, FamilyRecord, Gender, PersonRecord
from names import NameVariants
from parsing import link_families
from validation import MappingValidator

BOSTON = "Boston, Massachusetts"
SALEM = "Salem, Massachusetts"


def make_person(
    person_id: str,
    first: str | None,
    last: str | None,
    gender: Gender = Gender.UNKNOWN,
    born: DateInfo | None = None,
    place: str | None = None,
    **extra,
) -> PersonRecord:
    return PersonRecord(
        id=person_id,
        first_name=first,
        last_name=last,
        gender=gender,
        birth_date=born,
        birth_place=place,
        **extra,
    )


def make_tree(persons: list[PersonRecord], families: list[FamilyRecord]) -> TreeGraph:
    """Link the families into the persons and index them, like the GEDCOM loader does."""
    family_map = {f.id: f for f in families}
    linked = link_families({p.id: p for p in persons}, family_map)
    return build_index(linked, family_map)


# ============================================================================
# Trees
# ============================================================================

# Source: John and Mary with three children, and John's parents.
#
#   S5 William + S6 Margaret
#            |
#   S1 John + S2 Mary
#      |        |        |
#   S3 Robert  S4 Anna  S7 Peter


def source_persons() -> list[PersonRecord]:
    return [
        make_person("S1", "John", "Smith", Gender.MALE, DateInfo(1950, 3, 12), BOSTON),
        make_person("S2", "Mary", "Brown", Gender.FEMALE, DateInfo(1952, 6, 5), BOSTON),
        make_person("S3", "Robert", "Smith", Gender.MALE, DateInfo(1975, 4, 2), BOSTON),
        make_person("S4", "Anna", "Smith", Gender.FEMALE, DateInfo(1978, 9, 30), BOSTON),
        make_person("S5", "William", "Smith", Gender.MALE, DateInfo(1920, 1, 15), SALEM),
        make_person("S6", "Margaret", "Smith", Gender.FEMALE, DateInfo(1925, 2, 20), SALEM),
        make_person("S7", "Peter", "Smith", Gender.MALE, DateInfo(1990, 7, 7), BOSTON),
    ]


def source_families() -> list[FamilyRecord]:
    return [
        FamilyRecord("SF1", husband_id="S1", wife_id="S2", child_ids=("S3", "S4", "S7")),
        FamilyRecord("SF2", husband_id="S5", wife_id="S6", child_ids=("S1",)),
    ]


def dest_persons(mary: PersonRecord | None = None) -> list[PersonRecord]:
    """The same family as recorded elsewhere: Robert is 'Bob', Peter is missing, John has less detail."""
    return [
        make_person("D1", "John", "Smith", Gender.MALE, DateInfo(1950)),
        mary or make_person("D2", "Mary", "Brown", Gender.FEMALE, DateInfo(1952, 6, 5), BOSTON),
        make_person("D3", "Bob", "Smith", Gender.MALE, DateInfo(1975, 4, 2), BOSTON),
        make_person("D4", "Anna", "Smith", Gender.FEMALE, DateInfo(1978, 9, 30), BOSTON),
        make_person("D5", "William", "Smith", Gender.MALE, DateInfo(1920, 1, 15), SALEM),
        make_person("D6", "Margaret", "Smith", Gender.FEMALE, DateInfo(1925, 2, 20), SALEM),
        make_person("D9", "Olga", "Petrova", Gender.FEMALE, DateInfo(1900)),
    ]


def dest_families() -> list[FamilyRecord]:
    return [
        FamilyRecord("DF1", husband_id="D1", wife_id="D2", child_ids=("D3", "D4")),
        FamilyRecord("DF2", husband_id="D5", wife_id="D6", child_ids=("D1",)),
    ]


@pytest.fixture
def source_tree() -> TreeGraph:
    return make_tree(source_persons(), source_families())


@pytest.fixture
def dest_tree() -> TreeGraph:
    return make_tree(dest_persons(), dest_families())


@pytest.fixture
def uncertain_dest_tree() -> TreeGraph:
    """Destination where John's wife is a weaker match: 'Maria', born 1955, no place."""
    maria = make_person("D2", "Maria", "Brown", Gender.FEMALE, DateInfo(1955))
    return make_tree(dest_persons(mary=maria), dest_families())


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def matcher() -> FuzzyMatcher:
    return FuzzyMatcher(NameVariants())


@pytest.fixture
def validator() -> MappingValidator:
    return MappingValidator()


@pytest.fixture
def engine(matcher, validator) -> WaveEngine:
    return WaveEngine(matcher, validator)


# ============================================================================
# GEDCOM files
# ============================================================================

GEDCOM = """\
0 HEAD
1 SOUR TEST
1 GEDC
2 VERS 5.5.1
1 CHAR UTF-8
0 @I1@ INDI
1 NAME John /Smith/
1 SEX M
1 BIRT
2 DATE 12 MAR 1950
2 PLAC Boston, Massachusetts
1 DEAT
2 DATE 2010
0 @I2@ INDI
1 NAME Mary /Brown/
2 _MARNM Smith
1 SEX F
0 @I3@ INDI
1 NAME Robert /Smith/
2 NICK Bob
1 SEX M
1 BIRT
2 DATE ABT 1975
0 @F1@ FAM
1 HUSB @I1@
1 WIFE @I2@
1 CHIL @I3@
1 MARR
2 DATE 1974
0 TRLR
"""


@pytest.fixture
def gedcom_file(tmp_path):
    path = tmp_path / "family.ged"
    path.write_text(GEDCOM, encoding="utf-8")
    return path
