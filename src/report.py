"""High-confidence report: proposed updates to matched persons and new persons to add."""

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timedelta
from enum import Enum

from loguru import logger
import networkx as nx

from graph import TreeGraph, to_person_graph
import navigator
from models import (
    AnchorInfo,
    DateInfo,
    Gender,
    PersonMapping,
    PersonRecord,
    RelationKind,
    WaveCompareOptions,
    WaveCompareResult,
)


class FieldAction(Enum):
    ADD = "Add"
    UPDATE = "Update"
    ADD_PHOTO = "AddPhoto"
    UPDATE_PHOTO = "UpdatePhoto"
    PHOTO_MATCH = "PhotoMatch"


class ReportRelation(Enum):
    """Relation of the new person as seen from the existing node it attaches to."""

    PARENT = "Parent"
    CHILD = "Child"
    SPOUSE = "Spouse"
    SIBLING = "Sibling"


# Relation of a person to a relative -> how the relative's node sees the person
_REPORT_RELATION = {
    RelationKind.SPOUSE: ReportRelation.SPOUSE,
    RelationKind.PARENT: ReportRelation.CHILD,
    RelationKind.CHILD: ReportRelation.PARENT,
    RelationKind.SIBLING: ReportRelation.SIBLING,
}


def to_report_relation(relation: RelationKind) -> ReportRelation:
    """Convert 'the relative is my <relation>' into the relative's view of the person."""
    if relation not in _REPORT_RELATION:
        raise ValueError(f"{relation.value} has no report relation")
    return _REPORT_RELATION[relation]


@dataclass(frozen=True)
class FieldDiff:
    field_name: str
    source_value: str | None
    destination_value: str | None
    action: FieldAction


@dataclass(frozen=True)
class PersonData:
    first_name: str | None = None
    last_name: str | None = None
    maiden_name: str | None = None
    middle_name: str | None = None
    suffix: str | None = None
    nickname: str | None = None
    gender: str | None = None
    birth_date: str | None = None
    birth_place: str | None = None
    death_date: str | None = None
    death_place: str | None = None
    burial_date: str | None = None
    burial_place: str | None = None
    photo_url: str | None = None
    occupation: str | None = None
    notes: str | None = None

    @classmethod
    def from_person(cls, person: PersonRecord) -> "PersonData":
        return cls(
            first_name=person.first_name,
            last_name=person.last_name,
            maiden_name=person.maiden_name,
            middle_name=person.middle_name,
            suffix=person.suffix,
            nickname=person.nickname,
            gender=person.gender.value if person.gender != Gender.UNKNOWN else None,
            birth_date=_date_text(person.birth_date),
            birth_place=person.birth_place,
            death_date=_date_text(person.death_date),
            death_place=person.death_place,
            burial_date=_date_text(person.burial_date),
            burial_place=person.burial_place,
            photo_url=person.photo_urls[0] if person.photo_urls else None,
            occupation=person.occupation,
        )


@dataclass(frozen=True)
class AdditionalRelation:
    related_to_node_id: str
    relation_type: ReportRelation


@dataclass(frozen=True)
class NodeToUpdate:
    source_id: str
    destination_id: str
    match_score: int
    matched_by: str
    person_summary: str
    fields_to_update: tuple[FieldDiff, ...]


@dataclass(frozen=True)
class NodeToAdd:
    source_id: str
    person_data: PersonData
    related_to_node_id: str
    relation_type: ReportRelation
    depth_from_existing: int
    additional_relations: tuple[AdditionalRelation, ...] = ()
    source_family_id: str | None = None
    related_to_new_node: bool = False


@dataclass
class WaveIndividualsReport:
    nodes_to_update: list[NodeToUpdate] = field(default_factory=list)
    nodes_to_add: list[NodeToAdd] = field(default_factory=list)


@dataclass
class WaveHighConfidenceReport:
    source_file: str | None
    destination_file: str | None
    anchors: AnchorInfo
    options: WaveCompareOptions
    threshold: int
    individuals: WaveIndividualsReport

    def to_dict(self) -> dict:
        return _plain(self)


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if is_dataclass(value):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def _date_text(date: DateInfo | None) -> str | None:
    if date is None:
        return None
    return str(date) if date.original else date.to_iso()


# ============================================================================
# Field comparison
# ============================================================================

STRING_FIELDS = (
    ("FirstName", "first_name"),
    ("LastName", "last_name"),
    ("MaidenName", "maiden_name"),
    ("MiddleName", "middle_name"),
    ("Nickname", "nickname"),
    ("Suffix", "suffix"),
)
DATE_FIELDS = (
    ("BirthDate", "birth_date"),
    ("DeathDate", "death_date"),
    ("BurialDate", "burial_date"),
)
PLACE_FIELDS = (
    ("BirthPlace", "birth_place"),
    ("DeathPlace", "death_place"),
    ("BurialPlace", "burial_place"),
)


class PersonFieldComparer:
    """Find what the source knows that the destination does not."""

    @staticmethod
    def _compare_string(name: str, source_value: str | None, dest_value: str | None) -> FieldDiff | None:
        if source_value and source_value.strip() and not (dest_value and dest_value.strip()):
            return FieldDiff(name, source_value.strip(), dest_value, FieldAction.ADD)
        return None

    @staticmethod
    def _compare_date(name: str, source_value: DateInfo | None, dest_value: DateInfo | None) -> FieldDiff | None:
        if source_value is None:
            return None
        if dest_value is None:
            return FieldDiff(name, _date_text(source_value), None, FieldAction.ADD)
        if source_value.precision > dest_value.precision:
            return FieldDiff(name, _date_text(source_value), _date_text(dest_value), FieldAction.UPDATE)
        return None

    def compare_fields(self, source: PersonRecord, dest: PersonRecord) -> list[FieldDiff]:
        diffs = []
        for name, attr in STRING_FIELDS:
            diffs.append(self._compare_string(name, getattr(source, attr), getattr(dest, attr)))
        for name, attr in DATE_FIELDS:
            diffs.append(self._compare_date(name, getattr(source, attr), getattr(dest, attr)))
        for name, attr in PLACE_FIELDS:
            diffs.append(self._compare_string(name, getattr(source, attr), getattr(dest, attr)))

        if source.gender != Gender.UNKNOWN and dest.gender == Gender.UNKNOWN:
            diffs.append(FieldDiff("Gender", source.gender.value, None, FieldAction.ADD))

        new_photos = [url for url in source.photo_urls if url not in dest.photo_urls]
        if new_photos:
            existing = dest.photo_urls[0] if dest.photo_urls else None
            diffs.append(FieldDiff("PhotoUrl", new_photos[0], existing, FieldAction.ADD_PHOTO))

        return [d for d in diffs if d is not None]


# ============================================================================
# Report building
# ============================================================================


def _relations_in_priority(tree: TreeGraph, person_id: str) -> list[tuple[RelationKind, str, str]]:
    """(relation of the relative to the person, relative id, family id): spouse, father, mother, child, sibling."""
    spouses = []
    for family in navigator.families_as_spouse(tree, person_id):
        for other in family.spouse_ids:
            if other != person_id:
                spouses.append((RelationKind.SPOUSE, other, family.id))
    fathers = []
    mothers = []
    siblings = []
    for family in navigator.families_as_child(tree, person_id):
        if family.husband_id:
            fathers.append((RelationKind.PARENT, family.husband_id, family.id))
        if family.wife_id:
            mothers.append((RelationKind.PARENT, family.wife_id, family.id))
        for child_id in family.child_ids:
            if child_id != person_id:
                siblings.append((RelationKind.SIBLING, child_id, family.id))
    children = [
        (RelationKind.CHILD, child_id, family.id)
        for family in navigator.families_as_spouse(tree, person_id)
        for child_id in family.child_ids
    ]
    return spouses + fathers + mothers + children + siblings


def build_report(
    result: WaveCompareResult,
    source_tree: TreeGraph,
    dest_tree: TreeGraph,
    threshold: int = 90,
    new_node_depth: int = 1,
) -> WaveHighConfidenceReport:
    """
    Build the high-confidence report of a compare result.

    Args:
        result: Finished (or partial) compare result
        source_tree: Source tree index
        dest_tree: Destination tree index
        threshold: Minimum mapping score for a node to be trusted
        new_node_depth: How far from a trusted node unmatched persons are proposed

    Returns:
        WaveHighConfidenceReport; the inputs are not modified
    """
    comparer = PersonFieldComparer()
    trusted: dict[str, PersonMapping] = {m.source_id: m for m in result.mappings if m.match_score >= threshold}

    individuals = WaveIndividualsReport()
    for mapping in result.mappings:
        if mapping.source_id not in trusted:
            continue
        source = source_tree.person(mapping.source_id)
        dest = dest_tree.person(mapping.destination_id)
        if source is None or dest is None:
            continue
        diffs = comparer.compare_fields(source, dest)
        if diffs:
            individuals.nodes_to_update.append(
                NodeToUpdate(
                    source_id=mapping.source_id,
                    destination_id=mapping.destination_id,
                    match_score=mapping.match_score,
                    matched_by=mapping.found_via.value,
                    person_summary=str(source),
                    fields_to_update=tuple(diffs),
                )
            )

    individuals.nodes_to_add = _nodes_to_add(result, source_tree, trusted, new_node_depth)
    logger.info(
        f"Report: {len(individuals.nodes_to_update)} nodes to update, "
        f"{len(individuals.nodes_to_add)} nodes to add (threshold {threshold})"
    )
    return WaveHighConfidenceReport(
        source_file=result.source_file,
        destination_file=result.destination_file,
        anchors=result.anchors,
        options=result.options,
        threshold=threshold,
        individuals=individuals,
    )


def _nodes_to_add(
    result: WaveCompareResult,
    source_tree: TreeGraph,
    trusted: dict[str, PersonMapping],
    depth: int,
) -> list[NodeToAdd]:
    if not trusted or depth < 1:
        return []
    unmatched = {u.id for u in result.unmatched_source if u.id in source_tree}
    mapped = {m.source_id for m in result.mappings}
    G = to_person_graph(source_tree)
    undirected = G.to_undirected(as_view=True)
    seeds = [s for s in trusted if s in G]
    if not seeds:
        return []
    distances = nx.multi_source_dijkstra_path_length(undirected, seeds, cutoff=depth)
    candidates = sorted(
        (p for p in unmatched if p in distances and p not in mapped and distances[p] > 0),
        key=lambda p: (distances[p], p),
    )

    added: dict[str, NodeToAdd] = {}
    for person_id in candidates:
        node = _node_to_add(person_id, distances[person_id], source_tree, trusted, added)
        if node is not None:
            added[person_id] = node
    return list(added.values())


def _node_to_add(
    person_id: str,
    distance: int,
    source_tree: TreeGraph,
    trusted: dict[str, PersonMapping],
    added: dict[str, NodeToAdd],
) -> NodeToAdd | None:
    relations = _relations_in_priority(source_tree, person_id)

    primary = None
    for relation, relative_id, family_id in relations:
        if relative_id in trusted:
            primary = (relation, trusted[relative_id].destination_id, family_id, False)
            break
    if primary is None:
        # Hang it on a closer person that is itself being added
        for relation, relative_id, family_id in relations:
            if relative_id in added and added[relative_id].depth_from_existing < distance:
                primary = (relation, relative_id, family_id, True)
                break
    if primary is None:
        return None

    relation, related_to, family_id, to_new = primary
    additional = []
    for other_relation, relative_id, other_family_id in relations:
        if relative_id not in trusted:
            continue
        dest_id = trusted[relative_id].destination_id
        if dest_id == related_to:
            continue
        same_parents = (
            relation == RelationKind.PARENT
            and other_relation == RelationKind.PARENT
            and other_family_id == family_id
        )
        if same_parents or (relation == RelationKind.SPOUSE and other_relation == RelationKind.SPOUSE):
            additional.append(AdditionalRelation(dest_id, to_report_relation(other_relation)))

    return NodeToAdd(
        source_id=person_id,
        person_data=PersonData.from_person(source_tree.persons_by_id[person_id]),
        related_to_node_id=related_to,
        relation_type=to_report_relation(relation),
        depth_from_existing=distance,
        additional_relations=tuple(additional),
        source_family_id=family_id,
        related_to_new_node=to_new,
    )
