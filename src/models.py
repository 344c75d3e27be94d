"""Data classes for the two family trees and the wave compare results."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum


# ============================================================================
# Errors
# ============================================================================


class WaveError(Exception):
    """Base class for errors raised by the wave compare tooling."""


class AnchorNotFoundError(WaveError):
    """The anchor pair does not exist in one of the trees."""

    def __init__(self, side: str, person_id: str):
        super().__init__(f"Anchor {person_id} not found in {side} tree")
        self.side = side
        self.person_id = person_id


class GraphLoadError(WaveError):
    """A tree file could not be read."""


class ConfirmedMappingsError(WaveError):
    """The confirmed mappings file is unreadable or malformed."""


# ============================================================================
# Persons and families
# ============================================================================


class Gender(Enum):
    UNKNOWN = "Unknown"
    MALE = "Male"
    FEMALE = "Female"


class DateModifier(Enum):
    EXACT = "Exact"
    ABOUT = "About"
    BEFORE = "Before"
    AFTER = "After"
    ESTIMATED = "Estimated"
    CALCULATED = "Calculated"
    BETWEEN = "Between"


MODIFIER_PREFIX = {
    DateModifier.ABOUT: "ABT ",
    DateModifier.BEFORE: "BEF ",
    DateModifier.AFTER: "AFT ",
    DateModifier.ESTIMATED: "EST ",
    DateModifier.CALCULATED: "CAL ",
    DateModifier.BETWEEN: "BET ",
}


@dataclass(frozen=True)
class DateInfo:
    """A possibly partial date. A missing date is None, never an empty DateInfo."""

    year: int | None = None
    month: int | None = None
    day: int | None = None
    original: str | None = None
    modifier: DateModifier = DateModifier.EXACT
    range_end: "DateInfo | None" = None

    def __post_init__(self):
        if self.year is None and self.month is None and self.day is None:
            raise ValueError("DateInfo needs at least one of year, month or day")

    @property
    def precision(self) -> int:
        if self.year is None:
            return 0
        if self.month is None:
            return 1
        if self.day is None:
            return 2
        return 3

    def to_iso(self) -> str | None:
        """Format as YYYY-MM-DD, YYYY-MM or YYYY."""
        if self.year is None:
            return None
        if self.month is not None and self.day is not None:
            return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"
        if self.month is not None:
            return f"{self.year:04d}-{self.month:02d}"
        return str(self.year)

    def __str__(self) -> str:
        prefix = MODIFIER_PREFIX.get(self.modifier, "")
        if self.original:
            if prefix and self.original.upper().startswith(prefix.strip()):
                return self.original
            return f"{prefix}{self.original}"
        text = str(self.year) if self.year is not None else ""
        if self.month is not None:
            text = f"{self.month:02d}/{text}"
        if self.day is not None:
            text = f"{self.day:02d}/{text}"
        return f"{prefix}{text}"


class PersonSource(Enum):
    GEDCOM = "Gedcom"
    REMOTE = "Remote"


@dataclass(frozen=True)
class PersonRecord:
    id: str
    source: PersonSource = PersonSource.GEDCOM
    first_name: str | None = None
    last_name: str | None = None
    maiden_name: str | None = None
    middle_name: str | None = None
    suffix: str | None = None
    nickname: str | None = None
    name_variants: tuple[str, ...] = ()
    birth_date: DateInfo | None = None
    death_date: DateInfo | None = None
    burial_date: DateInfo | None = None
    birth_place: str | None = None
    death_place: str | None = None
    burial_place: str | None = None
    gender: Gender = Gender.UNKNOWN
    is_living: bool = False
    occupation: str | None = None
    father_id: str | None = None
    mother_id: str | None = None
    spouse_ids: tuple[str, ...] = ()
    children_ids: tuple[str, ...] = ()
    sibling_ids: tuple[str, ...] = ()
    child_of_family_ids: tuple[str, ...] = ()
    spouse_of_family_ids: tuple[str, ...] = ()
    normalized_first_name: str | None = None
    normalized_last_name: str | None = None
    photo_urls: tuple[str, ...] = ()

    @property
    def birth_year(self) -> int | None:
        return self.birth_date.year if self.birth_date else None

    @property
    def death_year(self) -> int | None:
        return self.death_date.year if self.death_date else None

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.middle_name, self.last_name, self.suffix) if p]
        return " ".join(parts) if parts else "Unknown"

    def __str__(self) -> str:
        birth = f" (*{self.birth_year})" if self.birth_year is not None else ""
        death = f" (†{self.death_year})" if self.death_year is not None else ""
        return f"{self.full_name}{birth}{death} [{self.source.value}:{self.id}]"


@dataclass(frozen=True)
class FamilyRecord:
    id: str
    husband_id: str | None = None
    wife_id: str | None = None
    child_ids: tuple[str, ...] = ()
    marriage_date: DateInfo | None = None
    marriage_place: str | None = None

    @property
    def spouse_ids(self) -> tuple[str, ...]:
        return tuple(p for p in (self.husband_id, self.wife_id) if p)

    @property
    def member_ids(self) -> tuple[str, ...]:
        return self.spouse_ids + self.child_ids


class RelationKind(Enum):
    """How a related person relates to the person it was reached from."""

    ANCHOR = "Anchor"
    PARENT = "Parent"
    CHILD = "Child"
    SPOUSE = "Spouse"
    SIBLING = "Sibling"


class FamilyRole(Enum):
    CHILD = "Child"
    SPOUSE = "Spouse"


# ============================================================================
# Matching
# ============================================================================


@dataclass(frozen=True)
class MatchReason:
    field: str
    points: float
    details: str = ""


@dataclass(frozen=True)
class MatchCandidate:
    source: PersonRecord
    target: PersonRecord
    score: float
    reasons: tuple[MatchReason, ...] = ()

    def reason(self, field_name: str) -> MatchReason | None:
        for r in self.reasons:
            if r.field == field_name:
                return r
        return None

    def __str__(self) -> str:
        return f"{self.source.full_name} <-> {self.target.full_name} (Score: {self.score:.0f}%)"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PersonMapping:
    source_id: str
    destination_id: str
    match_score: int
    level: int
    found_via: RelationKind
    found_in_family_id: str | None = None
    found_from_person_id: str | None = None
    found_at: datetime = field(default_factory=utc_now, compare=False)

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "destination_id": self.destination_id,
            "match_score": self.match_score,
            "level": self.level,
            "found_via": self.found_via.value,
            "found_in_family_id": self.found_in_family_id,
            "found_from_person_id": self.found_from_person_id,
            "found_at": self.found_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PersonMapping":
        return cls(
            source_id=data["source_id"],
            destination_id=data["destination_id"],
            match_score=int(data["match_score"]),
            level=int(data["level"]),
            found_via=RelationKind(data["found_via"]),
            found_in_family_id=data.get("found_in_family_id"),
            found_from_person_id=data.get("found_from_person_id"),
            found_at=datetime.fromisoformat(data["found_at"]) if data.get("found_at") else utc_now(),
        )


# ============================================================================
# Validation
# ============================================================================


class Severity(Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


SEVERITY_ORDER = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}


class IssueType(Enum):
    GENDER_MISMATCH = "GenderMismatch"
    BIRTH_YEAR_MISMATCH = "BirthYearMismatch"
    DEATH_YEAR_MISMATCH = "DeathYearMismatch"
    DUPLICATE_MAPPING = "DuplicateMapping"
    FAMILY_INCONSISTENCY = "FamilyInconsistency"
    LOW_MATCH_SCORE = "LowMatchScore"
    INVALID_SOURCE_ID = "InvalidSourceId"
    INVALID_DEST_ID = "InvalidDestId"
    GENERATIONAL_INCONSISTENCY = "GenerationalInconsistency"


@dataclass(frozen=True)
class ValidationIssue:
    severity: Severity
    type: IssueType
    message: str
    source_id: str | None = None
    destination_id: str | None = None

    def sort_key(self) -> tuple:
        return (
            SEVERITY_ORDER[self.severity],
            self.type.value,
            self.source_id or "",
            self.destination_id or "",
            self.message,
        )


# ============================================================================
# Wave compare results
# ============================================================================


class ThresholdStrategy(Enum):
    FIXED = "Fixed"
    ADAPTIVE = "Adaptive"
    AGGRESSIVE = "Aggressive"
    CONSERVATIVE = "Conservative"


@dataclass(frozen=True)
class WaveCompareOptions:
    max_level: int = 3
    threshold_strategy: ThresholdStrategy = ThresholdStrategy.ADAPTIVE
    base_threshold: int = 60
    family_score_floor: int = 0
    interactive: bool = False
    low_confidence_threshold: int = 70
    min_confidence_threshold: int = 50
    max_candidates: int = 5
    resolve_conflicts: bool = False
    suspicious_score: int = 40

    def to_dict(self) -> dict:
        return {
            "max_level": self.max_level,
            "threshold_strategy": self.threshold_strategy.value,
            "base_threshold": self.base_threshold,
            "family_score_floor": self.family_score_floor,
            "interactive": self.interactive,
            "low_confidence_threshold": self.low_confidence_threshold,
            "min_confidence_threshold": self.min_confidence_threshold,
            "max_candidates": self.max_candidates,
            "resolve_conflicts": self.resolve_conflicts,
            "suspicious_score": self.suspicious_score,
        }


class UnmatchReason(Enum):
    NOT_REACHED = "NotReached"
    NO_MATCH = "NoMatch"
    REJECTED = "Rejected"
    SKIPPED = "Skipped"
    VALIDATION_FAILED = "ValidationFailed"


@dataclass(frozen=True)
class UnmatchedPerson:
    id: str
    summary: str
    reason: UnmatchReason = UnmatchReason.NOT_REACHED
    nearest_matched_level: int | None = None
    nearest_matched_person_id: str | None = None


@dataclass(frozen=True)
class LevelStatistics:
    level: int
    persons_processed: int = 0
    new_mappings: int = 0
    families_examined: int = 0
    duration: timedelta = timedelta(0)


@dataclass(frozen=True)
class CompareStatistics:
    total_source_persons: int
    total_destination_persons: int
    total_mappings: int
    unmatched_source_count: int
    unmatched_destination_count: int
    validation_issue_count: int
    duration: timedelta


@dataclass(frozen=True)
class AnchorInfo:
    source_id: str
    destination_id: str
    source_summary: str
    destination_summary: str


class EngineState(Enum):
    NOT_STARTED = "NotStarted"
    ANCHORED = "Anchored"
    PROPAGATING = "Propagating"
    TERMINATED = "Terminated"


class Decision(Enum):
    CONFIRMED = "Confirmed"
    REJECTED = "Rejected"
    SKIPPED = "Skipped"


@dataclass(frozen=True)
class DecisionRecord:
    """An interactive decision taken during a run, to be persisted by the caller."""

    source_id: str
    destination_id: str | None
    decision: Decision
    original_score: int
    decided_at: datetime = field(default_factory=utc_now, compare=False)


@dataclass
class WaveState:
    """Resumable engine state made of plain values."""

    queue: list[tuple[str, int]] = field(default_factory=list)
    processed: list[str] = field(default_factory=list)
    mappings: list[PersonMapping] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "queue": [[person_id, level] for person_id, level in self.queue],
            "processed": list(self.processed),
            "mappings": [m.to_dict() for m in self.mappings],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WaveState":
        return cls(
            queue=[(person_id, int(level)) for person_id, level in data.get("queue", [])],
            processed=list(data.get("processed", [])),
            mappings=[PersonMapping.from_dict(m) for m in data.get("mappings", [])],
        )


@dataclass
class WaveCompareResult:
    source_file: str | None
    destination_file: str | None
    compared_at: datetime
    anchors: AnchorInfo
    options: WaveCompareOptions
    mappings: list[PersonMapping]
    unmatched_source: list[UnmatchedPerson]
    unmatched_destination: list[UnmatchedPerson]
    validation_issues: list[ValidationIssue]
    level_statistics: list[LevelStatistics]
    statistics: CompareStatistics
    decisions: list[DecisionRecord] = field(default_factory=list)
    state: EngineState = EngineState.TERMINATED
    cancelled: bool = False
    pending: WaveState | None = None

    def mapping_for(self, source_id: str) -> PersonMapping | None:
        for m in self.mappings:
            if m.source_id == source_id:
                return m
        return None

    @property
    def is_partial(self) -> bool:
        return self.cancelled
