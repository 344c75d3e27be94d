"""Detailed decision log of a wave compare run and its text rendering."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from graph import TreeGraph
from models import FamilyRecord, LevelStatistics, UnmatchedPerson


@dataclass(frozen=True)
class ScoreComponent:
    component: str
    points: float
    description: str = ""


@dataclass
class CandidateFamilyLog:
    family_id: str
    description: str
    score: float = 0
    components: list[ScoreComponent] = field(default_factory=list)
    conflict: str | None = None
    selected: bool = False


@dataclass
class FamilyMatchAttemptLog:
    source_family_id: str
    role: str
    source_description: str
    candidates: list[CandidateFamilyLog] = field(default_factory=list)
    result: str = ""
    selected_family_id: str | None = None
    score: float = 0


@dataclass(frozen=True)
class GreedyMatchStep:
    source_id: str
    destination_id: str
    score: int
    accepted: bool
    reason: str = ""


@dataclass
class GreedyMatchLog:
    family_id: str | None
    threshold: int
    source_ids: list[str] = field(default_factory=list)
    destination_ids: list[str] = field(default_factory=list)
    matrix: list[list[int]] = field(default_factory=list)
    steps: list[GreedyMatchStep] = field(default_factory=list)

    @property
    def accepted(self) -> list[GreedyMatchStep]:
        return [s for s in self.steps if s.accepted]


@dataclass
class PersonProcessingLog:
    person_id: str
    destination_id: str | None
    level: int
    summary: str
    family_attempts: list[FamilyMatchAttemptLog] = field(default_factory=list)
    greedy_logs: list[GreedyMatchLog] = field(default_factory=list)
    new_mappings: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


@dataclass
class WaveLevelLog:
    level: int
    persons: list[PersonProcessingLog] = field(default_factory=list)
    new_mappings: int = 0
    duration: timedelta = timedelta(0)


@dataclass
class WaveCompareLog:
    anchor_source_id: str
    anchor_dest_id: str
    started_at: datetime
    finished_at: datetime | None = None
    levels: list[WaveLevelLog] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    cancelled: bool = False

    def level(self, level: int) -> WaveLevelLog:
        for entry in self.levels:
            if entry.level == level:
                return entry
        entry = WaveLevelLog(level=level)
        self.levels.append(entry)
        return entry


def describe_family(family: FamilyRecord, tree: TreeGraph) -> str:
    """One-line description, e.g. 'John Smith (*1950) + Mary Brown (*1952), 2 children'."""

    def name(person_id: str | None) -> str:
        if person_id is None:
            return "?"
        person = tree.person(person_id)
        if person is None:
            return f"<missing {person_id}>"
        year = f" (*{person.birth_year})" if person.birth_year is not None else ""
        return f"{person.full_name}{year}"

    count = len(family.child_ids)
    noun = "child" if count == 1 else "children"
    return f"{name(family.husband_id)} + {name(family.wife_id)}, {count} {noun}"


# ============================================================================
# Formatting
# ============================================================================


def format_level_summary(stats: list[LevelStatistics]) -> str:
    lines = ["Level  Processed  New  Families  Duration"]
    for s in stats:
        lines.append(
            f"{s.level:>5}  {s.persons_processed:>9}  {s.new_mappings:>3}  "
            f"{s.families_examined:>8}  {s.duration.total_seconds():.3f}s"
        )
    return "\n".join(lines)


def format_unmatched(unmatched: list[UnmatchedPerson], limit: int | None = None) -> str:
    shown = unmatched if limit is None else unmatched[:limit]
    lines = []
    for u in shown:
        nearest = ""
        if u.nearest_matched_person_id is not None:
            nearest = f" near {u.nearest_matched_person_id} (level {u.nearest_matched_level})"
        lines.append(f"  - {u.summary} [{u.reason.value}]{nearest}")
    if limit is not None and len(unmatched) > limit:
        lines.append(f"  ... and {len(unmatched) - limit} more")
    return "\n".join(lines)


def _format_attempt(attempt: FamilyMatchAttemptLog) -> list[str]:
    lines = [f"    Family {attempt.source_family_id} as {attempt.role}: {attempt.source_description}"]
    for c in attempt.candidates:
        marker = "*" if c.selected else " "
        conflict = f" CONFLICT: {c.conflict}" if c.conflict else ""
        lines.append(f"     {marker} {c.family_id} score {c.score:.0f}: {c.description}{conflict}")
        for comp in c.components:
            lines.append(f"         {comp.points:+.0f} {comp.component} {comp.description}")
    selected = f" -> {attempt.selected_family_id}" if attempt.selected_family_id else ""
    lines.append(f"      Result: {attempt.result}{selected}")
    return lines


def _format_greedy(log: GreedyMatchLog) -> list[str]:
    lines = [f"    Members of {log.family_id} (threshold {log.threshold})"]
    for step in log.steps:
        verdict = "accepted" if step.accepted else f"rejected: {step.reason}"
        lines.append(f"      {step.source_id} -> {step.destination_id} ({step.score}) {verdict}")
    return lines


def format_log(log: WaveCompareLog) -> str:
    """Render the whole log as indented text."""
    lines = [
        f"Wave compare from {log.anchor_source_id} <-> {log.anchor_dest_id}",
        f"Started {log.started_at.isoformat()}",
    ]
    for note in log.notes:
        lines.append(f"  note: {note}")
    for level in sorted(log.levels, key=lambda entry: entry.level):
        lines.append("")
        lines.append(
            f"=== Level {level.level}: {len(level.persons)} persons, "
            f"{level.new_mappings} new mappings ==="
        )
        for person in level.persons:
            target = person.destination_id or "-"
            lines.append(f"  {person.summary} -> {target}")
            for note in person.notes:
                lines.append(f"    {note}")
            for attempt in person.family_attempts:
                lines.extend(_format_attempt(attempt))
            for greedy in person.greedy_logs:
                lines.extend(_format_greedy(greedy))
            if person.new_mappings:
                lines.append(f"    New: {', '.join(person.new_mappings)}")
    if log.finished_at is not None:
        lines.append("")
        lines.append(f"Finished {log.finished_at.isoformat()}" + (" (cancelled)" if log.cancelled else ""))
    return "\n".join(lines)
