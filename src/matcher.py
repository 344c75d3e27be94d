"""Fuzzy person comparison."""

from dataclasses import dataclass
from typing import Iterable, Mapping

from loguru import logger
from rapidfuzz.distance import JaroWinkler

from models import DateInfo, Gender, MatchCandidate, MatchReason, PersonRecord
from names import NameVariants, normalize_for_comparison, normalize_surname


@dataclass(frozen=True)
class MatchingOptions:
    first_name_weight: int = 30
    last_name_weight: int = 25
    birth_date_weight: int = 20
    birth_place_weight: int = 15
    death_date_weight: int = 5
    gender_weight: int = 5
    family_relations_weight: int = 0
    max_birth_year_difference: int = 10
    match_threshold: int = 70
    auto_match_threshold: int = 90

    @property
    def total_weight(self) -> int:
        return (
            self.first_name_weight
            + self.last_name_weight
            + self.birth_date_weight
            + self.birth_place_weight
            + self.death_date_weight
            + self.gender_weight
            + self.family_relations_weight
        )


def gender_conflict(a: PersonRecord, b: PersonRecord) -> bool:
    """True only when both genders are known and differ."""
    return a.gender != Gender.UNKNOWN and b.gender != Gender.UNKNOWN and a.gender != b.gender


def year_difference(a: DateInfo | None, b: DateInfo | None) -> int | None:
    if a is None or b is None or a.year is None or b.year is None:
        return None
    return abs(a.year - b.year)


def jaro_winkler(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return JaroWinkler.similarity(a, b)


def date_score(a: DateInfo | None, b: DateInfo | None) -> float:
    diff = year_difference(a, b)
    if diff is None:
        return 0.0
    if diff == 0:
        precision = min(a.precision, b.precision)
        if precision >= 2:
            if a.month != b.month:
                return 0.85
            if precision == 3:
                return 1.0 if a.day == b.day else 0.95
            return 0.95
        return 0.90
    if diff <= 1:
        return 0.8
    if diff <= 2:
        return 0.6
    if diff <= 5:
        return 0.4
    if diff <= 10:
        return 0.2
    return 0.0


def _normalize_place(place: str) -> str:
    return place.lower().replace(".", "").replace("-", " ").strip()


def _place_tokens(place: str) -> set[str]:
    return {t for t in place.replace(",", " ").split() if len(t) > 2}


def place_score(a: str | None, b: str | None) -> float:
    if not a or not b:
        return 0.0
    pa = _normalize_place(a)
    pb = _normalize_place(b)
    if not pa or not pb:
        return 0.0
    if pa == pb:
        return 1.0
    if pa in pb or pb in pa:
        return 0.8
    ta = _place_tokens(pa)
    tb = _place_tokens(pb)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


class FuzzyMatcher:
    """Weighted similarity between two person records.

    Each field yields a sub-score in [0, 1] that is multiplied by its weight;
    the weighted sum is scaled so that the weights add up to 100. Missing data
    contributes nothing, so the score never drops when a matching field is
    added to either side.
    """

    def __init__(self, variants: NameVariants | None = None, options: MatchingOptions | None = None):
        self.variants = variants or NameVariants()
        self.options = options or MatchingOptions()
        self._source_persons: Mapping[str, PersonRecord] | None = None
        self._dest_persons: Mapping[str, PersonRecord] | None = None

        total = self.options.total_weight
        if total <= 0:
            raise ValueError("Matching weights must add up to a positive number")
        if total != 100:
            logger.warning(f"Matching weights add up to {total}, scores are rescaled to 100")
        self._factor = 100.0 / total

    def bind_persons(
        self, source_persons: Mapping[str, PersonRecord], dest_persons: Mapping[str, PersonRecord]
    ) -> None:
        """Remember both person maps so compare() can score family relations."""
        self._source_persons = source_persons
        self._dest_persons = dest_persons

    # ------------------------------------------------------------------
    # Names
    # ------------------------------------------------------------------

    def _names_of(self, person: PersonRecord) -> list[str]:
        names = [person.first_name, person.nickname, person.middle_name, *person.name_variants]
        return [n for n in names if n]

    def first_name_score(self, source: PersonRecord, target: PersonRecord) -> float:
        a = normalize_for_comparison(source.first_name, self.variants.table)
        b = normalize_for_comparison(target.first_name, self.variants.table)
        if not a or not b:
            return 0.0
        if a == b:
            return 1.0
        if self.variants.are_equivalent(source.first_name, target.first_name):
            return 0.95

        # Index 0 is the first name on both sides, already compared above
        for i, x in enumerate(self._names_of(source)):
            for j, y in enumerate(self._names_of(target)):
                if i == 0 and j == 0:
                    continue
                nx_ = normalize_for_comparison(x, self.variants.table)
                ny = normalize_for_comparison(y, self.variants.table)
                if nx_ and (nx_ == ny or self.variants.are_equivalent(x, y)):
                    return 0.90

        words_a = a.split()
        words_b = b.split()
        if words_a[0] == words_b[0]:
            if len(words_a) == 1 and len(words_b) == 1:
                return 1.0
            if abs(len(words_a) - len(words_b)) == 1:
                return 0.90
            return 0.85

        score = jaro_winkler(a, b)
        if (a in b or b in a) and score > 0.7:
            score = max(score, 0.85)
        return score

    def _surname_key(self, person: PersonRecord) -> str | None:
        return person.normalized_last_name or normalize_surname(person.last_name, person.gender)

    def last_name_score(self, source: PersonRecord, target: PersonRecord) -> float:
        a = self._surname_key(source)
        b = self._surname_key(target)
        if not a or not b:
            return 0.0
        if a == b:
            return 1.0
        maiden_a = normalize_surname(source.maiden_name, source.gender)
        maiden_b = normalize_surname(target.maiden_name, target.gender)
        if (maiden_a and maiden_a == b) or (maiden_b and maiden_b == a):
            return 0.95
        if self.variants.are_equivalent_surnames(source.last_name, target.last_name):
            return 0.90
        return jaro_winkler(a, b)

    def maiden_name_score(self, source: PersonRecord, target: PersonRecord) -> float:
        a = normalize_surname(source.maiden_name, source.gender)
        b = normalize_surname(target.maiden_name, target.gender)
        if not a or not b:
            return 0.0
        if a == b:
            return 1.0
        if self.variants.are_equivalent_surnames(source.maiden_name, target.maiden_name):
            return 0.95
        return jaro_winkler(a, b)

    # ------------------------------------------------------------------
    # Family relations
    # ------------------------------------------------------------------

    @staticmethod
    def _relatives(person: PersonRecord) -> dict[str, list[str]]:
        return {
            "parents": [p for p in (person.father_id, person.mother_id) if p],
            "spouses": list(person.spouse_ids),
            "children": list(person.children_ids),
            "siblings": list(person.sibling_ids),
        }

    def family_relations_score(
        self,
        source: PersonRecord,
        target: PersonRecord,
        source_persons: Mapping[str, PersonRecord],
        dest_persons: Mapping[str, PersonRecord],
    ) -> float:
        """Share of the source's relatives that have a same-kind namesake among the target's."""
        source_relatives = self._relatives(source)
        target_relatives = self._relatives(target)
        total = 0
        matched = 0
        for kind, ids in source_relatives.items():
            candidates = [dest_persons[t] for t in target_relatives[kind] if t in dest_persons]
            for rel_id in ids:
                relative = source_persons.get(rel_id)
                if relative is None:
                    continue
                total += 1
                if any(self.first_name_score(relative, c) >= 0.85 for c in candidates):
                    matched += 1
        if total == 0:
            return 0.0
        return matched / total

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def compare(
        self,
        source: PersonRecord,
        target: PersonRecord,
        source_persons: Mapping[str, PersonRecord] | None = None,
        dest_persons: Mapping[str, PersonRecord] | None = None,
    ) -> MatchCandidate:
        """
        Score how likely two records describe the same person.

        Args:
            source: Person from the source tree
            target: Person from the destination tree
            source_persons: Optional source person map for the family-relations score
            dest_persons: Optional destination person map for the family-relations score

        Returns:
            A MatchCandidate with the 0-100 score and one reason per scored field
        """
        opts = self.options
        reasons: list[MatchReason] = []
        points = 0.0

        first_weight = float(opts.first_name_weight)
        last_weight = float(opts.last_name_weight)
        if not source.last_name or not target.last_name:
            first_weight += last_weight / 2
            last_weight = last_weight / 2

        def add(field_name: str, sub_score: float, weight: float, details: str = ""):
            nonlocal points
            if sub_score <= 0 or weight <= 0:
                return
            value = sub_score * weight * self._factor
            points += value
            reasons.append(MatchReason(field_name, round(value, 2), details))

        add("FirstName", self.first_name_score(source, target), first_weight,
            f"{source.first_name} ~ {target.first_name}")
        add("LastName", self.last_name_score(source, target), last_weight,
            f"{source.last_name} ~ {target.last_name}")
        if source.maiden_name and target.maiden_name:
            add("MaidenName", self.maiden_name_score(source, target), opts.last_name_weight * 1.3,
                f"{source.maiden_name} ~ {target.maiden_name}")
        add("BirthDate", date_score(source.birth_date, target.birth_date), opts.birth_date_weight,
            f"{source.birth_date} ~ {target.birth_date}")
        add("BirthPlace", place_score(source.birth_place, target.birth_place), opts.birth_place_weight,
            f"{source.birth_place} ~ {target.birth_place}")
        add("DeathDate", date_score(source.death_date, target.death_date), opts.death_date_weight,
            f"{source.death_date} ~ {target.death_date}")
        if source.gender != Gender.UNKNOWN and source.gender == target.gender:
            add("Gender", 1.0, opts.gender_weight, source.gender.value)

        source_persons = source_persons if source_persons is not None else self._source_persons
        dest_persons = dest_persons if dest_persons is not None else self._dest_persons
        if opts.family_relations_weight > 0 and source_persons is not None and dest_persons is not None:
            add("FamilyRelations",
                self.family_relations_score(source, target, source_persons, dest_persons),
                opts.family_relations_weight)

        score = round(min(100.0, max(0.0, points)), 2)
        return MatchCandidate(source=source, target=target, score=score, reasons=tuple(reasons))

    def find_matches(
        self, source: PersonRecord, candidates: Iterable[PersonRecord], min_score: float | None = None
    ) -> list[MatchCandidate]:
        """Score all plausible candidates, best first, ties by candidate id."""
        if min_score is None:
            min_score = self.options.match_threshold
        results = []
        for candidate in candidates:
            if gender_conflict(source, candidate):
                continue
            diff = year_difference(source.birth_date, candidate.birth_date)
            if diff is not None and diff > self.options.max_birth_year_difference:
                continue
            match = self.compare(source, candidate)
            if match.score >= min_score:
                results.append(match)
        results.sort(key=lambda m: (-m.score, m.target.id))
        return results
