"""Name normalization, Slavic surname folding and name-variant lookups."""

import csv
from dataclasses import replace
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from loguru import logger

from models import Gender, PersonRecord


# ============================================================================
# Transliteration
# ============================================================================

CYRILLIC_TO_LATIN = MappingProxyType({
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d", "е": "e", "ё": "yo",
    "ж": "zh", "з": "z", "и": "i", "й": "y", "к": "k", "л": "l", "м": "m",
    "н": "n", "о": "o", "п": "p", "р": "r", "с": "s", "т": "t", "у": "u",
    "ф": "f", "х": "kh", "ц": "ts", "ч": "ch", "ш": "sh", "щ": "shch",
    "ъ": "", "ы": "y", "ь": "", "э": "e", "ю": "yu", "я": "ya",
    # Ukrainian
    "і": "i", "ї": "yi", "є": "ye", "ґ": "g",
})


def transliterate(text: str | None, table: Mapping[str, str] = CYRILLIC_TO_LATIN) -> str:
    """Transliterate Cyrillic letters to Latin, keeping the case of the first letter."""
    if not text:
        return ""
    out = []
    for ch in text:
        lower = ch.lower()
        if lower in table:
            latin = table[lower]
            if ch != lower and latin:
                latin = latin[0].upper() + latin[1:]
            out.append(latin)
        else:
            out.append(ch)
    return "".join(out)


def normalize_for_comparison(text: str | None, table: Mapping[str, str] = CYRILLIC_TO_LATIN) -> str:
    """Transliterate, lowercase and drop hyphens, apostrophes and dots."""
    if not text:
        return ""
    value = transliterate(text, table).lower()
    for ch in ("-", "'", ".", "’"):
        value = value.replace(ch, "")
    return value.strip()


def normalize_name(text: str | None, table: Mapping[str, str] = CYRILLIC_TO_LATIN) -> str | None:
    """Key used for indexing: like normalize_for_comparison with spaces removed."""
    value = normalize_for_comparison(text, table).replace(" ", "")
    return value or None


# ============================================================================
# Surnames
# ============================================================================

# feminine suffix -> masculine suffix
FEMININE_SUFFIXES = MappingProxyType({
    "ская": "ский",
    "цкая": "цкий",
    "ная": "ный",
    "ая": "ый",
    "ова": "ов",
    "ева": "ев",
    "ёва": "ёв",
    "ина": "ин",
    "ына": "ын",
    "skaya": "skiy",
    "tskaya": "tskiy",
    "aya": "iy",
    "ska": "ski",
    "cka": "cki",
    "dzka": "dzki",
    "ova": "ov",
    "eva": "ev",
    "yova": "yov",
    "ina": "in",
    "yna": "yn",
})

# Surnames that look feminine but are not.
SURNAME_EXCEPTIONS = frozenset({
    "сковорода", "skovoroda",
    "шевченко", "shevchenko",
    "кузьмина", "kuzmina",
    "калина", "kalina",
    "малина", "malina",
    "дубина", "dubina",
    "година", "godyna",
})

_SUFFIXES_LONGEST_FIRST = tuple(sorted(FEMININE_SUFFIXES, key=lambda s: (-len(s), s)))


def _match_case(template: str, value: str) -> str:
    if template.isupper():
        return value.upper()
    if template.islower():
        return value.lower()
    return value


def masculine_surname(surname: str | None) -> str | None:
    """Fold a feminine Slavic surname to its masculine form.

    Examples:
        Иванова -> Иванов, Kowalska -> Kowalski, Shevchenko -> Shevchenko
    """
    if not surname:
        return surname
    lower = surname.lower()
    if lower in SURNAME_EXCEPTIONS:
        return surname
    for suffix in _SUFFIXES_LONGEST_FIRST:
        # Keep at least two letters of stem
        if lower.endswith(suffix) and len(lower) - len(suffix) >= 2:
            stem = surname[: len(surname) - len(suffix)]
            tail = surname[len(surname) - len(suffix):]
            return stem + _match_case(tail, FEMININE_SUFFIXES[suffix])
    return surname


def normalize_surname(surname: str | None, gender: Gender = Gender.UNKNOWN) -> str | None:
    """Normalized surname key. Female and unknown-gender surnames are folded first."""
    if not surname:
        return None
    if gender != Gender.MALE:
        surname = masculine_surname(surname)
    return normalize_name(surname)


def normalize_person(person: PersonRecord) -> PersonRecord:
    """Return the person with its normalized shadow names filled in."""
    return replace(
        person,
        normalized_first_name=normalize_name(person.first_name),
        normalized_last_name=normalize_surname(person.last_name, person.gender),
    )


# ============================================================================
# Variants
# ============================================================================

GIVEN_NAME_GROUPS = (
    ("ivan", "john", "johann", "jan", "ioann", "ivanko", "vanya"),
    ("aleksandr", "alexander", "oleksandr", "sasha", "alex", "alexandr"),
    ("mikhail", "mykhailo", "michael", "misha", "michal"),
    ("nikolay", "mykola", "nicholas", "nikolai", "kolya", "mikolaj"),
    ("petr", "petro", "peter", "piotr", "pyotr"),
    ("pavel", "pavlo", "paul", "pawel"),
    ("anna", "hanna", "ganna", "ann", "anya", "anne"),
    ("mariya", "maria", "mary", "marie", "masha", "mariia"),
    ("ekaterina", "kateryna", "catherine", "katherine", "katya", "katarzyna"),
    ("elena", "olena", "helen", "helena", "lena"),
    ("yelizaveta", "elizaveta", "elizabeth", "liza", "elzbieta", "beth", "betty"),
    ("grigoriy", "hryhoriy", "gregory", "grigory"),
    ("georgiy", "heorhiy", "george", "yuriy", "yuri", "jerzy"),
    ("dmitriy", "dmytro", "dmitry", "dimitri"),
    ("andrey", "andriy", "andrew", "andrzej"),
    ("robert", "bob", "rob", "bobby", "robbie"),
    ("william", "bill", "will", "billy", "willy"),
    ("richard", "dick", "rick", "rich"),
    ("margaret", "maggie", "peggy", "meg", "margarete"),
    ("james", "jim", "jimmy", "jamie"),
    ("joseph", "joe", "josef", "yosyp", "iosif", "osip"),
)

SURNAME_GROUPS = (
    ("kovalenko", "kowalenko"),
    ("kovalskiy", "kowalski", "kovalsky"),
    ("shevchenko", "szewczenko"),
    ("novak", "nowak"),
    ("smith", "schmidt", "smyth"),
)


class NameVariants:
    """Immutable lookup of equivalent given names and surnames."""

    def __init__(
        self,
        given_groups: Iterable[Iterable[str]] = GIVEN_NAME_GROUPS,
        surname_groups: Iterable[Iterable[str]] = SURNAME_GROUPS,
        table: Mapping[str, str] = CYRILLIC_TO_LATIN,
    ):
        self.table = MappingProxyType(dict(table))
        self._given = self._index(given_groups)
        self._surnames = self._index(surname_groups)

    def _index(self, groups: Iterable[Iterable[str]]) -> Mapping[str, frozenset[int]]:
        index: dict[str, set[int]] = {}
        for group_id, group in enumerate(groups):
            for name in group:
                key = normalize_name(name, self.table)
                if key:
                    index.setdefault(key, set()).add(group_id)
        return MappingProxyType({k: frozenset(v) for k, v in index.items()})

    @classmethod
    def from_csv(cls, given_path: str | Path | None = None, surname_path: str | Path | None = None) -> "NameVariants":
        """Load variant groups from CSV files, one comma separated group per row.

        The built-in groups are kept; file groups are added on top.
        """
        given = list(GIVEN_NAME_GROUPS)
        surnames = list(SURNAME_GROUPS)
        if given_path:
            given.extend(_read_groups(given_path))
        if surname_path:
            surnames.extend(_read_groups(surname_path))
        return cls(given, surnames)

    def transliterate(self, text: str | None) -> str:
        return transliterate(text, self.table)

    def _equivalent(self, index: Mapping[str, frozenset[int]], a: str | None, b: str | None) -> bool:
        key_a = normalize_name(a, self.table)
        key_b = normalize_name(b, self.table)
        if not key_a or not key_b:
            return False
        if key_a == key_b:
            return True
        return bool(index.get(key_a, frozenset()) & index.get(key_b, frozenset()))

    def are_equivalent(self, a: str | None, b: str | None) -> bool:
        return self._equivalent(self._given, a, b)

    def are_equivalent_surnames(self, a: str | None, b: str | None) -> bool:
        if self._equivalent(self._surnames, a, b):
            return True
        folded_a = masculine_surname(a)
        folded_b = masculine_surname(b)
        if (folded_a, folded_b) != (a, b):
            return self._equivalent(self._surnames, folded_a, folded_b)
        return False

    def variants_of(self, name: str | None) -> frozenset[str]:
        key = normalize_name(name, self.table)
        if not key:
            return frozenset()
        groups = self._given.get(key, frozenset())
        return frozenset(k for k, ids in self._given.items() if ids & groups)


def _read_groups(path: str | Path) -> list[tuple[str, ...]]:
    groups = []
    with open(path, newline="", encoding="utf-8") as f:
        for row in csv.reader(f):
            names = tuple(cell.strip() for cell in row if cell.strip() and not cell.startswith("#"))
            if len(names) > 1:
                groups.append(names)
    logger.info(f"Loaded {len(groups)} name variant groups from {path}")
    return groups
