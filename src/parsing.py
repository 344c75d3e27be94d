"""GEDCOM loading and date handling utilities."""

from dataclasses import replace
from datetime import date
from pathlib import Path
import re

from ged4py import GedcomReader
from ged4py.parser import ParserError
from loguru import logger

from graph import TreeGraph, build_index
from models import DateInfo, DateModifier, FamilyRecord, Gender, GraphLoadError, PersonRecord, PersonSource
from names import normalize_person


# Month name mappings (handle abbreviations and full names)
MONTH_MAP = {
    "JAN": 1,
    "JANUARY": 1,
    "FEB": 2,
    "FEBRUARY": 2,
    "MAR": 3,
    "MARCH": 3,
    "APR": 4,
    "APRIL": 4,
    "MAY": 5,
    "JUN": 6,
    "JUNE": 6,
    "JUL": 7,
    "JULY": 7,
    "AUG": 8,
    "AUGUST": 8,
    "SEP": 9,
    "SEPT": 9,
    "SEPTEMBER": 9,
    "OCT": 10,
    "OCTOBER": 10,
    "NOV": 11,
    "NOVEMBER": 11,
    "DEC": 12,
    "DECEMBER": 12,
}

MODIFIERS = {
    "ABT": DateModifier.ABOUT,
    "ABOUT": DateModifier.ABOUT,
    "CIRCA": DateModifier.ABOUT,
    "CA": DateModifier.ABOUT,
    "AROUND": DateModifier.ABOUT,
    "BEF": DateModifier.BEFORE,
    "BEFORE": DateModifier.BEFORE,
    "TO": DateModifier.BEFORE,
    "AFT": DateModifier.AFTER,
    "AFTER": DateModifier.AFTER,
    "FROM": DateModifier.AFTER,
    "EST": DateModifier.ESTIMATED,
    "CAL": DateModifier.CALCULATED,
}

_MODIFIER_RE = re.compile(r"^(" + "|".join(sorted(MODIFIERS, key=len, reverse=True)) + r")\b\.?:?\s*(.*)$", re.IGNORECASE)
_BETWEEN_RE = re.compile(r"^(?:BET|BETWEEN)\b\.?\s+(.+?)\s+AND\s+(.+)$", re.IGNORECASE)


def _parse_plain(s: str, modifier: DateModifier, original: str) -> DateInfo | None:
    # ISO format "1839-08-29" or "1746-00-00"
    match = re.match(r"^(\d{4})-(\d{2})-(\d{2})$", s)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return DateInfo(year, month or None, day or None, original, modifier)

    # "01-27-1920" or "01/27/1920" (MM-DD-YYYY or MM/DD/YYYY)
    match = re.match(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$", s)
    if match:
        month, day, year = (int(g) for g in match.groups())
        if 1 <= month <= 12 and 1 <= day <= 31:
            return DateInfo(year, month, day, original, modifier)

    year = month = day = None
    for token in re.findall(r"[A-Za-z]+|\d+", s):
        upper = token.upper()
        if upper in MONTH_MAP and month is None:
            month = MONTH_MAP[upper]
        elif token.isdigit() and len(token) == 4 and year is None:
            year = int(token)
        elif token.isdigit() and len(token) <= 2 and 1 <= int(token) <= 31 and day is None:
            day = int(token)

    if year is None and month is None and day is None:
        return None
    return DateInfo(year, month, day, original, modifier)


def parse_date(date_str: str | None) -> DateInfo | None:
    """
    Parse a GEDCOM date string into a DateInfo.
    Returns None if no year, month or day can be found.

    Handles formats like:
    - "25 NOV 1954"
    - "1698"
    - "ABT 1905", "ABOUT 1905", "BEF 1900", "AFT 1900", "EST 1850", "CAL 1850"
    - "BET 1900 AND 1910"
    - "JAN 1905"
    - "(01-27-1920)"
    - "(1839-08-29)"
    - "(April 17, 1850)"
    - "(1789?)"
    """
    if not date_str:
        return None

    s = date_str.strip().strip("()").rstrip("?").strip()
    if not s:
        return None

    match = _BETWEEN_RE.match(s)
    if match:
        start = _parse_plain(match.group(1).strip(), DateModifier.BETWEEN, s)
        end = parse_date(match.group(2))
        if start is None:
            return end
        return replace(start, original=s[match.start(1):], range_end=end)

    modifier = DateModifier.EXACT
    match = _MODIFIER_RE.match(s)
    if match:
        modifier = MODIFIERS[match.group(1).upper()]
        s = match.group(2).strip()

    return _parse_plain(s, modifier, s)


def extract_name_parts(indi) -> tuple[str | None, str | None, str | None]:
    """Extract given name, surname and suffix from an individual record."""
    name_rec = indi.sub_tag("NAME")
    if name_rec is None or name_rec.value is None:
        return (None, None, None)

    name_value = name_rec.value

    # ged4py returns NAME as tuple: (given, surname, suffix)
    if isinstance(name_value, tuple):
        given, surname, suffix = name_value
        return (given or None, surname or None, suffix or None)

    givn = name_rec.sub_tag("GIVN")
    surn = name_rec.sub_tag("SURN")
    given = givn.value if givn else str(name_value).split("/")[0].strip()
    surname = surn.value if surn else None
    return (given or None, surname or None, None)


def _sub_value(rec, *path: str) -> str | None:
    sub = rec.sub_tag("/".join(path))
    if sub is None or sub.value is None:
        return None
    value = str(sub.value).strip()
    return value or None


def extract_event_details(indi, tag: str) -> tuple[str | None, str | None]:
    """Extract date and place from an event tag (BIRT, DEAT, etc.)."""
    event = indi.sub_tag(tag)
    if event is None:
        return (None, None)

    date_rec = event.sub_tag("DATE")
    place_rec = event.sub_tag("PLAC")

    # Convert date value to string (ged4py may return DateValue objects)
    date_val = None
    if date_rec and date_rec.value:
        date_val = str(date_rec.value)

    place_val = None
    if place_rec and place_rec.value:
        place_val = str(place_rec.value)

    return (date_val, place_val)


def extract_sex(indi) -> Gender:
    sex = _sub_value(indi, "SEX")
    if sex == "M":
        return Gender.MALE
    if sex == "F":
        return Gender.FEMALE
    return Gender.UNKNOWN


def extract_name_variants(indi) -> tuple[str, ...]:
    """Given names of all NAME records after the first."""
    variants = []
    for name_rec in list(indi.sub_tags("NAME"))[1:]:
        value = name_rec.value
        given = value[0] if isinstance(value, tuple) else None
        if given and given not in variants:
            variants.append(given)
    return tuple(variants)


def extract_photo_urls(indi) -> tuple[str, ...]:
    urls = []
    for obje in indi.sub_tags("OBJE"):
        file_rec = obje.sub_tag("FILE")
        if file_rec is not None and file_rec.value:
            urls.append(str(file_rec.value))
    return tuple(urls)


LIVING_AGE_LIMIT = 100


def _presumed_living(indi, birth: DateInfo | None) -> bool:
    """No death event and born within the last century."""
    if indi.sub_tag("DEAT") is not None:
        return False
    if birth is None or birth.year is None:
        return False
    return birth.year > date.today().year - LIVING_AGE_LIMIT


def extract_person(indi) -> PersonRecord:
    given, surname, suffix = extract_name_parts(indi)
    gender = extract_sex(indi)
    married = _sub_value(indi, "NAME", "_MARNM")

    birth_date, birth_place = extract_event_details(indi, "BIRT")
    death_date, death_place = extract_event_details(indi, "DEAT")
    burial_date, burial_place = extract_event_details(indi, "BURI")

    maiden = None
    last_name = surname
    if married and married != surname:
        maiden, last_name = surname, married

    return PersonRecord(
        id=indi.xref_id,
        source=PersonSource.GEDCOM,
        first_name=given,
        last_name=last_name,
        maiden_name=maiden,
        suffix=suffix or _sub_value(indi, "NAME", "NSFX"),
        nickname=_sub_value(indi, "NAME", "NICK"),
        name_variants=extract_name_variants(indi),
        birth_date=parse_date(birth_date),
        death_date=parse_date(death_date),
        burial_date=parse_date(burial_date),
        birth_place=birth_place,
        death_place=death_place,
        burial_place=burial_place,
        gender=gender,
        is_living=_presumed_living(indi, parse_date(birth_date)),
        occupation=_sub_value(indi, "OCCU"),
        photo_urls=extract_photo_urls(indi),
    )


def extract_family(fam) -> FamilyRecord:
    husb = fam.sub_tag("HUSB")
    wife = fam.sub_tag("WIFE")
    child_ids = tuple(child.xref_id for child in fam.sub_tags("CHIL") if child.xref_id)
    marriage_date, marriage_place = extract_event_details(fam, "MARR")
    return FamilyRecord(
        id=fam.xref_id,
        husband_id=husb.xref_id if husb is not None else None,
        wife_id=wife.xref_id if wife is not None else None,
        child_ids=child_ids,
        marriage_date=parse_date(marriage_date),
        marriage_place=marriage_place,
    )


def link_families(
    persons: dict[str, PersonRecord], families: dict[str, FamilyRecord]
) -> dict[str, PersonRecord]:
    """Fill the derived relation ids and normalized names of every person from the families."""
    links: dict[str, dict[str, list[str]]] = {
        p: {"spouses": [], "children": [], "siblings": [], "child_of": [], "spouse_of": [], "fathers": [], "mothers": []}
        for p in persons
    }

    def add(person_id: str | None, key: str, value: str | None):
        if person_id in links and value and value != person_id and value not in links[person_id][key]:
            links[person_id][key].append(value)

    for family_id in sorted(families):
        family = families[family_id]
        for spouse in family.spouse_ids:
            add(spouse, "spouse_of", family_id)
            for other in family.spouse_ids:
                add(spouse, "spouses", other)
            for child in family.child_ids:
                add(spouse, "children", child)
        for child in family.child_ids:
            add(child, "child_of", family_id)
            add(child, "fathers", family.husband_id)
            add(child, "mothers", family.wife_id)
            for sibling in family.child_ids:
                add(child, "siblings", sibling)

    linked = {}
    for person_id, person in persons.items():
        link = links[person_id]
        linked[person_id] = normalize_person(
            replace(
                person,
                father_id=link["fathers"][0] if link["fathers"] else None,
                mother_id=link["mothers"][0] if link["mothers"] else None,
                spouse_ids=tuple(link["spouses"]),
                children_ids=tuple(link["children"]),
                sibling_ids=tuple(link["siblings"]),
                child_of_family_ids=tuple(link["child_of"]),
                spouse_of_family_ids=tuple(link["spouse_of"]),
            )
        )
    return linked


def load_gedcom(filepath: str | Path) -> tuple[dict[str, PersonRecord], dict[str, FamilyRecord]]:
    """
    Read persons and families from a GEDCOM file.

    Raises:
        GraphLoadError: when the file cannot be opened or parsed
    """
    persons: dict[str, PersonRecord] = {}
    families: dict[str, FamilyRecord] = {}
    try:
        with GedcomReader(str(filepath)) as reader:
            for rec in reader.records0("INDI"):
                if rec.xref_id is None:
                    continue
                persons[rec.xref_id] = extract_person(rec)

            for rec in reader.records0("FAM"):
                if rec.xref_id is None:
                    continue
                families[rec.xref_id] = extract_family(rec)
    except (OSError, ParserError) as e:
        raise GraphLoadError(f"Cannot read {filepath}: {e}") from e

    logger.info(f"Loaded {len(persons)} persons and {len(families)} families from {filepath}")
    return link_families(persons, families), families


def load_tree(filepath: str | Path) -> TreeGraph:
    return build_index(*load_gedcom(filepath))
