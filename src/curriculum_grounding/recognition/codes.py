"""Standard-code recognition and normalization.

Curriculum learning objectives are identified by a subject letter, a grade,
a domain letter and a sequence number. The same code shows up in two surface
forms across curriculum editions:

- hyphenated: `S-08-A-05`, `B-11-B-27` (dots and en/em dashes also occur)
- compact: `S8A5`, `B11B27`

Both normalize to one canonical, hyphen-free, upper-case form with a
zero-padded grade and number, e.g. `S08A05`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_ROMAN_GRADES = {
    "IV": 4,
    "V": 5,
    "VI": 6,
    "VII": 7,
    "VIII": 8,
    "IX": 9,
    "X": 10,
    "XI": 11,
    "XII": 12,
}

SUBJECT_NAMES = {
    "B": "Biology",
    "C": "Chemistry",
    "E": "English",
    "I": "Islamiat",
    "M": "Mathematics",
    "P": "Physics",
    "S": "Science",
    "U": "Urdu",
}

_SEP = r"[-–—.]?"
_SUBJECT = "[" + "".join(sorted(SUBJECT_NAMES)) + "]"
_GRADE = r"\d{1,2}|VIII|VII|VI|IV|V|XII|XI|IX|X"
_CODE_BODY = (
    rf"(?P<subject>{_SUBJECT}){_SEP}(?P<grade>{_GRADE}){_SEP}"
    rf"(?P<domain>[A-Z]){_SEP}(?P<number>\d{{1,3}})"
)
_CODE_IN_TEXT = re.compile(
    rf"(?<![A-Za-z0-9]){_CODE_BODY}(?![A-Za-z0-9])", flags=re.IGNORECASE
)
_CODE_EXACT = re.compile(_CODE_BODY, flags=re.IGNORECASE)
_PREFIX = re.compile(r"^\s*SL[O0]\s*[:\-]?\s*", flags=re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ParsedCode:
    """Structured view of a canonical standard code."""

    subject: str
    grade: int
    domain: str
    number: int

    @property
    def code(self) -> str:
        return f"{self.subject}{self.grade:02d}{self.domain}{self.number:02d}"

    @property
    def subject_name(self) -> str:
        return SUBJECT_NAMES.get(self.subject, self.subject)


def extract_code(text: str) -> str | None:
    """Return the first standard code in `text` by position, or None.

    When a query names several distinct codes only the first is used; the
    caller never receives an arbitrary pick.
    """

    codes = extract_codes(text)
    return codes[0] if codes else None


def extract_codes(text: str) -> list[str]:
    """Return all distinct canonical codes in `text`, in order of appearance."""

    if not text:
        return []
    found: list[str] = []
    for match in _CODE_IN_TEXT.finditer(text):
        parsed = _from_match(match)
        if parsed is not None and parsed.code not in found:
            found.append(parsed.code)
    return found


def parse_code(raw: str) -> ParsedCode | None:
    """Parse a single code (optionally `SLO:`-prefixed or bracketed)."""

    if not raw:
        return None
    cleaned = _PREFIX.sub("", raw.strip().strip("[]()").strip())
    match = _CODE_EXACT.fullmatch(cleaned.strip())
    if match is None:
        return None
    return _from_match(match)


def normalize_code(raw: str) -> str | None:
    parsed = parse_code(raw)
    return parsed.code if parsed else None


def code_variants(code: str) -> list[str]:
    """Surface forms under which a canonical code may be printed."""

    parsed = parse_code(code)
    if parsed is None:
        return [code]
    s, d = parsed.subject, parsed.domain
    g, n = parsed.grade, parsed.number
    candidates = [
        parsed.code,
        f"{s}-{g:02d}-{d}-{n:02d}",
        f"{s}{g}{d}{n}",
        f"{s}-{g}-{d}-{n}",
    ]
    variants: list[str] = []
    for candidate in candidates:
        if candidate not in variants:
            variants.append(candidate)
    return variants


def _from_match(match: re.Match[str]) -> ParsedCode | None:
    raw_grade = match.group("grade").upper()
    grade = _ROMAN_GRADES.get(raw_grade) if not raw_grade.isdigit() else int(raw_grade)
    if grade is None or not 1 <= grade <= 12:
        return None
    return ParsedCode(
        subject=match.group("subject").upper(),
        grade=grade,
        domain=match.group("domain").upper(),
        number=int(match.group("number")),
    )
