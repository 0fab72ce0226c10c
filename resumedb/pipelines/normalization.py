"""Field normalization for parsed and user-supplied resume data.

Names, majors, graduation years, company names and keywords all pass
through here before they are stored or used as lookup keys.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable

# Exact spellings for brands and suffixes that plain capitalization gets wrong
BRAND_SPELLINGS: dict[str, str] = {
    "nvidia": "NVIDIA",
    "pwc": "PwC",
    "ibm": "IBM",
    "aws": "AWS",
    "hp": "HP",
    "ge": "GE",
    "nasa": "NASA",
    "gt": "GT",
    "llc": "LLC",
    "inc": "Inc",
    "corp": "Corp",
    "github": "GitHub",
    "vmware": "VMware",
}

SMALL_WORDS = frozenset({"of", "the", "and", "a", "an", "in", "on", "at", "by", "for", "with", "to"})

MIN_YEAR = 1950
MAX_YEAR = 2030

_YEAR_PATTERN = re.compile(r"\b(19[5-9][0-9]|20[0-2][0-9]|2030)\b")
_PRESENT_PATTERN = re.compile(r"present|current", re.IGNORECASE)

# Applied in order; each one strips a single kind of degree decoration
_MAJOR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"^(Bachelor|Master|Doctor|Associate)(['’]s)?( of| in)? "
        r"(Science|Arts|Engineering|Business Administration|Fine Arts|Philosophy|Applied Science)"
        r"( degree)? (in|of)\s*",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(Bachelor['’]s|Bachelor of|Master['’]s|Master of|B\.S\.|B\.A\.|M\.S\.|M\.A\.|Ph\.D\.|"
        r"Doctor of|Associates|A\.S\.|A\.A\.) "
        r"(of|in|degree in|degree|on|with a focus in|with concentration in|with specialization in)\s*",
        re.IGNORECASE,
    ),
    re.compile(r"^(BS|BA|MS|MA|PhD) (in|of)\s*", re.IGNORECASE),
    re.compile(r"^(Bachelor|Master|Doctor|Doctorate|Doctoral|Associate)[^\w]*\s*(of|in|degree)*\s*", re.IGNORECASE),
    re.compile(r"\s*\((.*?)\)$"),
    re.compile(r"\s*-\s*(minor|concentration|specialization|focus|honors|track|emphasis)[^\n]*", re.IGNORECASE),
    re.compile(r"\s*with (minor|concentration|specialization|focus|honors|track|emphasis)[^\n]*", re.IGNORECASE),
    re.compile(r"^(degree|education):\s*", re.IGNORECASE),
)


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:].lower()


def format_name(text: str | None) -> str:
    """Capitalize the first letter of each space-separated part, lowercase the rest."""
    if not text:
        return ""
    return " ".join(_capitalize(part) for part in text.split(" "))


def title_case(text: str | None) -> str:
    """Canonical casing for company names.

    Brand spellings win, small connector words stay lowercase after the
    first token, everything else is capitalized.

    Example:
        >>> title_case("pwc cloud and digital")
        'PwC Cloud and Digital'
    """
    if not text:
        return ""

    words = []
    for index, word in enumerate(text.split(" ")):
        lower = word.lower()
        if lower in BRAND_SPELLINGS:
            words.append(BRAND_SPELLINGS[lower])
        elif index > 0 and lower in SMALL_WORDS:
            words.append(lower)
        else:
            words.append(_capitalize(word))
    return " ".join(words)


def clean_major(text: str | None) -> str:
    """Strip degree prefixes and trailing qualifiers from a field of study.

    Example:
        >>> clean_major("B.S. in Computer Engineering (Honors)")
        'Computer Engineering'
    """
    if not text:
        return ""
    major = text
    for pattern in _MAJOR_PATTERNS:
        major = pattern.sub("", major, count=1)
    return major.strip()


def extract_latest_year(text: str | None, *, now: datetime | None = None) -> str:
    """Return the latest plausible year mentioned in ``text``, or ``""``.

    "Present" and "Current" count as the current year, so a range like
    ``"2022 - Present"`` resolves to this year.
    """
    if not text:
        return ""
    current_year = (now or datetime.now(timezone.utc)).year
    text = _PRESENT_PATTERN.sub(str(current_year), text)

    years = [int(match) for match in _YEAR_PATTERN.findall(text)]
    if not years:
        return ""
    return str(max(years))


def is_valid_year(value: str | None) -> bool:
    """Four digits within the supported graduation-year range."""
    if not value or not re.fullmatch(r"\d{4}", value):
        return False
    return MIN_YEAR <= int(value) <= MAX_YEAR


def strip_extension(filename: str | None) -> str:
    """File name without its final extension."""
    if not filename:
        return ""
    return re.sub(r"\.[^.]+$", "", filename)


def split_csv(value: str | None) -> list[str]:
    """Split a comma-joined form value into trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def dedupe(items: Iterable[str]) -> list[str]:
    """Drop empty and repeated items, keeping first-seen order."""
    seen: set[str] = set()
    result = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


def sanitize_key_component(name: str, *, max_length: int = 100) -> str:
    """Lowercase ``name`` and replace anything outside ``[a-z0-9]`` with ``_``."""
    return re.sub(r"[^a-z0-9]", "_", name.lower())[:max_length]


def truncate_field(value: str, max_length: int = 255) -> str:
    """Cut overly long values to ``max_length`` characters, ending with an ellipsis."""
    if len(value) <= max_length:
        return value
    return value[: max_length - 3] + "..."
