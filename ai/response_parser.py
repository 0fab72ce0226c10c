"""Tolerant parsing of model responses into a raw field dictionary.

Model output is not always valid JSON. Parsing runs in three stages:

1. Strip code fences and parse as JSON (also the first balanced ``{...}``).
2. Repair common malformations (bare keys, single quotes, missing braces).
3. Pull individual fields out of the raw text with regular expressions.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

logger = logging.getLogger(__name__)

_BARE_KEY = re.compile(r"(?<=[{,])(\s*)([A-Za-z_]\w*)(\s*):")
_SINGLE_QUOTED_VALUE = re.compile(r":\s*'([^']*)'")
_SINGLE_QUOTED_ITEM = re.compile(r"(?<=[\[{,])(\s*)'([^']*)'")
_DOUBLE_QUOTED = re.compile(r'"(?:\\.|[^"\\])*"')


def strip_code_fences(text: str) -> str:
    text = text.strip()
    text = re.sub(r"^\s*```(?:json)?\s*", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\s*```\s*$", "", text)
    return text.strip()


def extract_first_json_object(text: str) -> str | None:
    """Find the first balanced ``{...}`` object, ignoring braces inside strings."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _outside_strings(text: str, fix: Callable[[str], str]) -> str:
    """Apply ``fix`` to the parts of ``text`` between double-quoted literals."""
    parts = []
    last = 0
    for match in _DOUBLE_QUOTED.finditer(text):
        parts.append(fix(text[last : match.start()]))
        parts.append(match.group(0))
        last = match.end()
    parts.append(fix(text[last:]))
    return "".join(parts)


def _convert_single_quotes(segment: str) -> str:
    segment = _SINGLE_QUOTED_VALUE.sub(r': "\1"', segment)
    return _SINGLE_QUOTED_ITEM.sub(r'\1"\2"', segment)


def _quote_bare_keys(segment: str) -> str:
    return _BARE_KEY.sub(r'\1"\2"\3:', segment)


def repair_json(text: str) -> str:
    """Quote bare keys, convert single-quoted strings, add missing outer braces.

    String contents are left alone, so values like ``"CS, focus: AI"`` survive.
    """
    repaired = text.strip()
    if not repaired.startswith("{"):
        repaired = "{" + repaired
    if not repaired.endswith("}"):
        repaired = repaired + "}"
    repaired = _outside_strings(repaired, _convert_single_quotes)
    return _outside_strings(repaired, _quote_bare_keys)


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _regex_string(text: str, field: str) -> str:
    match = re.search(rf'"{field}"\s*:\s*"([^"]+)"', text)
    return match.group(1) if match else ""


def _regex_list(text: str, field: str) -> list[str]:
    match = re.search(rf'"{field}"\s*:\s*\[(.*?)\]', text, re.DOTALL)
    if not match or not match.group(1).strip():
        return []
    items = (item.strip().strip('"').strip() for item in match.group(1).split(","))
    return [item for item in items if item]


def extract_fields_with_regex(text: str) -> dict[str, Any]:
    """Last-resort field extraction from unparseable response text."""
    return {
        "name": _regex_string(text, "name"),
        "major": _regex_string(text, "major"),
        "graduationYear": _regex_string(text, "graduationYear"),
        "companies": _regex_list(text, "companies"),
        "keywords": _regex_list(text, "keywords"),
    }


def parse_model_response(text: str | None) -> dict[str, Any]:
    """Parse a model response into a dictionary of raw fields.

    Never raises; an empty or hopeless response yields whatever the regex
    pass can find, possibly an all-empty dictionary.
    """
    if not text:
        return extract_fields_with_regex("")

    cleaned = strip_code_fences(text)

    data = _loads_object(cleaned)
    if data is None:
        candidate = extract_first_json_object(cleaned)
        if candidate is not None:
            data = _loads_object(candidate)
    if data is not None:
        return data

    data = _loads_object(repair_json(cleaned))
    if data is not None:
        logger.info("Parsed model response after JSON repair")
        return data

    logger.warning(f"Could not parse model response as JSON, using regex fallback: {text[:200]!r}")
    return extract_fields_with_regex(text)
