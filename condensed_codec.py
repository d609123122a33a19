"""Condensed single-line record encoding.

One record per line, six fields in a fixed order::

    title|authors|venue|year|kind|identifier

Authors are separated by ``;``. Inside any field the characters ``\\``,
``|``, ``;``, LF and CR are written as ``\\\\``, ``\\|``, ``\\;``, ``\\n`` and
``\\r``. A title whose first non-blank character is ``@`` has it written
as ``\\@`` so that no line reads as a standard entry. Empty venue, year and
identifier fields mean the value is absent.
"""

from __future__ import annotations

import logging
import re

from errors import (
    DuplicateIdentifierError,
    InvalidFieldValueError,
    MalformedCondensedError,
    RecordError,
    UnescapedDelimiterError,
    ValidationError,
)
from models import DecodeFailure, DecodeReport, Record, RecordKind, validate

FIELD_SEPARATOR = "|"
AUTHOR_SEPARATOR = ";"
ESCAPE = "\\"
FIELD_NAMES = ("title", "authors", "venue", "year", "kind", "identifier")

LOGGER = logging.getLogger(__name__)

_ESCAPES = str.maketrans({
    "\\": "\\\\",
    "|": "\\|",
    ";": "\\;",
    "\n": "\\n",
    "\r": "\\r",
})
_UNESCAPES = {"\\": "\\", "|": "|", ";": ";", "@": "@", "n": "\n", "r": "\r"}
_YEAR_RE = re.compile(r"[0-9]+")


def encode(record: Record) -> str:
    """Encode a valid record as one condensed line (no trailing newline)."""
    validate(record)
    fields = [
        _escape_title(record.title),
        AUTHOR_SEPARATOR.join(_escape(name) for name in record.authors),
        _escape(record.venue or ""),
        "" if record.year is None else str(record.year),
        record.kind.value,
        _escape(record.identifier or ""),
    ]
    return FIELD_SEPARATOR.join(fields)


def decode(text: str) -> Record:
    """Decode one condensed line into a validated Record."""
    line = _strip_line_end(text)
    if "\n" in line:
        raise MalformedCondensedError("Condensed record spans more than one line", raw=line)

    fields = _split_fields(line)
    if len(fields) != len(FIELD_NAMES):
        raise MalformedCondensedError(
            f"Expected {len(FIELD_NAMES)} fields, found {len(fields)}", raw=line
        )

    title_parts, author_parts, venue_parts, year_parts, kind_parts, key_parts = fields
    # ";" is only meaningful in the authors field; elsewhere it is literal.
    authors = () if author_parts == [""] else tuple(author_parts)
    year_text = AUTHOR_SEPARATOR.join(year_parts)

    try:
        kind = RecordKind.parse(AUTHOR_SEPARATOR.join(kind_parts))
        record = Record(
            title=AUTHOR_SEPARATOR.join(title_parts),
            authors=authors,
            venue=AUTHOR_SEPARATOR.join(venue_parts) or None,
            year=_parse_year(year_text, line),
            kind=kind,
            identifier=AUTHOR_SEPARATOR.join(key_parts) or None,
        )
        validate(record)
    except ValidationError as exc:
        exc.with_raw(line)
        raise
    return record


def decode_many(text: str) -> DecodeReport:
    """Decode every non-blank line, collecting failures instead of stopping.

    A record whose identifier repeats an earlier one is reported as a
    failure; duplicates are never merged.
    """
    report = DecodeReport()
    seen: set[str] = set()

    for number, raw in enumerate(text.split("\n"), start=1):
        line = raw.rstrip("\r")
        if not line.strip():
            continue
        try:
            record = decode(line)
            if record.identifier is not None and record.identifier in seen:
                raise DuplicateIdentifierError(
                    f"Duplicate identifier in result set: {record.identifier}", raw=line
                )
        except RecordError as exc:
            LOGGER.warning("Condensed decode failed on line %s: %s", number, exc)
            report.failures.append(DecodeFailure(line=number, raw=line, error=exc))
            continue

        if record.identifier is not None:
            seen.add(record.identifier)
        report.records.append(record)

    LOGGER.debug(
        "Condensed decode: records=%s failures=%s", len(report.records), len(report.failures)
    )
    return report


def _escape(value: str) -> str:
    return value.translate(_ESCAPES)


def _escape_title(title: str) -> str:
    # A line whose first visible character is "@" would read as a standard entry.
    escaped = _escape(title)
    stripped = escaped.lstrip()
    if stripped.startswith("@"):
        cut = len(escaped) - len(stripped)
        escaped = escaped[:cut] + ESCAPE + escaped[cut:]
    return escaped


def _strip_line_end(text: str) -> str:
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith("\n"):
        return text[:-1]
    return text


def _split_fields(line: str) -> list[list[str]]:
    """Split on unescaped separators, unescaping as we go.

    Each field comes back as the list of its ``;``-separated parts.
    """
    fields: list[list[str]] = []
    parts: list[str] = []
    buf: list[str] = []
    index = 0

    while index < len(line):
        char = line[index]
        if char == ESCAPE:
            if index + 1 >= len(line):
                raise UnescapedDelimiterError(
                    f"Dangling escape at column {index + 1}", raw=line
                )
            replacement = _UNESCAPES.get(line[index + 1])
            if replacement is None:
                raise UnescapedDelimiterError(
                    f"Invalid escape sequence \\{line[index + 1]} at column {index + 1}",
                    raw=line,
                )
            buf.append(replacement)
            index += 2
            continue

        if char == FIELD_SEPARATOR:
            parts.append("".join(buf))
            fields.append(parts)
            parts, buf = [], []
        elif char == AUTHOR_SEPARATOR:
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(char)
        index += 1

    parts.append("".join(buf))
    fields.append(parts)
    return fields


def _parse_year(text: str, line: str) -> int | None:
    if text == "":
        return None
    if not _YEAR_RE.fullmatch(text):
        raise InvalidFieldValueError(f"Year must be an integer, got {text!r}", raw=line)
    return int(text)
