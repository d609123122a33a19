"""Shared typed models for records and match results."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Iterable

from errors import (
    DuplicateIdentifierError,
    EmptyAuthorNameError,
    EmptyTitleError,
    InvalidIdentifierError,
    RecordError,
    UnknownKindError,
    YearOutOfRangeError,
)

# Earliest year accepted for a publication; the upper bound is next year.
MIN_YEAR = 1936

# Generated citation keys start with this prefix, so real identifiers may not.
PLACEHOLDER_KEY_PREFIX = "_:"

_KEY_FORBIDDEN_RE = re.compile(r"[\s,{}()\"#%'=\\]")


class RecordKind(str, Enum):
    """Publication type; ``OTHER`` is the escape value."""

    ARTICLE = "article"
    INPROCEEDINGS = "inproceedings"
    BOOK = "book"
    PHDTHESIS = "phdthesis"
    MASTERSTHESIS = "mastersthesis"
    WWW = "www"
    OTHER = "other"

    @classmethod
    def parse(cls, text: str, fallback: RecordKind | None = None) -> RecordKind:
        """Map a case-insensitive kind name to a member.

        Unknown names return ``fallback`` when given, otherwise raise
        UnknownKindError.
        """
        try:
            return cls(text.strip().lower())
        except ValueError:
            if fallback is not None:
                return fallback
            raise UnknownKindError(f"Unknown record kind: {text!r}") from None


@dataclass(frozen=True, slots=True)
class Record:
    """Normalized publication record shared by codecs, matcher and ranker."""

    title: str
    authors: tuple[str, ...] = ()
    venue: str | None = None
    year: int | None = None
    kind: RecordKind = RecordKind.OTHER
    identifier: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.authors, tuple):
            object.__setattr__(self, "authors", tuple(self.authors))
        if self.venue == "":
            object.__setattr__(self, "venue", None)
        if self.identifier == "":
            object.__setattr__(self, "identifier", None)
        if isinstance(self.kind, str) and not isinstance(self.kind, RecordKind):
            try:
                object.__setattr__(self, "kind", RecordKind(self.kind.lower()))
            except ValueError:
                pass  # left as-is; validate() reports it


@dataclass(frozen=True, slots=True)
class FieldMatch:
    """One searchable field that contributed to a match."""

    name: str
    value: str
    score: float


@dataclass(frozen=True, slots=True)
class MatchResult:
    """A record paired with its similarity score and contributing fields."""

    record: Record
    score: float
    fields: tuple[FieldMatch, ...] = ()


def max_year() -> int:
    return datetime.now(UTC).year + 1


def validate(record: Record) -> None:
    """Raise the first invariant violation found on ``record``."""
    if not isinstance(record.title, str) or not record.title.strip():
        raise EmptyTitleError("Record title must not be empty")

    for position, name in enumerate(record.authors):
        if not isinstance(name, str) or not name.strip():
            raise EmptyAuthorNameError(f"Author #{position + 1} has an empty name")

    if record.year is not None:
        upper = max_year()
        if isinstance(record.year, bool) or not isinstance(record.year, int):
            raise YearOutOfRangeError(f"Year must be an integer, got {record.year!r}")
        if not MIN_YEAR <= record.year <= upper:
            raise YearOutOfRangeError(
                f"Year {record.year} outside plausible range {MIN_YEAR}-{upper}"
            )

    if not isinstance(record.kind, RecordKind):
        raise UnknownKindError(f"Unknown record kind: {record.kind!r}")

    if record.identifier is not None:
        _validate_identifier(record.identifier)


def _validate_identifier(identifier: str) -> None:
    if identifier.startswith(PLACEHOLDER_KEY_PREFIX):
        raise InvalidIdentifierError(
            f"Identifier {identifier!r} uses the reserved prefix {PLACEHOLDER_KEY_PREFIX!r}"
        )
    if _KEY_FORBIDDEN_RE.search(identifier):
        raise InvalidIdentifierError(
            f"Identifier {identifier!r} contains whitespace or a reserved character"
        )


def ensure_unique_identifiers(records: Iterable[Record]) -> None:
    """Raise DuplicateIdentifierError if two records share an identifier."""
    seen: set[str] = set()
    for record in records:
        if record.identifier is None:
            continue
        if record.identifier in seen:
            raise DuplicateIdentifierError(
                f"Duplicate identifier in result set: {record.identifier}"
            )
        seen.add(record.identifier)


@dataclass(frozen=True, slots=True)
class DecodeFailure:
    """A chunk of input that could not be decoded, kept for diagnostics."""

    line: int
    raw: str
    error: RecordError


@dataclass(slots=True)
class DecodeReport:
    """Outcome of decoding a batch: records that parsed and chunks that did not."""

    records: list[Record] = field(default_factory=list)
    failures: list[DecodeFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures
