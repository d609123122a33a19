"""Exceptions raised while validating, encoding and decoding records."""

from __future__ import annotations


class RecordError(ValueError):
    """Base exception for record problems.

    ``raw`` carries the offending input text when the error was raised while
    decoding, so a front-end can report which line or entry failed.
    """

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw

    def with_raw(self, raw: str) -> RecordError:
        """Attach the raw input unless an inner decoder already did."""
        if self.raw is None:
            self.raw = raw
        return self


class ValidationError(RecordError):
    """A record violates one of its invariants."""


class EmptyTitleError(ValidationError):
    """Title is missing or blank."""


class EmptyAuthorNameError(ValidationError):
    """An author entry is blank."""


class YearOutOfRangeError(ValidationError):
    """Year is outside the plausible publication range."""


class UnknownKindError(ValidationError):
    """Kind cannot be mapped to the closed set and no fallback was given."""


class InvalidIdentifierError(ValidationError):
    """Identifier cannot be used as a citation key."""


class DuplicateIdentifierError(ValidationError):
    """Two records of one result set share an identifier."""


class FormatError(RecordError):
    """Text could not be parsed in the expected encoding."""


class MalformedCondensedError(FormatError):
    """Condensed line does not have the expected number of fields."""


class UnescapedDelimiterError(FormatError):
    """Condensed line contains an invalid escape sequence."""


class InvalidFieldValueError(FormatError):
    """A field value has the wrong shape (e.g. a non-numeric year)."""


class UnterminatedEntryError(FormatError):
    """Standard entry or value ends before its closing delimiter."""


class MalformedStandardError(FormatError):
    """Standard entry breaks the block syntax."""


class UnknownFieldError(FormatError):
    """Standard entry holds something a record cannot keep (strict decoding only).

    That is an unknown field or entry type, a second venue field, or a venue
    stored under a field other than the one its kind is written with.
    """


class MissingRequiredFieldError(FormatError):
    """Standard entry has no title field."""
