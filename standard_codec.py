"""Standard multi-line record encoding (BibTeX-like blocks).

An encoded record looks like::

    @book{DBLP:books/aw/Knuth68,
      author       = {Donald E. Knuth},
      title        = {The Art of Computer Programming},
      publisher    = {Addison-Wesley},
      year         = {1968}
    }

Inside a braced value ``\\\\``, ``\\{`` and ``\\}`` stand for literal
characters; every other brace is a TeX group and is dropped on decode.
Fields a record has no place for are dropped unless ``strict=True`` is
passed, so entries exported by DBLP (with ``doi``, ``url``, ``bibsource``
...) decode cleanly. Strict decoding raises ``UnknownFieldError`` for
anything an ``encode`` of the result would lose.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass

from errors import (
    DuplicateIdentifierError,
    InvalidFieldValueError,
    MalformedStandardError,
    MissingRequiredFieldError,
    RecordError,
    UnknownFieldError,
    UnterminatedEntryError,
)
from models import (
    PLACEHOLDER_KEY_PREFIX,
    DecodeFailure,
    DecodeReport,
    Record,
    RecordKind,
    validate,
)

LOGGER = logging.getLogger(__name__)

AUTHOR_CONJUNCTION = " and "
FIELD_NAME_WIDTH = 12

ENTRY_TYPES: dict[RecordKind, str] = {
    RecordKind.ARTICLE: "article",
    RecordKind.INPROCEEDINGS: "inproceedings",
    RecordKind.BOOK: "book",
    RecordKind.PHDTHESIS: "phdthesis",
    RecordKind.MASTERSTHESIS: "mastersthesis",
    RecordKind.WWW: "www",
    RecordKind.OTHER: "misc",
}
_KIND_BY_ENTRY_TYPE = {entry_type: kind for kind, entry_type in ENTRY_TYPES.items()}

# Field that carries the venue for each kind; the order of the tuple below is
# the fallback order when decoding an entry that uses another kind's field.
VENUE_FIELDS: dict[RecordKind, str] = {
    RecordKind.ARTICLE: "journal",
    RecordKind.INPROCEEDINGS: "booktitle",
    RecordKind.BOOK: "publisher",
    RecordKind.PHDTHESIS: "school",
    RecordKind.MASTERSTHESIS: "school",
    RecordKind.WWW: "howpublished",
    RecordKind.OTHER: "howpublished",
}
_VENUE_FIELD_ORDER = ("journal", "booktitle", "publisher", "school", "howpublished")
_CORE_FIELDS = frozenset({"author", "title", "year"})
KNOWN_FIELDS = _CORE_FIELDS | frozenset(_VENUE_FIELD_ORDER)

# Block types that never hold a publication.
_NON_RECORD_TYPES = frozenset({"comment", "preamble", "string"})

_ESCAPES = str.maketrans({"\\": "\\\\", "{": "\\{", "}": "\\}"})
_ENTRY_START_RE = re.compile(r"^[ \t]*@", re.MULTILINE)
_NAME_RE = re.compile(r"[^\s=,{}()\"#%]+")
_BARE_VALUE_RE = re.compile(r"[^\s,{}()\"#]+")
_AND_RE = re.compile(r"\s+and\s+", re.IGNORECASE)
_YEAR_RE = re.compile(r"[0-9]+")
_SLUG_RE = re.compile(r"[^a-z0-9]+")

# TeX accent commands found in bibliographies exported by DBLP and others.
_ACCENTS = {
    '"': "\u0308",
    "'": "\u0301",
    "`": "\u0300",
    "^": "\u0302",
    "~": "\u0303",
    "=": "\u0304",
    ".": "\u0307",
    "c": "\u0327",
    "v": "\u030c",
    "u": "\u0306",
    "H": "\u030b",
    "k": "\u0328",
    "r": "\u030a",
}
_ACCENT_RE = re.compile(
    r"""\\(?:(["'`^~=.])|([cvuHkr])(?![A-Za-z]))\s*"""
    r"""(?:\{\s*(\\[ij]|[A-Za-z])\s*\}|(\\[ij](?![A-Za-z])|[A-Za-z]))"""
)
_SYMBOLS = {
    "ss": "ß",
    "ae": "æ",
    "AE": "Æ",
    "oe": "œ",
    "OE": "Œ",
    "aa": "å",
    "AA": "Å",
    "o": "ø",
    "O": "Ø",
    "l": "ł",
    "L": "Ł",
    "i": "ı",
    "j": "ȷ",
}
_SYMBOL_RE = re.compile(r"\\(ss|ae|AE|oe|OE|aa|AA|o|O|l|L|i|j)(?![A-Za-z])(?:\{\}| )?")
_ESCAPED_PUNCTUATION = frozenset("&%$#_")


@dataclass(frozen=True, slots=True)
class _Entry:
    entry_type: str
    key: str
    fields: dict[str, str]


def encode(record: Record) -> str:
    """Encode a valid record as one standard block (no trailing newline)."""
    validate(record)

    fields: list[tuple[str, str]] = []
    if record.authors:
        fields.append(("author", AUTHOR_CONJUNCTION.join(_encode_author(a) for a in record.authors)))
    fields.append(("title", _escape(record.title)))
    if record.venue is not None:
        fields.append((VENUE_FIELDS[record.kind], _escape(record.venue)))
    if record.year is not None:
        fields.append(("year", str(record.year)))

    key = record.identifier or placeholder_key(record)
    lines = [f"@{ENTRY_TYPES[record.kind]}{{{key},"]
    for position, (name, value) in enumerate(fields):
        trailer = "," if position < len(fields) - 1 else ""
        lines.append(f"  {name:<{FIELD_NAME_WIDTH}} = {{{value}}}{trailer}")
    lines.append("}")
    return "\n".join(lines)


def decode(text: str, strict: bool = False) -> Record:
    """Decode exactly one standard block into a validated Record."""
    match = _ENTRY_START_RE.search(text)
    if match is None:
        raise MalformedStandardError("No entry found: expected '@' at a line start", raw=text)
    start = match.end() - 1

    try:
        entry, end = _Parser(text).parse_entry(start)
        if text[end:].strip():
            raise MalformedStandardError(
                f"Unexpected text after entry at {_location(text, end)}"
            )
        return _to_record(entry, strict)
    except RecordError as exc:
        exc.with_raw(text)
        raise


def decode_many(text: str, strict: bool = False) -> DecodeReport:
    """Decode every entry in ``text``, collecting failures instead of stopping.

    ``@comment``, ``@preamble`` and ``@string`` blocks are skipped. After a
    broken entry decoding resumes at the next line that starts with ``@``.
    """
    report = DecodeReport()
    seen: set[str] = set()
    parser = _Parser(text)
    starts = [match.end() - 1 for match in _ENTRY_START_RE.finditer(text)]
    resume_at = 0

    for position, start in enumerate(starts):
        if start < resume_at:
            continue  # inside an entry that already parsed
        next_start = starts[position + 1] if position + 1 < len(starts) else len(text)
        line = text.count("\n", 0, start) + 1

        try:
            entry, end = parser.parse_entry(start)
        except RecordError as exc:
            _add_failure(report, line, text[start:next_start], exc)
            continue

        resume_at = end
        if entry.entry_type in _NON_RECORD_TYPES:
            continue

        try:
            record = _to_record(entry, strict)
            if record.identifier is not None and record.identifier in seen:
                raise DuplicateIdentifierError(
                    f"Duplicate identifier in result set: {record.identifier}"
                )
        except RecordError as exc:
            _add_failure(report, line, text[start:end], exc)
            continue

        if record.identifier is not None:
            seen.add(record.identifier)
        report.records.append(record)

    LOGGER.debug(
        "Standard decode: records=%s failures=%s", len(report.records), len(report.failures)
    )
    return report


def _add_failure(report: DecodeReport, line: int, chunk: str, exc: RecordError) -> None:
    raw = chunk.rstrip()
    exc.with_raw(raw)
    LOGGER.warning("Standard decode failed for entry at line %s: %s", line, exc)
    report.failures.append(DecodeFailure(line=line, raw=raw, error=exc))


def placeholder_key(record: Record) -> str:
    """Generate a citation key for a record that has no identifier.

    The key is built from the first author's last name, the year and the
    first word of the title, under the reserved ``_:`` prefix so that it
    decodes back to "no identifier".
    """
    parts: list[str] = []
    if record.authors:
        parts.append(_slug(record.authors[0].split()[-1]))
    if record.year is not None:
        parts.append(str(record.year))
    words = [_slug(word) for word in record.title.split()]
    parts.extend(word for word in words[:1] if word)
    return PLACEHOLDER_KEY_PREFIX + ("".join(parts) or "anon")


def _escape(value: str) -> str:
    return value.translate(_ESCAPES)


def _encode_author(name: str) -> str:
    escaped = _escape(name)
    needs_group = name != name.strip() or any(word.lower() == "and" for word in name.split())
    return "{" + escaped + "}" if needs_group else escaped


def _slug(text: str) -> str:
    folded = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return _SLUG_RE.sub("", folded.lower())


def _location(text: str, pos: int) -> str:
    line = text.count("\n", 0, pos) + 1
    column = pos - (text.rfind("\n", 0, pos) + 1) + 1
    return f"line {line}, column {column}"


class _Parser:
    """Recursive-descent parser over the block syntax.

    entry  := "@" type ("{" body "}" | "(" body ")")
    body   := key ("," field)* ","?
    field  := name "=" value
    value  := piece ("#" piece)*
    piece  := "{" braced "}" | '"' quoted '"' | bare
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def parse_entry(self, start: int) -> tuple[_Entry, int]:
        self.pos = start
        self._expect("@")
        entry_type = self._read_name("entry type").lower()
        self._skip_ws()

        opener = self._peek()
        if opener not in ("{", "("):
            raise MalformedStandardError(
                f"Expected '{{' or '(' after @{entry_type} at {self._where()}"
            )
        closer = "}" if opener == "{" else ")"
        self.pos += 1

        if entry_type in _NON_RECORD_TYPES:
            self._skip_block(closer)
            return _Entry(entry_type, "", {}), self.pos

        key = self._read_key(closer)
        fields: dict[str, str] = {}
        while True:
            self._skip_ws()
            char = self._peek()
            if char == closer:
                self.pos += 1
                break
            if char == ",":
                self.pos += 1
                continue

            name = self._read_name("field name").lower()
            self._skip_ws()
            self._expect("=")
            self._skip_ws()
            value = self._parse_value()
            if name in fields:
                LOGGER.debug("Duplicate field %r in entry %r, keeping the first", name, key)
            else:
                fields[name] = value

            self._skip_ws()
            char = self._peek()
            if char not in (",", closer):
                raise MalformedStandardError(
                    f"Expected ',' or '{closer}' after field {name!r} at {self._where()}"
                )

        return _Entry(entry_type, key, fields), self.pos

    def _parse_value(self) -> str:
        pieces = [self._parse_piece()]
        while True:
            self._skip_ws()
            if self._peek() != "#":
                return "".join(pieces)
            self.pos += 1
            self._skip_ws()
            pieces.append(self._parse_piece())

    def _parse_piece(self) -> str:
        char = self._peek()
        if char == "{":
            return self._parse_delimited("}")
        if char == '"':
            return self._parse_delimited('"')
        match = _BARE_VALUE_RE.match(self.text, self.pos)
        if not match:
            raise MalformedStandardError(f"Expected a value at {self._where()}")
        self.pos = match.end()
        return match.group()

    def _parse_delimited(self, closer: str) -> str:
        """Return the raw text between a '{' or '"' and its matching closer."""
        opened_at = self.pos
        self.pos += 1
        start = self.pos
        depth = 0
        text = self.text

        while self.pos < len(text):
            char = text[self.pos]
            if char == "\\":
                self.pos += 2
                continue
            if char == "{":
                depth += 1
            elif char == "}" and depth > 0:
                depth -= 1
            elif char == closer and depth == 0:
                raw = text[start:self.pos]
                self.pos += 1
                return raw
            elif char == "}":
                raise MalformedStandardError(f"Unbalanced '}}' at {self._where()}")
            self.pos += 1

        raise UnterminatedEntryError(
            f"Value opened at {_location(text, opened_at)} is never closed"
        )

    def _read_key(self, closer: str) -> str:
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] not in (",", closer):
            self.pos += 1
        if self.pos >= len(self.text):
            raise UnterminatedEntryError(f"Entry opened at {_location(self.text, start)} is never closed")
        key = self.text[start:self.pos].strip()
        if self.text[self.pos] == ",":
            self.pos += 1
        return key

    def _skip_block(self, closer: str) -> None:
        self.pos -= 1
        if closer == "}":
            self._parse_delimited("}")
            return
        end = self.text.find(")", self.pos)
        if end < 0:
            raise UnterminatedEntryError(f"Block opened at {self._where()} is never closed")
        self.pos = end + 1

    def _read_name(self, what: str) -> str:
        if self.pos >= len(self.text):
            raise UnterminatedEntryError(f"Input ended while expecting a {what}")
        match = _NAME_RE.match(self.text, self.pos)
        if not match:
            raise MalformedStandardError(f"Expected a {what} at {self._where()}")
        self.pos = match.end()
        return match.group()

    def _expect(self, char: str) -> None:
        found = self._peek()
        if found != char:
            raise MalformedStandardError(f"Expected {char!r} at {self._where()}, found {found!r}")
        self.pos += 1

    def _peek(self) -> str:
        if self.pos >= len(self.text):
            raise UnterminatedEntryError("Input ended inside an entry")
        return self.text[self.pos]

    def _skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def _where(self) -> str:
        return _location(self.text, self.pos)


def _to_record(entry: _Entry, strict: bool) -> Record:
    kind = _KIND_BY_ENTRY_TYPE.get(entry.entry_type, RecordKind.OTHER)

    venue_field = VENUE_FIELDS[kind]
    if venue_field not in entry.fields:
        venue_field = next((name for name in _VENUE_FIELD_ORDER if name in entry.fields), None)

    # Strict mode rejects everything a re-encode would lose or rename: unknown
    # entry types, a venue under another kind's field, and any field beyond
    # the one venue (DBLP puts a publisher on proceedings papers).
    if strict and entry.entry_type not in _KIND_BY_ENTRY_TYPE:
        raise UnknownFieldError(f"Entry type {entry.entry_type!r} of {entry.key!r} has no record kind")
    if strict and venue_field not in (None, VENUE_FIELDS[kind]):
        raise UnknownFieldError(
            f"Field {venue_field!r} in entry {entry.key!r} would be written as {VENUE_FIELDS[kind]!r}"
        )
    for name in entry.fields:
        if name == venue_field or name in _CORE_FIELDS:
            continue
        if name not in KNOWN_FIELDS:
            message = f"Unknown field {name!r} in entry {entry.key!r}"
        else:
            message = f"Field {name!r} in entry {entry.key!r} is dropped in favour of {venue_field!r}"
        if strict:
            raise UnknownFieldError(message)
        LOGGER.debug("%s; dropping it", message)

    if "title" not in entry.fields:
        raise MissingRequiredFieldError(f"Entry {entry.key!r} has no title field")

    venue_raw = None if venue_field is None else entry.fields[venue_field]

    key = entry.key
    identifier = None if not key or key.startswith(PLACEHOLDER_KEY_PREFIX) else key

    record = Record(
        title=_render(entry.fields["title"]),
        authors=_split_authors(entry.fields.get("author", "")),
        venue=None if venue_raw is None else _render(venue_raw),
        year=_parse_year(entry.fields.get("year")),
        kind=kind,
        identifier=identifier,
    )
    validate(record)
    return record


def _parse_year(raw: str | None) -> int | None:
    if raw is None:
        return None
    text = _render(raw).strip()
    if not _YEAR_RE.fullmatch(text):
        raise InvalidFieldValueError(f"Year must be an integer, got {text!r}")
    return int(text)


def _split_authors(raw: str) -> tuple[str, ...]:
    """Split an author value on top-level ``and`` and render each name."""
    if not raw.strip():
        return ()

    pieces: list[str] = []
    depth = 0
    start = 0
    index = 0
    while index < len(raw):
        char = raw[index]
        if char == "\\":
            index += 2
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        elif depth == 0 and char.isspace():
            match = _AND_RE.match(raw, index)
            if match:
                pieces.append(raw[start:index])
                start = index = match.end()
                continue
        index += 1
    pieces.append(raw[start:])

    return tuple(_render_author(piece) for piece in pieces)


def _render_author(piece: str) -> str:
    if _is_single_group(piece):
        return _render(piece[1:-1])
    return _render(piece.strip())


def _is_single_group(text: str) -> bool:
    """True when the whole text is one ``{...}`` group."""
    if len(text) < 2 or text[0] != "{" or text[-1] != "}":
        return False
    depth = 0
    index = 0
    while index < len(text):
        char = text[index]
        if char == "\\":
            index += 2
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index == len(text) - 1
        index += 1
    return False


def _render(raw: str) -> str:
    """Turn raw value text into plain text.

    Resolves the codec's own escapes, TeX accents and a few TeX symbols, and
    drops grouping braces. Unrecognized commands are kept verbatim.
    """
    out: list[str] = []
    index = 0
    while index < len(raw):
        char = raw[index]
        if char == "\\":
            following = raw[index + 1:index + 2]
            if following in ("\\", "{", "}"):
                out.append(following)
                index += 2
                continue
            if following and following in _ESCAPED_PUNCTUATION:
                out.append(following)
                index += 2
                continue
            accent = _ACCENT_RE.match(raw, index)
            if accent:
                command = accent.group(1) or accent.group(2)
                base = accent.group(3) or accent.group(4)
                if base.startswith("\\"):
                    base = base[1:]
                out.append(unicodedata.normalize("NFC", base + _ACCENTS[command]))
                index = accent.end()
                continue
            symbol = _SYMBOL_RE.match(raw, index)
            if symbol:
                out.append(_SYMBOLS[symbol.group(1)])
                index = symbol.end()
                continue
            out.append(char)
            index += 1
            continue
        if char not in "{}":
            out.append(char)
        index += 1
    return "".join(out)
