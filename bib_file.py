"""Bibliography file helpers: lookup, append and in-place format conversion."""

from __future__ import annotations

import logging
import shutil
from enum import Enum
from pathlib import Path
from types import ModuleType

import condensed_codec
import standard_codec
from errors import UnknownFieldError
from models import DecodeReport, Record, ensure_unique_identifiers

LOGGER = logging.getLogger(__name__)

BIB_SUFFIX = ".bib"
BACKUP_SUFFIX = ".bak"


class Format(str, Enum):
    CONDENSED = "condensed"
    STANDARD = "standard"

    @property
    def codec(self) -> ModuleType:
        return condensed_codec if self is Format.CONDENSED else standard_codec


def find_unique_bib(directory: Path | str = ".") -> Path | None:
    """Return the only *.bib file in ``directory``, or None for zero or several."""
    paths = sorted(p for p in Path(directory).iterdir() if p.is_file() and p.suffix == BIB_SUFFIX)
    if len(paths) == 1:
        return paths[0]
    LOGGER.debug("Found %s bibliography files in %s", len(paths), directory)
    return None


def detect_format(text: str) -> Format:
    """Standard when the first non-blank line opens an entry, else condensed."""
    for line in text.splitlines():
        if line.strip():
            return Format.STANDARD if line.lstrip().startswith("@") else Format.CONDENSED
    return Format.CONDENSED


def encode(record: Record, fmt: Format) -> str:
    return fmt.codec.encode(record)


def encode_all(records: list[Record], fmt: Format) -> str:
    """Join encoded records: one per line, or blank-line separated blocks.

    Raises DuplicateIdentifierError rather than write a file that would not
    decode back.
    """
    if not records:
        return ""
    ensure_unique_identifiers(records)
    separator = "\n" if fmt is Format.CONDENSED else "\n\n"
    return separator.join(encode(record, fmt) for record in records) + "\n"


def decode_text(text: str, fmt: Format | None = None, strict: bool = False) -> DecodeReport:
    fmt = fmt or detect_format(text)
    if fmt is Format.STANDARD:
        return standard_codec.decode_many(text, strict=strict)
    return condensed_codec.decode_many(text)


def read_records(path: Path | str, fmt: Format | None = None, strict: bool = False) -> DecodeReport:
    """Decode every record of a bibliography file, in its detected format.

    ``strict`` reports standard entries holding fields a record cannot keep.
    """
    text = Path(path).read_text(encoding="utf-8")
    return decode_text(text, fmt, strict)


def record_already_exists(path: Path | str, record: Record) -> bool:
    """Return True if the file already holds a record with the same identifier."""
    path = Path(path)
    if record.identifier is None or not path.exists():
        return False

    report = read_records(path)
    return any(existing.identifier == record.identifier for existing in report.records)


def append_record(path: Path | str, record: Record, fmt: Format | None = None) -> None:
    """Append ``record`` to the file (creating it if needed).

    The format defaults to the one already used by the file, or standard for
    a new or empty file.
    """
    path = Path(path)
    existing = path.read_text(encoding="utf-8") if path.exists() else ""
    if fmt is None:
        fmt = detect_format(existing) if existing.strip() else Format.STANDARD

    encoded = encode(record, fmt)
    prefix = ""
    if existing and not existing.endswith("\n"):
        prefix = "\n"
    if existing.strip() and fmt is Format.STANDARD:
        prefix += "\n"

    with path.open("a", encoding="utf-8") as fh:
        fh.write(prefix + encoded + "\n")

    LOGGER.info("Appended %s record key=%s to %s", fmt.value, record.identifier, path)


def backup_path(path: Path | str) -> Path:
    path = Path(path)
    return path.with_name(path.name + BACKUP_SUFFIX)


def conversion_blocked(report: DecodeReport, skip_invalid: bool = False) -> bool:
    """True when rewriting the decoded records would lose data.

    Entries with fields a record cannot keep always block; other broken
    records block unless ``skip_invalid`` is set.
    """
    if any(isinstance(failure.error, UnknownFieldError) for failure in report.failures):
        return True
    return bool(report.failures) and not skip_invalid


def convert_file(
    path: Path | str,
    to: Format,
    skip_invalid: bool = False,
    drop_extra_fields: bool = False,
) -> DecodeReport:
    """Rewrite a bibliography file in another format, keeping a backup copy.

    The file is left untouched when a standard entry holds fields a record
    cannot keep (``pages``, ``doi``, a second venue ...) unless
    ``drop_extra_fields`` is set, or when any record fails to decode unless
    ``skip_invalid`` is set. Skipped records survive in the backup.
    """
    path = Path(path)
    report = read_records(path, strict=not drop_extra_fields)

    if conversion_blocked(report, skip_invalid):
        LOGGER.error(
            "Not converting %s: %s record(s) failed to decode or would lose fields",
            path,
            len(report.failures),
        )
        return report

    backup = backup_path(path)
    shutil.copyfile(path, backup)
    path.write_text(encode_all(report.records, to), encoding="utf-8")

    LOGGER.info(
        "Converted %s to %s: records=%s skipped=%s backup=%s",
        path,
        to.value,
        len(report.records),
        len(report.failures),
        backup,
    )
    return report
