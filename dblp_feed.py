"""DBLP publication search helpers."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any

import requests

from errors import ValidationError
from models import Record, RecordKind, validate

# Public DBLP search endpoint; the mirror is tried when the main site fails.
DEFAULT_MIRRORS = ("https://dblp.org", "https://dblp.uni-trier.de")
SEARCH_PATH = "/search/publ/api"
REQUEST_TIMEOUT_SECONDS = 20
_DEFAULT_MAX_HITS = 30

KEY_PREFIX = "DBLP:"

# DBLP "type" strings mapped to record kinds; anything else is OTHER.
_KIND_BY_TYPE = {
    "Journal Articles": RecordKind.ARTICLE,
    "Conference and Workshop Papers": RecordKind.INPROCEEDINGS,
    "Books and Theses": RecordKind.BOOK,
}

# "Books and Theses" covers both; thesis keys live under these prefixes.
_THESIS_KIND_BY_KEY_PREFIX = {
    "phd/": RecordKind.PHDTHESIS,
    "ms/": RecordKind.MASTERSTHESIS,
}

# DBLP disambiguates homonyms with a numeric suffix ("Wei Wang 0001").
_HOMONYM_SUFFIX_RE = re.compile(r"\s+\d{4}$")

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class FetchResult:
    """Records from one search plus the transport error, if every mirror failed."""

    records: list[Record] = field(default_factory=list)
    error: str | None = None


def mirrors() -> list[str]:
    raw = os.environ.get("DBLP_MIRRORS")
    if not raw:
        return list(DEFAULT_MIRRORS)
    return [url.strip().rstrip("/") for url in raw.split(",") if url.strip()]


def search_records(query: str, max_hits: int | None = None) -> FetchResult:
    """Search DBLP publications and normalize the hits into Records.

    Mirrors are tried in order and the first successful response wins. When
    all of them fail the result has no records and carries the last error.

    Args:
        query: Free-text query; words are sent as-is to the search API.
        max_hits: Maximum hits requested. Reads DBLP_MAX_HITS env var if not
            supplied; defaults to 30.
    """
    if max_hits is None:
        max_hits = int(os.environ.get("DBLP_MAX_HITS", _DEFAULT_MAX_HITS))
    timeout = float(os.environ.get("DBLP_TIMEOUT_SECONDS", REQUEST_TIMEOUT_SECONDS))

    params = {"q": " ".join(query.split()), "format": "json", "h": max_hits}
    last_error: str | None = None

    for base_url in mirrors():
        url = f"{base_url}{SEARCH_PATH}"
        try:
            response = requests.get(url, params=params, timeout=timeout)
            response.raise_for_status()
            records = parse_hits(response.json())
        except (requests.RequestException, ValueError, RuntimeError) as exc:
            last_error = f"{base_url}: {exc}"
            LOGGER.warning("DBLP search: mirror %s failed, trying next: %s", base_url, exc)
            continue

        LOGGER.info(
            "DBLP search: mirror=%s query=%r returned=%s", base_url, params["q"], len(records)
        )
        return FetchResult(records=records)

    LOGGER.error("DBLP search: all mirrors failed for query=%r", params["q"])
    return FetchResult(records=[], error=last_error or "no DBLP mirror configured")


def parse_hits(payload: Any) -> list[Record]:
    """Parse a search API payload into validated Records.

    Hits missing a title, or whose fields fail validation, are skipped.
    """
    if not isinstance(payload, dict):
        raise RuntimeError("Unexpected DBLP payload shape: expected an object")

    hits = (payload.get("result") or {}).get("hits") or {}
    raw_hits = hits.get("hit") or []
    if isinstance(raw_hits, dict):
        raw_hits = [raw_hits]

    parsed: list[Record] = []
    seen: set[str] = set()
    for hit in raw_hits:
        info = hit.get("info") if isinstance(hit, dict) else None
        if not isinstance(info, dict):
            continue

        title = _clean_title(_as_str(info.get("title")))
        if not title:
            continue

        key = _as_str(info.get("key"))
        record = Record(
            title=title,
            authors=_parse_authors(info.get("authors")),
            venue=_parse_venue(info.get("venue")),
            year=_parse_year(info.get("year")),
            kind=_parse_kind(_as_str(info.get("type")), key),
            identifier=f"{KEY_PREFIX}{key}" if key else None,
        )

        try:
            validate(record)
        except ValidationError as exc:
            LOGGER.warning("DBLP search: skipping hit key=%s: %s", key, exc)
            continue
        if record.identifier is not None:
            if record.identifier in seen:
                continue
            seen.add(record.identifier)
        parsed.append(record)

    return parsed


def bib_url(record: Record, standard: bool = True) -> str | None:
    """DBLP BibTeX export URL of a DBLP-keyed record, in either DBLP format."""
    if not record.identifier or not record.identifier.startswith(KEY_PREFIX):
        return None
    key = record.identifier[len(KEY_PREFIX):]
    param = 1 if standard else 0
    return f"{mirrors()[0]}/rec/{key}.bib?param={param}"


def _parse_authors(raw: Any) -> tuple[str, ...]:
    # "author" is a single object for one author and a list otherwise.
    entry = raw.get("author") if isinstance(raw, dict) else None
    if isinstance(entry, dict):
        entry = [entry]
    if not isinstance(entry, list):
        return ()

    names: list[str] = []
    for author in entry:
        name = _as_str(author.get("text")) if isinstance(author, dict) else _as_str(author)
        if name:
            names.append(_HOMONYM_SUFFIX_RE.sub("", name))
    return tuple(names)


def _parse_kind(dblp_type: str | None, key: str | None) -> RecordKind:
    kind = _KIND_BY_TYPE.get(dblp_type or "", RecordKind.OTHER)
    if kind is RecordKind.BOOK and key:
        for prefix, thesis_kind in _THESIS_KIND_BY_KEY_PREFIX.items():
            if key.startswith(prefix):
                return thesis_kind
    return kind


def _parse_venue(raw: Any) -> str | None:
    if isinstance(raw, list):
        parts = [_as_str(part) for part in raw]
        return ", ".join(part for part in parts if part) or None
    return _as_str(raw)


def _parse_year(raw: Any) -> int | None:
    text = _as_str(raw)
    if text is None or not text.isdigit():
        return None
    return int(text)


def _clean_title(title: str | None) -> str | None:
    # DBLP titles end with a period that is not part of the title.
    if title and title.endswith(".") and not title.endswith(".."):
        title = title[:-1].rstrip()
    return title or None


def _as_str(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None
