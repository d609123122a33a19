"""Token-based fuzzy scoring of a free-text query against one record (no I/O).

Scoring works in three steps:

1. Query and searchable fields (title, each author, venue) are normalized:
   diacritics folded, casefolded, every non-alphanumeric character treated
   as a separator.
2. Every query token is routed to the field where its best token match,
   scaled by the field weight, is highest. Ties go to the earlier field
   (title, then authors in order, then venue).
3. Each field that received query tokens contributes
   ``share_of_query * field_weight * field_similarity``.

``field_similarity`` is symmetric: identical token lists score 1.0 and lists
with no token pair above ``TOKEN_CUTOFF`` score 0.0.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Sequence

from rapidfuzz.distance import Levenshtein

from models import FieldMatch, MatchResult, Record

# Field weights; title matches count most, then authors, then venue.
TITLE_WEIGHT = 1.0
AUTHOR_WEIGHT = 0.9
VENUE_WEIGHT = 0.75

# Token pairs less similar than this count as no match at all.
TOKEN_CUTOFF = 0.75

# Share of the field similarity taken from the better-covered side. The rest
# comes from the worse-covered side, so a short query that fully covers part
# of a long title still scores high, but below an exact match.
SUBSET_WEIGHT = 0.8

_SEPARATOR_RE = re.compile(r"[\W_]+", re.UNICODE)


def normalize(text: str) -> str:
    """Fold diacritics, casefold and collapse punctuation into single spaces."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _SEPARATOR_RE.sub(" ", stripped.casefold()).strip()


def tokenize(text: str | None) -> list[str]:
    if not text:
        return []
    return normalize(text).split()


def token_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity, zeroed below TOKEN_CUTOFF."""
    if a == b:
        return 1.0
    similarity = Levenshtein.normalized_similarity(a, b)
    return similarity if similarity >= TOKEN_CUTOFF else 0.0


def field_similarity(a: Sequence[str], b: Sequence[str]) -> float:
    """Symmetric similarity of two token lists in [0, 1]."""
    if not a or not b:
        return 0.0
    forward = _coverage(a, b)
    backward = _coverage(b, a)
    high, low = max(forward, backward), min(forward, backward)
    return high - (1.0 - SUBSET_WEIGHT) * (high - low)


def score(query: str, record: Record) -> float:
    return match(query, record).score


def match(query: str, record: Record) -> MatchResult:
    """Score ``record`` against ``query``; never raises for odd input."""
    return match_tokens(tokenize(query), record)


def match_tokens(query_tokens: Sequence[str], record: Record) -> MatchResult:
    """Like match(), for a query that was already tokenized."""
    if not query_tokens:
        return MatchResult(record=record, score=0.0)

    fields = _searchable_fields(record)
    routed: list[list[str]] = [[] for _ in fields]

    for token in query_tokens:
        best_index = -1
        best_credit = 0.0
        for index, (_, _, tokens, weight) in enumerate(fields):
            credit = weight * _best_token_similarity(token, tokens)
            if credit > best_credit:
                best_index, best_credit = index, credit
        if best_index >= 0:
            routed[best_index].append(token)

    total = 0.0
    contributing: list[FieldMatch] = []
    for (name, value, tokens, weight), assigned in zip(fields, routed):
        if not assigned:
            continue
        similarity = field_similarity(assigned, tokens)
        total += (len(assigned) / len(query_tokens)) * weight * similarity
        contributing.append(FieldMatch(name=name, value=value, score=similarity))

    return MatchResult(record=record, score=min(1.0, total), fields=tuple(contributing))


def _searchable_fields(record: Record) -> list[tuple[str, str, list[str], float]]:
    fields = [("title", record.title, tokenize(record.title), TITLE_WEIGHT)]
    for position, author in enumerate(record.authors):
        fields.append((f"author[{position}]", author, tokenize(author), AUTHOR_WEIGHT))
    if record.venue:
        fields.append(("venue", record.venue, tokenize(record.venue), VENUE_WEIGHT))
    return [field for field in fields if field[2]]


def _best_token_similarity(token: str, candidates: Sequence[str]) -> float:
    best = 0.0
    for candidate in candidates:
        similarity = token_similarity(token, candidate)
        if similarity > best:
            best = similarity
            if best == 1.0:
                break
    return best


def _coverage(source: Sequence[str], target: Sequence[str]) -> float:
    return sum(_best_token_similarity(token, target) for token in source) / len(source)
