"""Rank candidate records against a query (pure, no I/O)."""

from __future__ import annotations

import heapq
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Sequence

from matcher import match_tokens, tokenize
from models import MatchResult, Record

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RankConfig:
    """Ranking knobs.

    threshold: minimum score a result needs to be returned.
    limit:     maximum number of results; None means unbounded.
    workers:   threads used to score candidates; 1 scores inline.
    """

    threshold: float = 0.0
    limit: int | None = None
    workers: int = 1

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {self.threshold}")
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")


def sort_key(result: MatchResult) -> tuple:
    """Ordering key: score desc, year desc (missing years last), title asc."""
    record = result.record
    has_year = record.year is not None
    return (
        -result.score,
        not has_year,
        -(record.year or 0),
        record.title,
        record.identifier or "",
    )


def rank(
    query: str,
    candidates: Iterable[Record],
    config: RankConfig | None = None,
) -> list[MatchResult]:
    """Score every candidate and return the ordered results above threshold."""
    config = config or RankConfig()
    query_tokens = tokenize(query)
    records: Sequence[Record] = candidates if isinstance(candidates, Sequence) else list(candidates)

    if config.limit == 0:
        return []

    if config.workers > 1 and len(records) > 1:
        with ThreadPoolExecutor(max_workers=config.workers) as pool:
            scored: Iterable[MatchResult] = list(
                pool.map(lambda record: match_tokens(query_tokens, record), records)
            )
    else:
        scored = (match_tokens(query_tokens, record) for record in records)

    kept = (result for result in scored if result.score >= config.threshold)

    if config.limit is None:
        results = sorted(kept, key=sort_key)
    else:
        # Only the best `limit` results are kept while scanning.
        results = heapq.nsmallest(config.limit, kept, key=sort_key)

    LOGGER.debug(
        "Ranked query=%r candidates=%s returned=%s threshold=%s limit=%s",
        query,
        len(records),
        len(results),
        config.threshold,
        config.limit,
    )
    return results
