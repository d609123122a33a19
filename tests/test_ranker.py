import pytest

from models import Record, RecordKind
from ranker import RankConfig, rank

KNUTH = Record(
    title="The Art of Computer Programming",
    authors=("Donald E. Knuth",),
    venue="Addison-Wesley",
    year=1968,
    kind=RecordKind.BOOK,
    identifier="DBLP:books/aw/Knuth68",
)

CANDIDATES = [
    Record(
        title="Programming Pearls",
        authors=("Jon L. Bentley",),
        venue="Commun. ACM",
        year=1986,
        kind=RecordKind.ARTICLE,
        identifier="DBLP:journals/cacm/Bentley86",
    ),
    Record(
        title="The Art of Electronics",
        authors=("Paul Horowitz", "Winfield Hill"),
        year=1980,
        kind=RecordKind.BOOK,
        identifier="horowitz80",
    ),
    KNUTH,
    Record(
        title="Structure and Interpretation of Computer Programs",
        authors=("Harold Abelson", "Gerald Jay Sussman"),
        venue="MIT Press",
        year=1985,
        kind=RecordKind.BOOK,
        identifier="sicp85",
    ),
    Record(title="Quantum Field Theory", authors=("Mark Srednicki",), year=2007),
]


def test_knuth_ranked_first() -> None:
    results = rank("knuth art programming", CANDIDATES)

    assert results[0].record is KNUTH
    assert results[0].score >= 0.8


def test_scores_descending() -> None:
    scores = [r.score for r in rank("computer programming", CANDIDATES)]
    assert scores == sorted(scores, reverse=True)


def test_ranking_deterministic() -> None:
    first = rank("art of programming", CANDIDATES)
    second = rank("art of programming", list(reversed(CANDIDATES)))

    assert [r.record for r in first] == [r.record for r in second]
    assert first == rank("art of programming", CANDIDATES)


@pytest.mark.parametrize("threshold", [0.0, 0.2, 0.5, 0.9, 1.0])
def test_threshold_filters_low_scores(threshold: float) -> None:
    results = rank("art programming", CANDIDATES, RankConfig(threshold=threshold))
    assert all(r.score >= threshold for r in results)


def test_default_threshold_keeps_everything() -> None:
    assert len(rank("knuth", CANDIDATES)) == len(CANDIDATES)


def test_ties_break_on_year_then_title() -> None:
    records = [
        Record(title="Deep Learning", year=2015, identifier="a"),
        Record(title="Deep Learning", identifier="c"),
        Record(title="Learning, Deep", year=2016, identifier="d"),
        Record(title="Deep Learning", year=2016, identifier="b"),
    ]

    results = rank("deep learning", records)

    assert {r.score for r in results} == {1.0}
    assert [r.record.identifier for r in results] == ["b", "d", "a", "c"]


def test_limit_returns_best_prefix() -> None:
    full = rank("computer art programming", CANDIDATES)
    limited = rank("computer art programming", CANDIDATES, RankConfig(limit=2))

    assert limited == full[:2]


def test_limit_zero_returns_nothing() -> None:
    assert rank("knuth", CANDIDATES, RankConfig(limit=0)) == []


def test_threaded_scoring_matches_serial() -> None:
    serial = rank("programming computer", CANDIDATES)
    threaded = rank("programming computer", CANDIDATES, RankConfig(workers=4))
    assert threaded == serial


def test_accepts_any_iterable() -> None:
    results = rank("knuth", (record for record in CANDIDATES), RankConfig(limit=1))
    assert results[0].record is KNUTH


def test_empty_query_scores_zero_for_all() -> None:
    results = rank("", CANDIDATES)
    assert [r.score for r in results] == [0.0] * len(CANDIDATES)
    assert rank("", CANDIDATES, RankConfig(threshold=0.1)) == []


def test_empty_candidates() -> None:
    assert rank("knuth", []) == []


@pytest.mark.parametrize("kwargs", [
    {"threshold": -0.1},
    {"threshold": 1.5},
    {"limit": -1},
    {"workers": 0},
])
def test_invalid_config_rejected(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        RankConfig(**kwargs)
