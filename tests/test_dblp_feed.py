from unittest.mock import MagicMock, patch

import pytest
import requests

from dblp_feed import bib_url, mirrors, parse_hits, search_records
from models import Record, RecordKind


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DBLP_MIRRORS", "DBLP_MAX_HITS", "DBLP_TIMEOUT_SECONDS"):
        monkeypatch.delenv(name, raising=False)


def _hit(key: str, title: str, authors, year: str = "1968", venue="Addison-Wesley", type_: str = "Books and Theses") -> dict:
    return {
        "info": {
            "key": key,
            "authors": {"author": authors},
            "title": title,
            "venue": venue,
            "year": year,
            "type": type_,
            "url": f"https://dblp.org/rec/{key}",
        }
    }


def _payload(*hits: dict) -> dict:
    return {"result": {"hits": {"@total": str(len(hits)), "hit": list(hits)}}}


def _mock_resp(payload: dict) -> MagicMock:
    """Return a mock requests.Response for the given payload."""
    mock = MagicMock()
    mock.json.return_value = payload
    return mock


def test_parse_hits_smoke() -> None:
    payload = _payload(
        _hit("books/aw/Knuth68", "The Art of Computer Programming.", {"@pid": "k/DEKnuth", "text": "Donald E. Knuth"}),
    )

    records = parse_hits(payload)

    assert records == [
        Record(
            title="The Art of Computer Programming",
            authors=("Donald E. Knuth",),
            venue="Addison-Wesley",
            year=1968,
            kind=RecordKind.BOOK,
            identifier="DBLP:books/aw/Knuth68",
        )
    ]


def test_parse_hits_author_list_and_homonym_suffix() -> None:
    payload = _payload(
        _hit(
            "conf/x/WangL20",
            "Some Paper.",
            [{"text": "Wei Wang 0001"}, {"text": "Li Li"}],
            year="2020",
            venue=["ICML", "Workshop"],
            type_="Conference and Workshop Papers",
        ),
    )

    record = parse_hits(payload)[0]

    assert record.authors == ("Wei Wang", "Li Li")
    assert record.venue == "ICML, Workshop"
    assert record.kind is RecordKind.INPROCEEDINGS


def test_parse_hits_skips_invalid_and_duplicate_hits() -> None:
    payload = _payload(
        _hit("a/1", "Valid.", {"text": "A"}, year="2001"),
        _hit("a/2", "", {"text": "B"}),
        _hit("a/3", "Too Old.", {"text": "C"}, year="1700"),
        _hit("a/1", "Valid again.", {"text": "A"}, year="2001"),
    )

    records = parse_hits(payload)

    assert [r.identifier for r in records] == ["DBLP:a/1"]


def test_parse_hits_unknown_type_is_other() -> None:
    payload = _payload(_hit("x/1", "Edited Volume.", {"text": "E"}, type_="Editorship"))
    assert parse_hits(payload)[0].kind is RecordKind.OTHER


def test_parse_hits_empty_result() -> None:
    assert parse_hits({"result": {"hits": {"@total": "0"}}}) == []


def test_parse_hits_rejects_unexpected_shape() -> None:
    with pytest.raises(RuntimeError):
        parse_hits(["not", "an", "object"])


def test_search_records_uses_first_mirror() -> None:
    payload = _payload(_hit("books/aw/Knuth68", "The Art of Computer Programming.", {"text": "Donald E. Knuth"}))

    with patch("dblp_feed.requests.get", return_value=_mock_resp(payload)) as mock_get:
        result = search_records("knuth  art", max_hits=5)

    assert result.error is None
    assert len(result.records) == 1
    assert mock_get.call_count == 1
    url = mock_get.call_args.args[0]
    assert url == "https://dblp.org/search/publ/api"
    assert mock_get.call_args.kwargs["params"] == {"q": "knuth art", "format": "json", "h": 5}


def test_search_records_falls_back_to_mirror() -> None:
    payload = _payload(_hit("a/1", "Valid.", {"text": "A"}, year="2001"))

    with patch("dblp_feed.requests.get",
               side_effect=[requests.RequestException("timeout"), _mock_resp(payload)]) as mock_get:
        result = search_records("valid", max_hits=5)

    assert result.error is None
    assert [r.identifier for r in result.records] == ["DBLP:a/1"]
    assert mock_get.call_args.args[0] == "https://dblp.uni-trier.de/search/publ/api"


def test_search_records_reports_error_when_all_mirrors_fail() -> None:
    with patch("dblp_feed.requests.get", side_effect=requests.ConnectionError("down")):
        result = search_records("anything", max_hits=5)

    assert result.records == []
    assert "down" in result.error


def test_search_records_treats_bad_json_as_failure() -> None:
    bad = MagicMock()
    bad.json.side_effect = ValueError("not json")

    with patch("dblp_feed.requests.get", return_value=bad):
        result = search_records("anything", max_hits=5)

    assert result.records == []
    assert result.error is not None


def test_search_records_treats_unexpected_payload_as_failed_mirror() -> None:
    good = _payload(_hit("a/1", "Valid.", {"text": "A"}, year="2001"))

    with patch("dblp_feed.requests.get",
               side_effect=[_mock_resp(["not", "an", "object"]), _mock_resp(good)]) as mock_get:
        result = search_records("valid", max_hits=5)

    assert mock_get.call_count == 2
    assert result.error is None
    assert [r.identifier for r in result.records] == ["DBLP:a/1"]


def test_search_records_unexpected_payload_everywhere() -> None:
    with patch("dblp_feed.requests.get", return_value=_mock_resp(["not", "an", "object"])):
        result = search_records("anything", max_hits=5)

    assert result.records == []
    assert "Unexpected DBLP payload shape" in result.error


def test_max_hits_env_var() -> None:
    with patch.dict("os.environ", {"DBLP_MAX_HITS": "7"}), \
         patch("dblp_feed.requests.get", return_value=_mock_resp(_payload())) as mock_get:
        search_records("x")

    assert mock_get.call_args.kwargs["params"]["h"] == 7


def test_mirrors_env_var() -> None:
    with patch.dict("os.environ", {"DBLP_MIRRORS": "https://a.example/, https://b.example"}):
        assert mirrors() == ["https://a.example", "https://b.example"]


def test_bib_url() -> None:
    record = Record(title="T", identifier="DBLP:books/aw/Knuth68")
    with patch.dict("os.environ", {"DBLP_MIRRORS": "https://dblp.org"}):
        assert bib_url(record) == "https://dblp.org/rec/books/aw/Knuth68.bib?param=1"
        assert bib_url(record, standard=False) == "https://dblp.org/rec/books/aw/Knuth68.bib?param=0"
    assert bib_url(Record(title="T", identifier="local1")) is None


@pytest.mark.parametrize("key, expected", [
    ("phd/dnb/Smith20", RecordKind.PHDTHESIS),
    ("ms/Doe19", RecordKind.MASTERSTHESIS),
    ("books/aw/Knuth68", RecordKind.BOOK),
])
def test_parse_hits_tells_theses_from_books(key: str, expected: RecordKind) -> None:
    payload = _payload(_hit(key, "A Long Work.", {"text": "A"}, year="2019"))
    assert parse_hits(payload)[0].kind is expected
