from __future__ import annotations

import pytest

from identifiers import chunk, from_numeric_id, normalize_id, parse_doi, resolve_work_id, to_numeric_id


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("W2741809807", "W2741809807"),
        ("https://openalex.org/W2741809807", "W2741809807"),
        ("http://openalex.org/W2741809807", "W2741809807"),
        ("https://api.openalex.org/works/W2741809807", "W2741809807"),
        ("https://openalex.org/authors/A5023888391", "A5023888391"),
        ("  https://openalex.org/W1/  ", "W1"),
        ("https://doi.org/10.1000/xyz", "https://doi.org/10.1000/xyz"),
        ("10.1000/xyz", "10.1000/xyz"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_id(raw: str | None, expected: str) -> None:
    assert normalize_id(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "W42",
        "https://openalex.org/W42",
        "https://api.openalex.org/works/W42",
        "https://doi.org/10.1000/xyz",
        "not an id at all",
        "",
    ],
)
def test_normalize_id_is_idempotent(raw: str) -> None:
    once = normalize_id(raw)
    assert normalize_id(once) == once


def test_normalize_full_url_form_round_trips_to_key() -> None:
    for key in ("W1", "W2741809807", "A5023888391"):
        assert normalize_id(f"https://openalex.org/{key}") == key


@pytest.mark.parametrize(
    "raw",
    [
        "10.1000/xyz",
        "https://doi.org/10.1000/xyz",
        "http://dx.doi.org/10.1000/xyz",
        "doi.org/10.1000/xyz",
        "HTTPS://DOI.ORG/10.1000/xyz",
        "  10.1000/xyz  ",
    ],
)
def test_parse_doi_accepts_supported_forms(raw: str) -> None:
    assert parse_doi(raw) == "10.1000/xyz"


@pytest.mark.parametrize(
    "raw",
    ["W123", "hello world", "10.12/too-short-prefix", "https://example.org/10.1000/xyz", "", None],
)
def test_parse_doi_rejects_non_dois(raw: str | None) -> None:
    assert parse_doi(raw) is None


def test_resolve_work_id_promotes_dois() -> None:
    assert resolve_work_id("10.1000/xyz") == "https://doi.org/10.1000/xyz"
    assert resolve_work_id("http://dx.doi.org/10.1000/xyz") == "https://doi.org/10.1000/xyz"
    assert resolve_work_id("https://openalex.org/W7") == "W7"


def test_numeric_id_conversion_is_lossless() -> None:
    for key in ("W0", "W1", "W2741809807"):
        assert from_numeric_id(to_numeric_id(key)) == key
    assert from_numeric_id(to_numeric_id("A5023888391"), prefix="A") == "A5023888391"


@pytest.mark.parametrize("bad", ["", "W", "W01", "12345", "https://openalex.org/W1", "W12x"])
def test_to_numeric_id_rejects_non_numeric_keys(bad: str) -> None:
    with pytest.raises(ValueError):
        to_numeric_id(bad)


def test_chunk_preserves_order_and_sizes() -> None:
    assert chunk(list(range(7)), 3) == [[0, 1, 2], [3, 4, 5], [6]]
    assert chunk([], 3) == []
    with pytest.raises(ValueError):
        chunk([1], 0)
