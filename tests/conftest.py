"""Shared fixtures: an in-memory stand-in for the OpenAlex REST API."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable
from urllib.parse import unquote, urlparse

import pytest
import requests

from openalex_client import OpenAlexClient

OA = "https://openalex.org/"
TEST_BASE_URL = "https://api.test"


def work(
    work_id: str,
    year: int,
    refs: list[str] | None = None,
    cited_by: int = 1,
    **extra: Any,
) -> dict[str, Any]:
    """Raw OpenAlex work JSON with URL-form ids, like the real API."""
    payload: dict[str, Any] = {
        "id": OA + work_id,
        "publication_year": year,
        "cited_by_count": cited_by,
        "referenced_works": [OA + ref for ref in (refs or [])],
        "title": f"Paper {work_id}",
    }
    payload.update(extra)
    return payload


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeCatalog:
    """Answers the endpoints OpenAlexClient uses from a dict of works.

    Records every request and the peak number of concurrent requests.
    ``fail_when`` receives the id list of a bulk request and may return True
    to make that request fail with a connection error.
    """

    def __init__(
        self,
        works: list[dict[str, Any]] | None = None,
        authors: list[dict[str, Any]] | None = None,
        autocomplete: list[dict[str, Any]] | None = None,
        fail_when: Callable[[list[str]], bool] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.works = {w["id"].removeprefix(OA): w for w in works or []}
        self.authors = {a["id"].removeprefix(OA): a for a in authors or []}
        self.autocomplete = autocomplete or []
        self.fail_when = fail_when
        self.delay = delay
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def get(self, url: str, params: dict[str, Any] | None = None, headers: Any = None, timeout: Any = None):
        params = dict(params or {})
        with self._lock:
            self.requests.append((url, params))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            return self._route(unquote(urlparse(url).path), params)
        finally:
            with self._lock:
                self.in_flight -= 1

    def bulk_requests(self) -> list[list[str]]:
        return [
            params["filter"].removeprefix("openalex:").split("|")
            for _, params in self.requests
            if str(params.get("filter", "")).startswith("openalex:")
        ]

    def _route(self, path: str, params: dict[str, Any]) -> FakeResponse:
        if path.startswith("/works/"):
            return self._single_work(path.removeprefix("/works/"))
        if path.startswith("/authors/"):
            author = self.authors.get(path.removeprefix("/authors/"))
            return FakeResponse(author) if author else FakeResponse({"error": "not found"}, 404)
        if path == "/autocomplete/works":
            return FakeResponse({"results": self.autocomplete})
        if path == "/works":
            return self._list_works(params)
        return FakeResponse({"error": "unknown path"}, 404)

    def _single_work(self, key: str) -> FakeResponse:
        if key.startswith("https://doi.org/"):
            doi_url = key
            found = next((w for w in self.works.values() if w.get("doi") == doi_url), None)
        else:
            found = self.works.get(key)
        return FakeResponse(found) if found else FakeResponse({"error": "not found"}, 404)

    def _list_works(self, params: dict[str, Any]) -> FakeResponse:
        filter_value = str(params.get("filter", ""))
        if filter_value.startswith("openalex:"):
            ids = filter_value.removeprefix("openalex:").split("|")
            if self.fail_when and self.fail_when(ids):
                raise requests.ConnectionError("simulated chunk failure")
            return FakeResponse({"results": [self.works[i] for i in ids if i in self.works]})

        if filter_value.startswith("cites:"):
            target = OA + filter_value.removeprefix("cites:")
            matches = [{"id": w["id"]} for w in self.works.values() if target in w.get("referenced_works", [])]
        elif filter_value.startswith("author.id:"):
            author_url = OA + filter_value.removeprefix("author.id:")
            matches = [
                w
                for w in self.works.values()
                if any(a.get("author", {}).get("id") == author_url for a in w.get("authorships", []))
            ]
        else:
            return FakeResponse({"error": "unsupported filter"}, 400)

        per_page = int(params.get("per_page", 25))
        page = int(params.get("page", 1))
        return FakeResponse({"results": matches[(page - 1) * per_page:page * per_page]})


def make_client(catalog: FakeCatalog, **kwargs: Any) -> OpenAlexClient:
    return OpenAlexClient(session=catalog, base_url=TEST_BASE_URL, email="test@example.org", **kwargs)


# ---------------------------------------------------------------------------
# Synthetic citation neighbourhood used by the end-to-end tests.
#
#   Source S  = W100 (2015) cites R1, R2, R3
#   Root seeds:       R1 = W1 (2010) cites C1, C2
#                     R2 = W2 (2011) cites C1, C3
#                     R3 = W3 (2012) cites C1, R1
#   Root candidates:  C1 = W11 (2000), C2 = W12 (2001) cites C1, C3 = W13 (2002)
#   Works citing S:   B1 = W201 (2018) cites S, C1, X1, X2
#                     B2 = W202 (2019) cites S, X1, X2, R2
#                     E  = W203 (2015, same year as S: dropped)
#                     Z  = W204 (2020, never cited: dropped)
#   Branch candidates (cited by both B1 and B2):
#                     X1 = W301 (2017) cites R1
#                     X2 = W302 (2016) cites R3
# ---------------------------------------------------------------------------


@pytest.fixture()
def neighbourhood_works() -> list[dict[str, Any]]:
    return [
        work("W100", 2015, ["W1", "W2", "W3"], cited_by=50, doi="https://doi.org/10.1234/source"),
        work("W1", 2010, ["W11", "W12"], cited_by=30),
        work("W2", 2011, ["W11", "W13"], cited_by=20),
        work("W3", 2012, ["W11", "W1"], cited_by=10),
        work("W11", 2000, [], cited_by=100),
        work("W12", 2001, ["W11"], cited_by=40),
        work("W13", 2002, [], cited_by=5),
        work("W201", 2018, ["W100", "W11", "W301", "W302"], cited_by=5),
        work("W202", 2019, ["W100", "W301", "W302", "W2"], cited_by=3),
        work("W203", 2015, ["W100", "W301"], cited_by=10),
        work("W204", 2020, ["W100", "W301"], cited_by=0),
        work("W301", 2017, ["W1"], cited_by=4),
        work("W302", 2016, ["W3"], cited_by=2),
    ]


@pytest.fixture()
def neighbourhood(neighbourhood_works: list[dict[str, Any]]) -> FakeCatalog:
    return FakeCatalog(neighbourhood_works)
