"""OpenAlex API client with bounded-parallel bulk lookups."""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Literal
from urllib.parse import quote

import requests

from identifiers import chunk, normalize_id, parse_doi
from models import AuthorProfile, AutocompleteResult, FetchResult, Paper, SlimPaper
from paper_formatter import (
    format_author_profile,
    format_autocomplete_result,
    format_paper,
    format_slim_paper,
    format_work_hint,
)

DEFAULT_API_URL = "https://api.openalex.org"
DEFAULT_EMAIL = "citation-graph@example.org"
DEFAULT_TIMEOUT_SECONDS = 20.0
DEFAULT_PARALLEL_REQUESTS = 10
MAX_PER_PAGE = 200
MAX_FILTER_IDS = 100

LOGGER = logging.getLogger(__name__)

Projection = Literal["slim", "full"]

# Full fields for papers that end up in the graph
FULL_FIELDS = ",".join([
    "id",
    "doi",
    "title",
    "authorships",
    "publication_year",
    "cited_by_count",
    "referenced_works",
    "type",
    "language",
    "open_access",
    "primary_location",
    "abstract_inverted_index",
    "fwci",
    "citation_normalized_percentile",
    "primary_topic",
    "sustainable_development_goals",
    "keywords",
    "is_retracted",
])

# Slim fields for intermediate papers (ranking only)
SLIM_FIELDS = ",".join(["id", "publication_year", "cited_by_count", "referenced_works"])

_FORMATTERS: dict[str, Callable[[dict[str, Any]], Paper | SlimPaper]] = {
    "slim": format_slim_paper,
    "full": format_paper,
}
_FIELDS: dict[str, str] = {"slim": SLIM_FIELDS, "full": FULL_FIELDS}


class OpenAlexClient:
    """Thin client over the OpenAlex REST API.

    Every request goes through :meth:`_get_json`, which counts the call and
    converts transport and decode errors into a failed :class:`FetchResult`.
    Nothing in here raises on a network problem or a malformed record;
    callers decide what a missing result means.

    Settings left as ``None`` are read from the environment when the client
    is created (``OPENALEX_API_URL``, ``OPENALEX_EMAIL``,
    ``OPENALEX_USER_AGENT``, ``OPENALEX_TIMEOUT_SECONDS``,
    ``OPENALEX_MAX_PARALLEL_REQUESTS``).
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        base_url: str | None = None,
        email: str | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
        max_filter_ids: int = MAX_FILTER_IDS,
        max_parallel_requests: int | None = None,
        max_per_page: int = MAX_PER_PAGE,
    ) -> None:
        base_url = base_url or os.getenv("OPENALEX_API_URL", DEFAULT_API_URL)
        email = email or os.getenv("OPENALEX_EMAIL", DEFAULT_EMAIL)
        user_agent = user_agent or os.getenv(
            "OPENALEX_USER_AGENT", f"CitationGraphBuilder/1.0 (mailto:{email})"
        )
        if timeout is None:
            timeout = float(os.getenv("OPENALEX_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
        if max_parallel_requests is None:
            max_parallel_requests = int(
                os.getenv("OPENALEX_MAX_PARALLEL_REQUESTS", str(DEFAULT_PARALLEL_REQUESTS))
            )

        if max_filter_ids < 1 or max_parallel_requests < 1 or max_per_page < 1:
            raise ValueError("max_filter_ids, max_parallel_requests and max_per_page must be >= 1")
        # one bulk request returns a single page, so a chunk must fit in it
        if max_filter_ids > max_per_page:
            raise ValueError("max_filter_ids must not exceed max_per_page")
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self.email = email
        self.timeout = timeout
        self.max_filter_ids = max_filter_ids
        self.max_parallel_requests = max_parallel_requests
        self.max_per_page = max_per_page
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._call_count = 0
        self._lock = threading.Lock()

    # --- call accounting ---

    @property
    def call_count(self) -> int:
        with self._lock:
            return self._call_count

    def reset_call_count(self) -> None:
        with self._lock:
            self._call_count = 0

    def _record_call(self, endpoint: str, detail: str) -> None:
        with self._lock:
            self._call_count += 1
        LOGGER.debug("OpenAlex call %s: %s", endpoint, detail)

    def _get_json(self, path: str, params: dict[str, Any] | None = None, *, detail: str = "") -> FetchResult[dict]:
        self._record_call(path, detail)
        query = dict(params or {})
        query["mailto"] = self.email
        try:
            response = self.session.get(
                f"{self.base_url}{path}",
                params=query,
                headers=self._headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            LOGGER.warning("OpenAlex request failed path=%s detail=%s: %s", path, detail, exc)
            return FetchResult.failure(str(exc))
        except ValueError as exc:
            LOGGER.warning("OpenAlex returned invalid JSON path=%s detail=%s: %s", path, detail, exc)
            return FetchResult.failure(f"invalid JSON: {exc}")

        if not isinstance(body, dict):
            LOGGER.warning("OpenAlex returned unexpected payload path=%s detail=%s", path, detail)
            return FetchResult.failure("unexpected payload shape: expected an object")
        return FetchResult.success(body)

    @staticmethod
    def _format_record(formatter: Callable[[dict[str, Any]], Any], raw: Any, detail: str) -> Any | None:
        """Apply *formatter* to one raw record; a malformed record is logged and dropped."""
        if not isinstance(raw, dict):
            return None
        try:
            return formatter(raw)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Dropping malformed OpenAlex record id=%s detail=%s: %s", raw.get("id"), detail, exc)
            return None

    # --- single works ---

    def fetch_work(self, work_id: str) -> FetchResult[Paper]:
        """Fetch one work in the full projection."""
        if not work_id:
            return FetchResult.failure("empty work id")
        result = self._get_json(f"/works/{quote(work_id, safe=':/')}", detail=f"single paper: {work_id[:30]}")
        if not result.ok:
            return FetchResult.failure(result.error or "request failed")
        paper = self._format_record(format_paper, result.value, f"single paper: {work_id[:30]}")
        if paper is None:
            return FetchResult.failure(f"work {work_id} is malformed")
        if not paper.id:
            return FetchResult.failure(f"work {work_id} has no id")
        return FetchResult.success(paper)

    def fetch_paper(self, work_id: str) -> Paper | None:
        result = self.fetch_work(work_id)
        if not result.ok:
            LOGGER.error("Error fetching %s: %s", work_id, result.error)
        return result.value

    # --- bulk lookups ---

    def _fetch_chunk(self, batch: list[str], projection: Projection) -> FetchResult[dict[str, Paper | SlimPaper]]:
        params = {
            "filter": f"openalex:{'|'.join(batch)}",
            "select": _FIELDS[projection],
            "per_page": self.max_per_page,
        }
        result = self._get_json("/works", params, detail=f"{projection} batch: {len(batch)} ids")
        if not result.ok:
            return FetchResult.failure(result.error or "request failed")

        formatter = _FORMATTERS[projection]
        records: dict[str, Paper | SlimPaper] = {}
        detail = f"{projection} batch: {len(batch)} ids"
        for work in result.value.get("results") or []:
            record = self._format_record(formatter, work, detail)
            if record is not None and record.id:
                records[record.id] = record
        return FetchResult.success(records)

    def fetch_bulk(
        self,
        ids: Iterable[str],
        projection: Projection = "slim",
        on_batch_complete: Callable[[], None] | None = None,
    ) -> dict[str, Paper | SlimPaper]:
        """Fetch many works by id.

        Ids are split into chunks of at most ``max_filter_ids``; chunks run in
        groups of ``max_parallel_requests`` and each group finishes before the
        next starts. ``on_batch_complete`` fires once per chunk, in chunk
        order. A failed chunk is logged and skipped.
        """
        if projection not in _FORMATTERS:
            raise ValueError(f"Unknown projection: {projection!r}")
        unique_ids = list(dict.fromkeys(work_id for work_id in ids if work_id))
        if not unique_ids:
            return {}

        batches = chunk(unique_ids, self.max_filter_ids)
        records: dict[str, Paper | SlimPaper] = {}
        failed_chunks = 0

        with ThreadPoolExecutor(max_workers=self.max_parallel_requests) as executor:
            for start in range(0, len(batches), self.max_parallel_requests):
                group = batches[start:start + self.max_parallel_requests]
                results = list(executor.map(lambda batch: self._fetch_chunk(batch, projection), group))

                for result in results:
                    if result.ok:
                        records.update(result.value)
                    else:
                        failed_chunks += 1

                if on_batch_complete:
                    for _ in group:
                        on_batch_complete()

        LOGGER.info(
            "Bulk fetch: projection=%s requested=%s chunks=%s failed_chunks=%s returned=%s",
            projection,
            len(unique_ids),
            len(batches),
            failed_chunks,
            len(records),
        )
        return records

    def fetch_bulk_slim(
        self, ids: Iterable[str], on_batch_complete: Callable[[], None] | None = None
    ) -> dict[str, SlimPaper]:
        return self.fetch_bulk(ids, "slim", on_batch_complete)  # type: ignore[return-value]

    def fetch_bulk_full(
        self, ids: Iterable[str], on_batch_complete: Callable[[], None] | None = None
    ) -> dict[str, Paper]:
        return self.fetch_bulk(ids, "full", on_batch_complete)  # type: ignore[return-value]

    # --- citations ---

    def fetch_citing(self, work_id: str, limit: int) -> list[str]:
        """Return up to *limit* ids of works citing *work_id*.

        Pages are requested until *limit* is reached or the listing runs out.
        A failed page ends the listing with whatever was gathered so far.
        """
        if not work_id or limit < 1:
            return []
        per_page = min(limit, self.max_per_page)
        citing: list[str] = []
        page = 1
        while len(citing) < limit:
            result = self._get_json(
                "/works",
                {"filter": f"cites:{work_id}", "select": "id", "per_page": per_page, "page": page},
                detail=f"citing papers for {work_id[:20]}, limit {limit}, page {page}",
            )
            if not result.ok:
                LOGGER.error("Error fetching citations for %s: %s", work_id, result.error)
                break
            works = result.value.get("results") or []
            citing.extend(
                citing_id
                for citing_id in (normalize_id(work.get("id")) for work in works if isinstance(work, dict))
                if citing_id
            )
            if len(works) < per_page:
                break
            page += 1
        return list(dict.fromkeys(citing))[:limit]

    # --- authors ---

    def fetch_author(self, author_id: str) -> AuthorProfile | None:
        if not author_id:
            return None
        result = self._get_json(f"/authors/{quote(author_id, safe=':/')}", detail=f"author: {author_id}")
        if not result.ok:
            LOGGER.error("Error fetching author %s: %s", author_id, result.error)
            return None
        profile = self._format_record(format_author_profile, result.value, f"author: {author_id}")
        return profile if profile is not None and profile.id else None

    def fetch_author_works(
        self,
        author_id: str,
        limit: int,
        on_page_complete: Callable[[], None] | None = None,
    ) -> dict[str, Paper]:
        """Fetch up to *limit* works by an author, most cited first."""
        if not author_id or limit < 1:
            return {}
        per_page = min(limit, self.max_per_page)
        works: dict[str, Paper] = {}
        page = 1
        while len(works) < limit:
            result = self._get_json(
                "/works",
                {
                    "filter": f"author.id:{author_id}",
                    "select": FULL_FIELDS,
                    "sort": "cited_by_count:desc",
                    "per_page": per_page,
                    "page": page,
                },
                detail=f"works by {author_id}, page {page}",
            )
            if not result.ok:
                break
            page_works = result.value.get("results") or []
            for work in page_works:
                if len(works) >= limit:
                    break
                paper = self._format_record(format_paper, work, f"works by {author_id}")
                if paper is not None and paper.id:
                    works[paper.id] = paper
            if on_page_complete:
                on_page_complete()
            if len(page_works) < per_page:
                break
            page += 1
        return works

    # --- search ---

    def fetch_work_by_doi(self, doi: str) -> AutocompleteResult | None:
        """Resolve a DOI directly, shaped like an autocomplete hit."""
        result = self._get_json(
            f"/works/{quote(f'https://doi.org/{doi}', safe='')}", detail=f"doi lookup: {doi}"
        )
        if not result.ok:
            return None
        work = result.value
        return AutocompleteResult(
            id=normalize_id(work.get("id")),
            display_name=work.get("title") or "Untitled",
            hint=format_work_hint(work),
            cited_by_count=work.get("cited_by_count") or 0,
            entity_type="work",
            external_id=work.get("doi") or None,
        )

    def fetch_autocomplete(self, query: str) -> list[AutocompleteResult]:
        """Search works by free text; DOI queries are resolved directly first."""
        query = (query or "").strip()
        if not query:
            return []

        doi = parse_doi(query)
        if doi:
            direct = self.fetch_work_by_doi(doi)
            if direct:
                return [direct]
            LOGGER.info("DOI %s not found, falling back to autocomplete", doi)

        result = self._get_json(
            "/autocomplete/works",
            {"q": query, "filter": "has_doi:true"},
            detail=f"autocomplete: {query[:30]}",
        )
        if not result.ok:
            return []
        hits = (
            self._format_record(format_autocomplete_result, item, f"autocomplete: {query[:30]}")
            for item in result.value.get("results") or []
        )
        return [hit for hit in hits if hit is not None]
