"""Normalize raw OpenAlex JSON into the pipeline's typed records."""

from __future__ import annotations

from typing import Any, Mapping

from identifiers import normalize_id
from models import (
    Author,
    AuthorProfile,
    AutocompleteResult,
    CitationPercentile,
    Paper,
    PrimaryTopic,
    Sdg,
    SlimPaper,
    TopicClassification,
)

MAX_AUTHORS_IN_PAPER = 5


def reconstruct_abstract(inverted_index: Mapping[str, list[int]] | None) -> str:
    """Rebuild abstract text from OpenAlex's ``word -> [positions]`` encoding.

    Anything that is not a word-to-position-list mapping yields ``""``;
    non-integer positions are skipped.
    """
    if not isinstance(inverted_index, dict):
        return ""
    words: list[tuple[str, int]] = []
    for word, positions in inverted_index.items():
        for position in _as_list(positions):
            if isinstance(position, int) and not isinstance(position, bool):
                words.append((str(word), position))
    words.sort(key=lambda pair: pair[1])
    return " ".join(word for word, _ in words)


def format_paper(work: Mapping[str, Any]) -> Paper:
    """Format a full-projection work.

    Missing fields degrade to defaults; this never raises on a dict input.
    """
    references = tuple(
        ref_id for ref_id in (normalize_id(ref) for ref in _as_list(work.get("referenced_works"))) if ref_id
    )
    primary_location = _as_dict(work.get("primary_location"))
    venue = _as_dict(primary_location.get("source"))

    keywords = tuple(
        kw["keyword"] for kw in _as_list(work.get("keywords")) if isinstance(kw, dict) and kw.get("keyword")
    )
    sdgs = _format_sdgs(work.get("sustainable_development_goals"))

    return Paper(
        id=normalize_id(work.get("id")),
        year=_as_int(work.get("publication_year")),
        title=work.get("title") or "",
        authors=_format_authors(work.get("authorships")),
        citation_count=_as_int(work.get("cited_by_count")),
        references_count=len(references),
        references=references,
        doi=work.get("doi") or None,
        source_url=work.get("id") or None,
        type=work.get("type") or None,
        venue_type=venue.get("type") or None,
        venue_name=venue.get("display_name") or None,
        open_access=_as_dict(work.get("open_access")).get("is_oa"),
        language=work.get("language") or None,
        abstract=reconstruct_abstract(work.get("abstract_inverted_index")),
        fwci=work.get("fwci"),
        citation_percentile=_format_percentile(work.get("citation_normalized_percentile")),
        primary_topic=_format_primary_topic(work.get("primary_topic")),
        sdgs=sdgs or None,
        keywords=keywords or None,
        is_retracted=work.get("is_retracted"),
    )


def format_slim_paper(work: Mapping[str, Any]) -> SlimPaper:
    """Format a slim-projection work for ranking."""
    return SlimPaper(
        id=normalize_id(work.get("id")),
        year=_as_int(work.get("publication_year")),
        citation_count=_as_int(work.get("cited_by_count")),
        references=tuple(
            ref_id for ref_id in (normalize_id(ref) for ref in _as_list(work.get("referenced_works"))) if ref_id
        ),
    )


def format_author_profile(author: Mapping[str, Any]) -> AuthorProfile:
    institutions = _as_list(author.get("last_known_institutions"))
    first_institution = institutions[0] if institutions and isinstance(institutions[0], dict) else {}
    stats = _as_dict(author.get("summary_stats"))
    return AuthorProfile(
        id=normalize_id(author.get("id")),
        display_name=author.get("display_name") or "",
        orcid=author.get("orcid") or None,
        affiliation=first_institution.get("display_name") or None,
        works_count=_as_int(author.get("works_count")),
        cited_by_count=_as_int(author.get("cited_by_count")),
        h_index=_as_int(stats.get("h_index")),
        i10_index=_as_int(stats.get("i10_index")),
    )


def format_work_hint(work: Mapping[str, Any]) -> str | None:
    """``"First Author, 2021"`` style hint for a directly resolved work."""
    authorships = _as_list(work.get("authorships"))
    first_author = None
    if authorships and isinstance(authorships[0], dict):
        first_author = _as_dict(authorships[0].get("author")).get("display_name") or None
    year = work.get("publication_year")
    if first_author and year:
        return f"{first_author}, {year}"
    if first_author:
        return first_author
    return str(year) if year else None


def format_autocomplete_result(result: Mapping[str, Any]) -> AutocompleteResult:
    return AutocompleteResult(
        id=normalize_id(result.get("id")),
        display_name=result.get("display_name") or "",
        hint=result.get("hint"),
        cited_by_count=_as_int(result.get("cited_by_count")),
        entity_type=result.get("entity_type") or "work",
        external_id=result.get("external_id"),
    )


def _format_authors(authorships: Any) -> tuple[Author, ...]:
    authors: list[Author] = []
    for authorship in _as_list(authorships)[:MAX_AUTHORS_IN_PAPER]:
        if not isinstance(authorship, dict):
            continue
        author = _as_dict(authorship.get("author"))
        institutions = _as_list(authorship.get("institutions"))
        institution = institutions[0] if institutions and isinstance(institutions[0], dict) else None
        authors.append(
            Author(
                name=author.get("display_name") or "",
                id=normalize_id(author.get("id")) or None,
                orcid=author.get("orcid") or None,
                affiliation=(institution.get("display_name") or "") if institution else None,
                affiliation_country=(institution.get("country_code") or "") if institution else None,
            )
        )
    return tuple(authors)


def _format_primary_topic(topic: Any) -> PrimaryTopic | None:
    topic = _as_dict(topic)
    if not topic.get("display_name"):
        return None
    return PrimaryTopic(
        id=topic.get("id") or "",
        name=topic["display_name"],
        subfield=_classification(topic.get("subfield")),
        field=_classification(topic.get("field")),
        domain=_classification(topic.get("domain")),
    )


def _classification(raw: Any) -> TopicClassification:
    raw = _as_dict(raw)
    return TopicClassification(id=raw.get("id") or "", name=raw.get("display_name") or "")


def _format_percentile(raw: Any) -> CitationPercentile | None:
    raw = _as_dict(raw)
    value = raw.get("value")
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    return CitationPercentile(
        value=value,
        is_in_top_1_percent=bool(raw.get("is_in_top_1_percent")) or value >= 99,
        is_in_top_10_percent=bool(raw.get("is_in_top_10_percent")) or value >= 90,
    )


def _format_sdgs(raw: Any) -> tuple[Sdg, ...]:
    return tuple(
        Sdg(id=sdg.get("id") or "", name=sdg["display_name"], score=sdg["score"] or 0)
        for sdg in _as_list(raw)
        if isinstance(sdg, dict) and sdg.get("display_name") and sdg.get("score") is not None
    )


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0
