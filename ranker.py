"""Client-side relevance ranking and filtering for paper search (no LLM calls)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from models import Paper

if TYPE_CHECKING:
    from data_store import DataStore

DOMAIN_MATCH_BONUS = 0.1
MAX_DISPLAY_SIMILARITY = 0.99

DATE_RANGES: dict[str, timedelta | None] = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
    "all": None,
}
SORT_OPTIONS: frozenset[str] = frozenset({
    "relevance",
    "date_desc",
    "date_asc",
    "complexity_asc",
    "complexity_desc",
})
COMPLEXITY_BUCKETS: tuple[str, ...] = ("basic", "intermediate", "advanced", "expert")

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_OLDEST = datetime.min.replace(tzinfo=UTC)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SearchFilters:
    """All filters are optional and AND-combined; empty sets mean "any"."""

    date_range: str = "all"
    complexity: frozenset[str] = field(default_factory=frozenset)
    domains: frozenset[str] = field(default_factory=frozenset)
    sort_by: str = "relevance"


@dataclass(frozen=True, slots=True)
class RankedPaper:
    paper: Paper
    score: float
    similarity_score: float


def tokenize(text: str) -> set[str]:
    """Lowercase, drop everything outside [a-z0-9 whitespace], split on whitespace."""
    cleaned = _NON_ALNUM.sub("", (text or "").lower())
    return {token for token in cleaned.split() if token}


def jaccard_similarity(left: set[str], right: set[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def complexity_score(paper: Paper) -> float | None:
    value = paper.analysis.get("complexity_score")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def complexity_bucket(score: float | None) -> str:
    if score is None:
        return "unknown"
    if score <= 3:
        return "basic"
    if score <= 6:
        return "intermediate"
    if score <= 8:
        return "advanced"
    return "expert"


def normalize_domain(domain: str) -> str:
    return _WHITESPACE.sub("_", domain.strip().lower())


def paper_domains(paper: Paper) -> set[str]:
    domains: set[str] = set()
    primary = paper.analysis.get("domain_primary")
    if isinstance(primary, str) and primary.strip():
        domains.add(normalize_domain(primary))
    secondary = paper.analysis.get("domain_secondary")
    if isinstance(secondary, list):
        domains.update(normalize_domain(d) for d in secondary if isinstance(d, str) and d.strip())
    return domains


def matches_date_range(paper: Paper, date_range: str, now: datetime) -> bool:
    window = DATE_RANGES.get(date_range)
    if window is None or paper.created_at is None:
        return True
    return paper.created_at >= now - window


def matches_complexity(paper: Paper, buckets: frozenset[str]) -> bool:
    if not buckets:
        return True
    bucket = complexity_bucket(complexity_score(paper))
    return bucket != "unknown" and bucket in buckets


def matches_domains(paper: Paper, domains: frozenset[str]) -> bool:
    if not domains:
        return True
    wanted = {normalize_domain(d) for d in domains}
    return bool(paper_domains(paper) & wanted)


def _domain_bonus(paper: Paper, raw_query: str) -> float:
    primary = paper.analysis.get("domain_primary")
    if isinstance(primary, str) and primary.strip() and primary.lower() in raw_query.lower():
        return DOMAIN_MATCH_BONUS
    return 0.0


def _sort_key(sort_by: str):
    if sort_by == "date_desc" or sort_by == "date_asc":
        return lambda r: r.paper.created_at or _OLDEST
    if sort_by == "complexity_asc" or sort_by == "complexity_desc":
        return lambda r: complexity_score(r.paper) or 0.0
    return lambda r: r.score


def rank_papers(
    query: str,
    papers: list[Paper],
    filters: SearchFilters | None = None,
    now: datetime | None = None,
) -> list[RankedPaper]:
    """Score, filter and order papers against a free-text query.

    Relevance is the Jaccard index of query tokens against title and content
    tokens, plus DOMAIN_MATCH_BONUS when the paper's primary domain appears in
    the query. A paper is kept if that index is positive or its title contains
    the raw query. Ties keep the input order.
    """
    filters = filters or SearchFilters()
    now = now or datetime.now(UTC)
    query_tokens = tokenize(query)
    needle = query.lower()

    results: list[RankedPaper] = []
    for paper in papers:
        paper_tokens = tokenize(paper.title) | tokenize(paper.content)
        similarity = jaccard_similarity(query_tokens, paper_tokens)
        title_hit = bool(needle) and needle in (paper.title or "").lower()
        if similarity <= 0 and not title_hit:
            continue
        if not matches_date_range(paper, filters.date_range, now):
            continue
        if not matches_complexity(paper, filters.complexity):
            continue
        if not matches_domains(paper, filters.domains):
            continue

        score = similarity + _domain_bonus(paper, query)
        results.append(
            RankedPaper(
                paper=paper,
                score=score,
                similarity_score=min(max(score, 0.0), MAX_DISPLAY_SIMILARITY),
            )
        )

    sort_by = filters.sort_by if filters.sort_by in SORT_OPTIONS else "relevance"
    descending = sort_by in {"relevance", "date_desc", "complexity_desc"}
    results.sort(key=_sort_key(sort_by), reverse=descending)

    LOGGER.info(
        "Ranked query=%r candidates=%s matched=%s sort_by=%s",
        query,
        len(papers),
        len(results),
        sort_by,
    )
    return results


def perform_search(query: str, store: DataStore, filters: SearchFilters | None = None) -> list[RankedPaper]:
    """Search the papers visible to the current user; blank queries return nothing."""
    if not query or not query.strip():
        return []
    return rank_papers(query, store.get_papers(), filters)


def describe_result(result: RankedPaper) -> dict[str, Any]:
    """Flatten a ranked result for display, attaching the similarity to the analysis."""
    row = result.paper.to_dict()
    row["analysis"] = {**result.paper.analysis, "similarity_score": round(result.similarity_score, 4)}
    row["complexity_bucket"] = complexity_bucket(complexity_score(result.paper))
    return row
