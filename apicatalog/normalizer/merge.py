"""
Merge engine for combining catalog sources.

Pure functions that combine raw results from the primary, secondary and
custom catalogs into one view. Two-way merges always let the second
argument win conflicts; N-way merges fold pairwise in increasing
precedence (primary, secondary, custom), so custom beats secondary beats
primary.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence, Union

from apicatalog.normalizer.schemas import (
    SOURCE_PRECEDENCE,
    ApiSummary,
    DirectoryMetrics,
    ProviderStats,
    latest_update,
    parse_timestamp,
    preferred_version,
)
from apicatalog.normalizer.validation import (
    coerce_count,
    paginate,
    validate_metrics,
    validate_providers,
)

logger = logging.getLogger(__name__)

SearchInput = Union[dict, Sequence[Union[dict, ApiSummary]], None]

# Relevance scores, highest first
SCORE_EXACT_PROVIDER = 100
SCORE_PROVIDER_CONTAINS = 80
SCORE_ID_PREFIX = 60
SCORE_ID_CONTAINS = 40
SCORE_TITLE_CONTAINS = 20
SCORE_FALLBACK = 10


# ========== Providers and catalogs ==========


def merge_providers(primary: Any, secondary: Any) -> dict:
    """
    Union two provider lists.

    Names keep their case, duplicates are dropped, and the result is
    sorted ascending.

    Args:
        primary: ``{"data": [...]}`` or a list of names
        secondary: ``{"data": [...]}`` or a list of names

    Returns:
        ``{"data": [...]}``
    """
    names: set[str] = set()
    for label, raw in (("primary", primary), ("secondary", secondary)):
        providers, issues = validate_providers(raw)
        for issue in issues:
            logger.warning(f"Provider list from {label}: {issue}")
        names.update(providers)

    return {"data": sorted(names)}


def merge_api_lists(primary: Optional[dict], secondary: Optional[dict]) -> dict:
    """
    Union two identifier -> record maps; secondary overrides primary.

    Example:
        >>> merge_api_lists({"x": {"v": 1}}, {"x": {"v": 2}})
        {'x': {'v': 2}}
    """
    primary = primary if isinstance(primary, dict) else {}
    secondary = secondary if isinstance(secondary, dict) else {}

    conflicts = primary.keys() & secondary.keys()
    if conflicts:
        logger.debug(f"Merging catalogs: {len(conflicts)} identifiers overridden by higher precedence")

    merged = dict(primary)
    merged.update(secondary)
    return merged


def merge_catalogs(*catalogs: Optional[dict]) -> dict:
    """Fold any number of catalogs, lowest precedence first."""
    merged: dict = {}
    for catalog in catalogs:
        merged = merge_api_lists(merged, catalog)
    return merged


def get_conflict_info(primary: Optional[dict], secondary: Optional[dict]) -> dict:
    """
    Describe how two catalogs overlap.

    Diagnostic only; merge results never depend on it.
    """
    primary_ids = set(primary or {})
    secondary_ids = set(secondary or {})
    conflicting = sorted(primary_ids & secondary_ids)

    return {
        "totalConflicts": len(conflicting),
        "conflictingAPIs": conflicting,
        "primaryOnlyCount": len(primary_ids - secondary_ids),
        "secondaryOnlyCount": len(secondary_ids - primary_ids),
    }


# ========== Search ==========


def _as_summaries(raw: SearchInput) -> list[ApiSummary]:
    if isinstance(raw, dict):
        raw = raw.get("results") or []
    if not raw:
        return []

    summaries = []
    for item in raw:
        if isinstance(item, ApiSummary):
            summaries.append(item)
        elif isinstance(item, dict) and isinstance(item.get("id"), str):
            summaries.append(ApiSummary.from_record(item["id"], item))
        else:
            logger.warning(f"Skipping malformed search record: {item!r}")
    return summaries


def score_result(summary: ApiSummary, query: str) -> int:
    """Relevance of one record to ``query`` (case-insensitive)."""
    q = query.strip().lower()
    provider = summary.provider.lower()
    api_id = summary.id.lower()

    if not q:
        return SCORE_FALLBACK
    if provider == q:
        return SCORE_EXACT_PROVIDER
    if q in provider:
        return SCORE_PROVIDER_CONTAINS
    if api_id.startswith(q):
        return SCORE_ID_PREFIX
    if q in api_id:
        return SCORE_ID_CONTAINS
    if q in summary.title.lower():
        return SCORE_TITLE_CONTAINS
    return SCORE_FALLBACK


def fold_search_results(
    sources: Iterable[tuple[str, SearchInput]],
    query: str,
    page: int,
    limit: int,
) -> dict:
    """
    Merge search results from several sources and return one page.

    Records are keyed by identifier; a later source replaces an earlier one
    and the survivor is tagged with its source. Ordering is score
    descending, then newer update, then higher-precedence source, then
    identifier. Pagination happens after the full sort.

    Args:
        sources: (source name, results) pairs in increasing precedence
        query: Search text used for scoring
        page: 1-based page
        limit: Page size

    Returns:
        ``{"results": [...], "pagination": {...}}``
    """
    merged: dict[str, ApiSummary] = {}
    for name, raw in sources:
        for summary in _as_summaries(raw):
            merged[summary.id] = summary.model_copy(update={"source": name})

    scored = [(score_result(s, query), s) for s in merged.values()]
    scored.sort(
        key=lambda item: (
            -item[0],
            -parse_timestamp(item[1].updated),
            -SOURCE_PRECEDENCE.get(item[1].source or "", -1),
            item[1].id,
        )
    )

    ranked = [s.model_copy(update={"score": score}) for score, s in scored]
    page_items, info = paginate(ranked, page, limit)

    return {
        "results": [s.model_dump(exclude_none=True) for s in page_items],
        "pagination": info.model_dump(),
    }


def merge_search_results(
    primary: SearchInput,
    secondary: SearchInput,
    query: str,
    page: int,
    limit: int,
) -> dict:
    """Two-way form of :func:`fold_search_results`."""
    return fold_search_results(
        [("primary", primary), ("secondary", secondary)], query, page, limit
    )


def _record_matches(api_id: str, record: dict, query_lower: str) -> bool:
    if query_lower in api_id.lower():
        return True
    versions = record.get("versions") or {}
    if not isinstance(versions, dict):
        return False
    for version in versions.values():
        info = (version or {}).get("info") or {}
        for field in ("title", "description", "x-providerName"):
            value = info.get(field)
            if isinstance(value, str) and query_lower in value.lower():
                return True
    return False


def filter_matching(
    catalog: Optional[dict],
    query: str,
    provider: Optional[str] = None,
    source: Optional[str] = None,
) -> list[ApiSummary]:
    """
    Records of one catalog that mention ``query``.

    Identifier, title, description and provider name of every version
    are searched. ``provider`` restricts matches to identifiers that
    contain it.
    """
    query_lower = query.strip().lower()
    matches = []
    for api_id, record in (catalog or {}).items():
        if not isinstance(record, dict):
            continue
        if provider and provider not in api_id:
            continue
        if _record_matches(api_id, record, query_lower):
            matches.append(ApiSummary.from_record(api_id, record, source=source))
    return matches


# ========== Paginated listings ==========


def fold_paginated_apis(
    sources: Iterable[tuple[str, SearchInput]],
    page: int,
    limit: int,
) -> dict:
    """
    Merge listing records from several sources and return one page.

    Same precedence as catalogs; the merged listing is ordered by
    identifier so the page contents don't depend on which source
    answered first.
    """
    merged: dict[str, ApiSummary] = {}
    for name, raw in sources:
        for summary in _as_summaries(raw):
            merged[summary.id] = summary.model_copy(update={"source": name})

    ordered = [merged[api_id] for api_id in sorted(merged)]
    page_items, info = paginate(ordered, page, limit)

    return {
        "results": [s.model_dump(exclude_none=True) for s in page_items],
        "pagination": info.model_dump(),
    }


def merge_paginated_apis(
    primary: SearchInput,
    secondary: SearchInput,
    page: int,
    limit: int,
) -> dict:
    """Two-way form of :func:`fold_paginated_apis`."""
    return fold_paginated_apis([("primary", primary), ("secondary", secondary)], page, limit)


# ========== Metrics ==========


def _count_or_fallback(raw: Any, field: str, fallback: int) -> int:
    count = coerce_count(raw.get(field)) if isinstance(raw, dict) else None
    return fallback if count is None else count


def aggregate_metrics(
    primary_metrics: Any,
    secondary_metrics: Any,
    primary_apis: Optional[dict],
    secondary_apis: Optional[dict],
) -> dict:
    """
    Combine directory metrics from two sources without double counting.

    numAPIs and numSpecs are ``a + b - overlap`` where overlap is the number
    of identifiers both API maps share; a source whose counter is missing
    or invalid contributes the size of its API map instead. numEndpoints
    keeps the primary count only for the share of primary APIs the
    secondary does not also describe, then adds the secondary count::

        round(primary_endpoints * (|P| - overlap) / |P| + secondary_endpoints)

    Every result is clamped at 0.

    Args:
        primary_metrics: Raw metrics from the lower-precedence source
        secondary_metrics: Raw metrics from the higher-precedence source
        primary_apis: Identifier -> record map of the lower-precedence source
        secondary_apis: Identifier -> record map of the higher-precedence source

    Returns:
        Metrics dict with ``numSpecs``, ``numAPIs``, ``numEndpoints`` and any
        pass-through fields (secondary wins).
    """
    primary_validated, primary_issues = validate_metrics(primary_metrics)
    secondary_validated, secondary_issues = validate_metrics(secondary_metrics)
    for issue in primary_issues:
        logger.warning(f"Primary metrics: {issue}")
    for issue in secondary_issues:
        logger.warning(f"Secondary metrics: {issue}")

    primary_ids = set(primary_apis or {})
    secondary_ids = set(secondary_apis or {})
    overlap = len(primary_ids & secondary_ids)

    num_apis = (
        _count_or_fallback(primary_metrics, "numAPIs", len(primary_ids))
        + _count_or_fallback(secondary_metrics, "numAPIs", len(secondary_ids))
        - overlap
    )
    num_specs = (
        _count_or_fallback(primary_metrics, "numSpecs", len(primary_ids))
        + _count_or_fallback(secondary_metrics, "numSpecs", len(secondary_ids))
        - overlap
    )

    unique_share = (
        (len(primary_ids) - overlap) / len(primary_ids) if primary_ids else 1.0
    )
    num_endpoints = round(
        primary_validated["numEndpoints"] * unique_share
        + secondary_validated["numEndpoints"]
    )

    combined = {**primary_validated, **secondary_validated}
    combined.update(
        numAPIs=max(0, num_apis),
        numSpecs=max(0, num_specs),
        numEndpoints=max(0, num_endpoints),
    )
    return DirectoryMetrics(**combined).to_dict()


# ========== Rankings and statistics ==========


def _popularity(record: dict) -> float:
    info = preferred_version(record).get("info") or {}
    value = info.get("x-apisguru-popularity")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return max(0.0, float(value))


def popularity_score(record: dict) -> float:
    """Ten points per published version plus the catalog popularity hint."""
    versions = record.get("versions") or {}
    return len(versions) * 10 + _popularity(record)


def rank_popular(catalog: Optional[dict], limit: int) -> dict:
    """Top ``limit`` records by popularity score, newest first on ties."""
    entries = [(api_id, r) for api_id, r in (catalog or {}).items() if isinstance(r, dict)]
    entries.sort(key=lambda e: (-popularity_score(e[1]), -latest_update(e[1]), e[0]))
    return dict(entries[:limit])


def rank_recent(catalog: Optional[dict], limit: int) -> dict:
    """The ``limit`` most recently updated records."""
    entries = [(api_id, r) for api_id, r in (catalog or {}).items() if isinstance(r, dict)]
    entries.sort(key=lambda e: (-latest_update(e[1]), e[0]))
    return dict(entries[:limit])


def _iso_date(timestamp: float) -> Optional[str]:
    if timestamp <= 0:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def compute_provider_stats(catalog: Optional[dict]) -> dict:
    """
    Version and date statistics over one provider's records.

    oldestAPI/newestAPI are picked by the ``added`` date of any version.
    """
    total_versions = 0
    newest_update = 0.0
    oldest: tuple[float, str] = (float("inf"), "")
    newest: tuple[float, str] = (0.0, "")

    for api_id, record in sorted((catalog or {}).items()):
        versions = (record or {}).get("versions") or {}
        total_versions += len(versions)
        for version in versions.values():
            if not isinstance(version, dict):
                continue
            newest_update = max(newest_update, parse_timestamp(version.get("updated")))
            added = parse_timestamp(version.get("added"))
            if added and added < oldest[0]:
                oldest = (added, api_id)
            if added > newest[0]:
                newest = (added, api_id)

    stats = ProviderStats(
        total_apis=len(catalog or {}),
        total_versions=total_versions,
        latest_update=_iso_date(newest_update),
        oldest_api=oldest[1],
        newest_api=newest[1],
    )
    return stats.model_dump(by_alias=True)


def summarize_catalog(catalog: Optional[dict], top: int = 10) -> dict:
    """
    Directory-wide overview: counts, categories, popular and recent APIs.
    """
    providers: set[str] = set()
    categories: set[str] = set()
    summaries = {}

    for api_id, record in (catalog or {}).items():
        if not isinstance(record, dict):
            continue
        summary = ApiSummary.from_record(api_id, record)
        providers.add(summary.provider or "Unknown")
        categories.update(summary.categories)
        summaries[api_id] = summary

    popular = [
        {"id": api_id, "title": summaries[api_id].title, "provider": summaries[api_id].provider}
        for api_id in rank_popular(catalog, top)
        if api_id in summaries
    ]
    recent = [
        {
            "id": api_id,
            "title": summaries[api_id].title,
            "updated": (_iso_date(latest_update(catalog[api_id])) or "Unknown").split("T")[0],
        }
        for api_id in rank_recent(catalog, top)
        if api_id in summaries
    ]

    return {
        "total_apis": len(summaries),
        "total_providers": len(providers),
        "categories": sorted(categories),
        "popular_apis": popular,
        "recent_updates": recent,
    }
