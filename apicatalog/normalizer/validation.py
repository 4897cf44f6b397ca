"""
Validation helpers shared by the cache, merge engine and orchestrator.

Everything here is pure: inputs are checked and coerced, problems are
returned as issue strings rather than raised.
"""

import hashlib
import math
from typing import Any, Optional

import orjson

from apicatalog.config import PaginationConfig
from apicatalog.normalizer.schemas import PaginationInfo

METRIC_FIELDS = ("numSpecs", "numAPIs", "numEndpoints")


# Non-string keys are written as strings; snapshots and digests must agree
SERIALIZE_OPTIONS = orjson.OPT_NON_STR_KEYS


def compute_integrity_digest(value: Any) -> str:
    """
    Hash a cache payload.

    Keys are sorted before hashing so that logically equal dicts always
    produce the same digest.

    Raises:
        TypeError: If the value is not JSON serializable
    """
    payload = orjson.dumps(value, option=SERIALIZE_OPTIONS | orjson.OPT_SORT_KEYS)
    return hashlib.sha256(payload).hexdigest()


def _to_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return math.floor(number)


def validate_pagination(
    page: Any = None,
    limit: Any = None,
    max_limit: int = PaginationConfig.MAX_LIMIT,
) -> tuple[int, int]:
    """
    Normalize page/limit arguments.

    Missing or zero values fall back to defaults; everything else is
    floored and clamped.

    Args:
        page: Requested page (1-based)
        limit: Requested page size
        max_limit: Upper bound for the page size

    Returns:
        Tuple of (page, limit)

    Example:
        >>> validate_pagination(-3, 99999)
        (1, 100)
        >>> validate_pagination(1, 0)
        (1, 20)
    """
    page_value = _to_int(page or 1, 1)
    limit_value = _to_int(limit or PaginationConfig.DEFAULT_LIMIT, PaginationConfig.DEFAULT_LIMIT)

    page_value = max(1, page_value)
    limit_value = min(max(limit_value, PaginationConfig.MIN_LIMIT), max_limit)
    return page_value, limit_value


def calculate_pagination(total: int, page: int, limit: int) -> PaginationInfo:
    """Build pagination metadata for a result set of ``total`` items."""
    page, limit = validate_pagination(page, limit)
    return PaginationInfo(page=page, limit=limit, total_results=max(0, int(total)))


def paginate(items: list, page: int, limit: int) -> tuple[list, PaginationInfo]:
    """Slice one page out of ``items``."""
    info = calculate_pagination(len(items), page, limit)
    return items[info.start_index:info.start_index + info.limit], info


def coerce_count(value: Any) -> Optional[int]:
    """
    Return ``value`` as a non-negative integer, or None if it is not one.

    Integral floats are accepted; bools, negatives and fractions are not.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and value.is_integer() and value >= 0:
        return int(value)
    return None


def validate_metrics(raw: Any) -> tuple[dict, list[str]]:
    """
    Validate a raw metrics object field by field.

    Counter fields that are not non-negative integers are replaced with 0.
    Other fields are passed through untouched.

    Returns:
        Tuple of (validated metrics dict, list of issues)
    """
    issues: list[str] = []

    if not isinstance(raw, dict):
        issues.append(f"metrics is not an object: {type(raw).__name__}")
        return {field: 0 for field in METRIC_FIELDS}, issues

    validated = dict(raw)
    for field in METRIC_FIELDS:
        count = coerce_count(raw.get(field))
        if count is None:
            issues.append(f"{field} is invalid: {raw.get(field)!r}")
            count = 0
        validated[field] = count

    return validated, issues


def validate_providers(raw: Any) -> tuple[list[str], list[str]]:
    """
    Extract provider names from ``{"data": [...]}`` or a bare list.

    Non-string and blank entries are dropped.

    Returns:
        Tuple of (provider names, list of issues)
    """
    issues: list[str] = []

    if isinstance(raw, dict):
        raw = raw.get("data")
    if not isinstance(raw, list):
        issues.append("providers payload has no data list")
        return [], issues

    providers = []
    for entry in raw:
        if isinstance(entry, str) and entry.strip():
            providers.append(entry)
        else:
            issues.append(f"dropped provider entry: {entry!r}")

    return providers, issues
