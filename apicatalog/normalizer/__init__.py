"""
Normalizer Module

Catalog schemas, input validation and pure merge functions.

Components:
    - ApiSummary: Compact view of one catalog record
    - DirectoryMetrics: Directory-wide counters
    - PaginationInfo: Page position with derived fields
    - EndpointSummary / EndpointDetails: OpenAPI operation views
    - EndpointSchema / EndpointExamples: Operation schemas and examples
    - validate_pagination / validate_metrics / validate_providers: Input checks
    - merge_providers / merge_api_lists / aggregate_metrics: Merge engine
"""

from .merge import (
    aggregate_metrics,
    fold_search_results,
    get_conflict_info,
    merge_api_lists,
    merge_catalogs,
    merge_paginated_apis,
    merge_providers,
    merge_search_results,
)
from .schemas import (
    ApiSummary,
    CatalogSourceName,
    DirectoryMetrics,
    EndpointDetails,
    EndpointExamples,
    EndpointSchema,
    EndpointSummary,
    PaginationInfo,
    ProviderStats,
)
from .validation import (
    calculate_pagination,
    compute_integrity_digest,
    validate_metrics,
    validate_pagination,
    validate_providers,
)

__all__ = [
    "ApiSummary",
    "CatalogSourceName",
    "DirectoryMetrics",
    "EndpointDetails",
    "EndpointExamples",
    "EndpointSchema",
    "EndpointSummary",
    "PaginationInfo",
    "ProviderStats",
    "aggregate_metrics",
    "fold_search_results",
    "get_conflict_info",
    "merge_api_lists",
    "merge_catalogs",
    "merge_paginated_apis",
    "merge_providers",
    "merge_search_results",
    "calculate_pagination",
    "compute_integrity_digest",
    "validate_metrics",
    "validate_pagination",
    "validate_providers",
]
