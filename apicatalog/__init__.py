"""
API Catalog Aggregator - Main Package

Aggregates OpenAPI directory listings from a primary catalog, a secondary
catalog and user-imported custom specs, with caching, rate limiting and
adaptive paging.

Modules:
    clients: Catalog sources (HTTP and local custom specs)
    parsers: OpenAPI document parsing
    orchestrator: Cache, rate limiting, paging and fallback coordination
    normalizer: Schemas, validation and merge functions
    utils: Logging and exceptions
"""

__version__ = "1.0.0"
__author__ = "API Catalog Team"

__all__ = [
    "__version__",
    "__author__",
]
