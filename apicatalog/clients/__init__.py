"""
Catalog Sources Module

Collaborators the orchestrator reads catalogs from.

Components:
    - CatalogSource: Source interface with declared capabilities
    - Supported / Unsupported: Capability markers
    - ExistenceProbes: has_provider / has_api probe pair
    - HttpCatalogSource: Async aiohttp client for the remote catalogs
    - HttpSourceConfig: Configuration for HTTP sources
    - CustomCatalogSource: Local user-imported specs
"""

from .base import CatalogSource, ExistenceProbes, Supported, Unsupported
from .custom_source import CustomCatalogSource
from .http_source import HttpCatalogSource, HttpSourceConfig

__all__ = [
    "CatalogSource",
    "ExistenceProbes",
    "Supported",
    "Unsupported",
    "HttpCatalogSource",
    "HttpSourceConfig",
    "CustomCatalogSource",
]
