"""
Pytest configuration and shared fixtures for API catalog tests.

Provides:
    - Temporary directories
    - Simulated clock
    - Sample catalog records and OpenAPI documents
    - Stub catalog sources
    - On-disk custom specs
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

import orjson
import pytest

# Must be set before apicatalog.config is imported
os.environ.setdefault("APICATALOG_ENV", "test")

from apicatalog.clients.base import CatalogSource, ExistenceProbes, Supported, Unsupported
from apicatalog.orchestrator.cache_manager import CacheStore
from apicatalog.utils.exceptions import NotFoundError


# ========== Directory and Path Fixtures ==========


@pytest.fixture
def temp_cache_dir():
    """
    Create temporary directory for cache snapshots.

    Yields:
        Path to temporary directory

    Cleanup:
        Removes directory and all contents after test
    """
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def temp_log_dir():
    """
    Create temporary directory for log files.

    Yields:
        Path to temporary directory
    """
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


# ========== Clock Fixtures ==========


class FakeClock:
    """Manually advanced clock; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ========== Catalog Data Fixtures ==========


def make_record(
    title: str,
    provider: str,
    updated: str = "2024-01-01T00:00:00.000Z",
    versions: tuple[str, ...] = ("1.0.0",),
    popularity: Optional[float] = None,
    categories: Optional[list[str]] = None,
    spec: Optional[dict] = None,
) -> dict:
    """Catalog record in directory format."""
    record_versions = {}
    for version in versions:
        info: dict[str, Any] = {
            "title": title,
            "description": f"{title} description",
            "x-providerName": provider,
            "x-apisguru-categories": categories or [],
        }
        if popularity is not None:
            info["x-apisguru-popularity"] = popularity
        entry: dict[str, Any] = {
            "info": info,
            "added": "2020-01-01T00:00:00.000Z",
            "updated": updated,
            "swaggerUrl": f"https://specs.example.com/{provider}/{version}/openapi.json",
        }
        if spec is not None:
            entry["spec"] = spec
        record_versions[version] = entry

    return {"added": "2020-01-01T00:00:00.000Z", "preferred": versions[-1], "versions": record_versions}


@pytest.fixture
def record_factory():
    """Build catalog records with ``make_record``."""
    return make_record


@pytest.fixture
def primary_catalog() -> dict:
    return {
        "a.com": make_record("A API", "a.com", categories=["tools"]),
        "b.com": make_record("B API", "b.com", updated="2024-03-01T00:00:00.000Z"),
        "shared.com": make_record("Shared (primary)", "shared.com"),
    }


@pytest.fixture
def secondary_catalog() -> dict:
    return {
        "c.com": make_record("C API", "c.com", categories=["payments"]),
        "shared.com": make_record("Shared (secondary)", "shared.com"),
    }


@pytest.fixture
def sample_openapi_spec() -> dict:
    """Small OpenAPI 3 document with tags, parameters and security."""
    return {
        "openapi": "3.0.0",
        "info": {"title": "Petstore", "version": "1.0.0"},
        "security": [{"apiKey": []}],
        "components": {
            "securitySchemes": {
                "apiKey": {"type": "apiKey", "name": "X-Key", "in": "header"},
                "oauth": {"type": "oauth2"},
            }
        },
        "paths": {
            "/pets": {
                "get": {
                    "summary": "List pets",
                    "operationId": "listPets",
                    "tags": ["pets"],
                    "parameters": [
                        {"name": "limit", "in": "query", "schema": {"type": "integer"}, "example": 10},
                    ],
                    "responses": {
                        "200": {
                            "description": "A list of pets",
                            "content": {
                                "application/json": {
                                    "schema": {"type": "array", "items": {"type": "object"}},
                                    "example": [{"id": 1, "name": "Rex"}],
                                }
                            },
                        },
                        "default": {"content": {"application/json": {}}},
                    },
                },
                "post": {
                    "summary": "Create a pet",
                    "tags": ["pets", "admin"],
                    "security": [{"oauth": ["write:pets"]}],
                    "requestBody": {
                        "required": True,
                        "content": {
                            "application/json": {
                                "schema": {"type": "object", "properties": {"name": {"type": "string"}}},
                                "examples": {
                                    "dog": {"summary": "A dog", "value": {"name": "Rex"}},
                                    "cat": {"description": "A cat", "value": {"name": "Tom"}},
                                },
                            },
                            "application/xml": {},
                        },
                    },
                    "responses": {"201": {"description": "Created"}},
                },
            },
            "/pets/{petId}": {
                "parameters": [{"name": "petId", "in": "path", "required": True, "type": "string"}],
                "get": {
                    "summary": "Get one pet",
                    "tags": ["pets"],
                    "responses": {"200": {"description": "A pet"}},
                },
                "delete": {
                    "tags": ["admin"],
                    "deprecated": True,
                    "responses": {"204": {"description": "Deleted"}},
                },
            },
            "/health": {
                "get": {"responses": {"200": {"description": "OK"}}},
            },
        },
    }


# ========== Stub Sources ==========


class StubSource(CatalogSource):
    """
    In-memory catalog source.

    ``routes`` maps paths to payloads; an Exception payload is raised.
    ``providers`` / ``apis`` answer the probes; pass ``probes=False`` to
    declare probes unsupported.
    """

    def __init__(
        self,
        name: str,
        routes: Optional[dict] = None,
        providers: Optional[set] = None,
        apis: Optional[set] = None,
        probes: bool = True,
        pager=None,
    ):
        super().__init__(
            probes=(
                Supported(ExistenceProbes(has_provider=self.has_provider, has_api=self.has_api))
                if probes
                else Unsupported("stub")
            ),
            pager=Supported(pager) if pager is not None else Unsupported("stub"),
        )
        self.name = name
        self.routes = routes or {}
        self.providers = providers or set()
        self.apis = apis or set()
        self.calls: list[str] = []
        self.probe_calls: list[str] = []
        self.closed = False
        self.reloads = 0

    async def fetch_raw(self, path: str) -> Any:
        self.calls.append(path)
        if path not in self.routes:
            raise NotFoundError(f"{self.name} has no {path}", resource=path, source=self.name)
        payload = self.routes[path]
        if isinstance(payload, Exception):
            raise payload
        return payload

    async def has_provider(self, provider: str) -> bool:
        self.probe_calls.append(provider)
        return provider in self.providers

    async def has_api(self, api_id: str) -> bool:
        self.probe_calls.append(api_id)
        return api_id in self.apis

    def reload(self) -> None:
        self.reloads += 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def stub_source():
    """Factory for StubSource instances."""
    return StubSource


@pytest.fixture
def memory_cache(fake_clock) -> CacheStore:
    """Transient cache driven by the fake clock."""
    return CacheStore(default_ttl=3600, clock=fake_clock, enabled=True)


# ========== Custom Spec Fixtures ==========


@pytest.fixture
def custom_specs_dir(temp_cache_dir, sample_openapi_spec) -> Path:
    """
    Custom specs directory with one imported spec (custom:petstore:1.0.0).

    Returns:
        Path to the specs root
    """
    root = temp_cache_dir / "custom-specs"
    spec_dir = root / "custom" / "petstore"
    spec_dir.mkdir(parents=True)

    record = make_record("Petstore", "custom", spec=sample_openapi_spec)
    (spec_dir / "1.0.0.json").write_bytes(orjson.dumps(record))
    (root / "manifest.json").write_bytes(
        orjson.dumps({"specs": {"custom:petstore:1.0.0": {"name": "petstore", "version": "1.0.0"}}})
    )
    return root
