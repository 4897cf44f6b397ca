"""
Unit tests for FallbackOrchestrator.

Tests cover:
    - Probe-gated fallback for single-entity lookups
    - Failure tolerance for aggregate operations
    - Merge precedence across the three sources
    - Cache coherence after custom catalog changes
    - Statistics and lifecycle
"""

import pytest
from unittest.mock import AsyncMock

from apicatalog.clients.base import ExistenceProbes, Supported
from apicatalog.orchestrator.fallback import FallbackOrchestrator
from apicatalog.orchestrator.pagination import PageChunk
from apicatalog.orchestrator.rate_limiter import RateLimiter
from apicatalog.utils.exceptions import NotFoundError, ValidationError


@pytest.fixture
def make_orchestrator(memory_cache, stub_source):
    """Build an orchestrator from stub sources (missing ones are empty)."""

    def factory(primary=None, secondary=None, custom=None, **kwargs):
        return FallbackOrchestrator(
            primary=primary or stub_source("primary"),
            secondary=secondary or stub_source("secondary"),
            custom=custom or stub_source("custom"),
            cache=memory_cache,
            **kwargs,
        )

    return factory


class TestSingleEntityFallback:
    """Test the custom -> secondary -> primary chain."""

    @pytest.mark.asyncio
    async def test_failed_stage_falls_through(self, make_orchestrator, stub_source):
        """Test custom probe says yes but fetch fails; secondary serves."""
        custom = stub_source(
            "custom",
            routes={"/specs/x.com/v1.json": ConnectionError("disk gone")},
            apis={"x.com"},
        )
        secondary = stub_source(
            "secondary",
            routes={"/specs/x.com/v1.json": {"from": "secondary"}},
            apis={"x.com:v1"},
        )
        primary = stub_source("primary", routes={"/specs/x.com/v1.json": {"from": "primary"}})
        orchestrator = make_orchestrator(primary, secondary, custom)

        result = await orchestrator.get_api("x.com", "v1")

        assert result == {"from": "secondary"}
        assert primary.calls == []
        stats = orchestrator.get_statistics()["sources"]
        assert stats["custom"]["failures"] == 1
        assert stats["secondary"]["hits"] == 1
        assert stats["primary"]["hits"] == 0

    @pytest.mark.asyncio
    async def test_custom_wins_when_present(self, make_orchestrator, stub_source):
        custom = stub_source("custom", routes={"/specs/x.com/v1.json": {"from": "custom"}}, apis={"x.com:v1"})
        secondary = stub_source("secondary", routes={"/specs/x.com/v1.json": {"from": "secondary"}}, apis={"x.com:v1"})
        orchestrator = make_orchestrator(secondary=secondary, custom=custom)

        assert await orchestrator.get_api("x.com", "v1") == {"from": "custom"}
        assert secondary.probe_calls == []

    @pytest.mark.asyncio
    async def test_probe_no_skips_source(self, make_orchestrator, stub_source):
        custom = stub_source("custom", routes={"/specs/x.com/v1.json": {"from": "custom"}})
        secondary = stub_source("secondary", routes={"/specs/x.com/v1.json": {"from": "secondary"}})
        primary = stub_source("primary", routes={"/specs/x.com/v1.json": {"from": "primary"}})
        orchestrator = make_orchestrator(primary, secondary, custom)

        assert await orchestrator.get_api("x.com", "v1") == {"from": "primary"}
        assert custom.calls == []
        assert secondary.calls == []
        assert custom.probe_calls == ["x.com:v1", "x.com"]

    @pytest.mark.asyncio
    async def test_unsupported_probes_skip_source(self, make_orchestrator, stub_source):
        custom = stub_source("custom", routes={"/x.com/services.json": {"data": ["c"]}}, probes=False)
        primary = stub_source("primary", routes={"/x.com/services.json": {"data": ["p"]}})
        orchestrator = make_orchestrator(primary=primary, custom=custom)

        assert await orchestrator.get_services("x.com") == {"data": ["p"]}
        assert custom.calls == []

    @pytest.mark.asyncio
    async def test_probe_error_falls_through(self, make_orchestrator, stub_source):
        custom = stub_source("custom")
        custom.probes = Supported(
            ExistenceProbes(
                has_provider=AsyncMock(side_effect=TimeoutError("slow")),
                has_api=AsyncMock(return_value=False),
            )
        )
        primary = stub_source("primary", routes={"/x.com/services.json": {"data": ["p"]}})
        orchestrator = make_orchestrator(primary=primary, custom=custom)

        assert await orchestrator.get_services("x.com") == {"data": ["p"]}
        assert orchestrator.get_statistics()["sources"]["custom"]["failures"] == 1

    @pytest.mark.asyncio
    async def test_primary_error_propagates(self, make_orchestrator, memory_cache):
        orchestrator = make_orchestrator()

        with pytest.raises(NotFoundError):
            await orchestrator.get_api("missing.com", "v1")

        assert orchestrator.get_statistics()["sources"]["primary"]["failures"] == 1
        assert memory_cache.has("catalog:api:missing.com:v1") is False

    @pytest.mark.asyncio
    async def test_service_api_probes_candidates(self, make_orchestrator, stub_source):
        path = "/specs/x.com/pay/v2.json"
        secondary = stub_source("secondary", routes={path: {"from": "secondary"}}, apis={"x.com:pay"})
        orchestrator = make_orchestrator(secondary=secondary)

        assert await orchestrator.get_service_api("x.com", "pay", "v2") == {"from": "secondary"}
        assert secondary.probe_calls == ["x.com:pay:v2", "x.com:pay"]

    @pytest.mark.asyncio
    async def test_results_are_cached(self, make_orchestrator, stub_source, memory_cache):
        primary = stub_source("primary", routes={"/x.com/services.json": {"data": ["p"]}})
        orchestrator = make_orchestrator(primary=primary)

        await orchestrator.get_services("x.com")
        await orchestrator.get_services("x.com")

        assert primary.calls == ["/x.com/services.json"]
        assert memory_cache.has("catalog:services:x.com")
        cache_stats = orchestrator.get_statistics()["cache"]
        assert cache_stats["hits"] == 1
        assert cache_stats["misses"] == 1
        assert cache_stats["hit_rate_pct"] == 50.0


class TestApiDocuments:
    """Test summaries, specs and endpoint views."""

    @pytest.mark.asyncio
    async def test_summary_by_id(self, make_orchestrator, stub_source, primary_catalog):
        primary = stub_source("primary", routes={"/list.json": primary_catalog})
        orchestrator = make_orchestrator(primary=primary)

        summary = await orchestrator.get_api_summary_by_id("a.com")

        assert summary["title"] == "A API"
        assert summary["provider"] == "a.com"
        assert summary["versions"] == ["1.0.0"]
        assert summary["preferred_version"] == "1.0.0"
        assert summary["categories"] == ["tools"]
        assert summary["swagger_url"] == "https://specs.example.com/a.com/1.0.0/openapi.json"
        assert summary["source"] == "primary"

    @pytest.mark.asyncio
    async def test_summary_from_secondary(self, make_orchestrator, stub_source, secondary_catalog):
        secondary = stub_source("secondary", routes={"/list.json": secondary_catalog}, apis={"shared.com"})
        orchestrator = make_orchestrator(secondary=secondary)

        summary = await orchestrator.get_api_summary_by_id("shared.com")

        assert summary["title"] == "Shared (secondary)"
        assert summary["source"] == "secondary"

    @pytest.mark.asyncio
    async def test_unknown_id(self, make_orchestrator, stub_source, primary_catalog):
        primary = stub_source("primary", routes={"/list.json": primary_catalog})
        orchestrator = make_orchestrator(primary=primary)

        with pytest.raises(NotFoundError):
            await orchestrator.get_api_summary_by_id("nope.com")

    @pytest.mark.asyncio
    async def test_embedded_spec(self, make_orchestrator, stub_source, record_factory, sample_openapi_spec):
        custom = stub_source(
            "custom",
            routes={"/list.json": {"custom:pets": record_factory("Pets", "custom", spec=sample_openapi_spec)}},
            apis={"custom:pets"},
        )
        orchestrator = make_orchestrator(custom=custom)

        assert await orchestrator.get_openapi_spec("custom:pets") == sample_openapi_spec
        assert custom.calls == ["/list.json"]

    @pytest.mark.asyncio
    async def test_spec_downloaded_from_url(self, make_orchestrator, stub_source, primary_catalog):
        url = "https://specs.example.com/a.com/1.0.0/openapi.json"
        primary = stub_source("primary", routes={"/list.json": primary_catalog, url: {"openapi": "3.0.0"}})
        orchestrator = make_orchestrator(primary=primary)

        assert await orchestrator.get_openapi_spec("a.com") == {"openapi": "3.0.0"}
        assert primary.calls == ["/list.json", url]

    @pytest.mark.asyncio
    async def test_spec_without_location(self, make_orchestrator, stub_source):
        record = {"preferred": "1", "versions": {"1": {"info": {"title": "Bare"}}}}
        primary = stub_source("primary", routes={"/list.json": {"bare.com": record}})
        orchestrator = make_orchestrator(primary=primary)

        with pytest.raises(NotFoundError):
            await orchestrator.get_openapi_spec("bare.com")

    @pytest.mark.asyncio
    async def test_endpoints_and_details(
        self, make_orchestrator, stub_source, record_factory, sample_openapi_spec, memory_cache
    ):
        custom = stub_source(
            "custom",
            routes={"/list.json": {"custom:pets": record_factory("Pets", "custom", spec=sample_openapi_spec)}},
            apis={"custom:pets"},
        )
        orchestrator = make_orchestrator(custom=custom)

        endpoints = await orchestrator.get_api_endpoints("custom:pets", tag="admin")
        details = await orchestrator.get_endpoint_details("custom:pets", "GET", "/pets")

        assert endpoints["pagination"]["total_results"] == 2
        assert details["operationId"] == "listPets"
        assert memory_cache.has("catalog:endpoints:custom:pets:1:30:admin")
        assert memory_cache.has("catalog:endpoint_details:custom:pets:get:/pets")
        # The spec is fetched once and reused
        assert custom.calls == ["/list.json"]

    @pytest.mark.asyncio
    async def test_endpoint_schema_and_examples(
        self, make_orchestrator, stub_source, record_factory, sample_openapi_spec, memory_cache
    ):
        secondary = stub_source(
            "secondary",
            routes={"/list.json": {"pets.com": record_factory("Pets", "secondary", spec=sample_openapi_spec)}},
            apis={"pets.com"},
        )
        primary = stub_source("primary")
        orchestrator = make_orchestrator(primary=primary, secondary=secondary)

        schema = await orchestrator.get_endpoint_schema("pets.com", "POST", "/pets")
        examples = await orchestrator.get_endpoint_examples("pets.com", "GET", "/pets")

        assert schema["request_body"]["required"] is True
        assert examples["parameter_examples"] == [{"name": "limit", "example": 10}]
        assert memory_cache.has("catalog:endpoint_schema:pets.com:post:/pets")
        assert memory_cache.has("catalog:endpoint_examples:pets.com:get:/pets")
        assert primary.calls == []

    @pytest.mark.asyncio
    async def test_endpoint_schema_unknown_operation(
        self, make_orchestrator, stub_source, record_factory, sample_openapi_spec
    ):
        custom = stub_source(
            "custom",
            routes={"/list.json": {"custom:pets": record_factory("Pets", "custom", spec=sample_openapi_spec)}},
            apis={"custom:pets"},
        )
        orchestrator = make_orchestrator(custom=custom)

        with pytest.raises(NotFoundError):
            await orchestrator.get_endpoint_examples("custom:pets", "PUT", "/pets")


class TestAggregates:
    """Test aggregate operations across all sources."""

    @pytest.mark.asyncio
    async def test_providers_union(self, make_orchestrator, stub_source):
        primary = stub_source("primary", routes={"/providers.json": {"data": ["a.com", "b.com"]}})
        secondary = stub_source("secondary", routes={"/providers.json": {"data": ["b.com", "c.com"]}})
        custom = stub_source("custom", routes={"/providers.json": ConnectionError("offline")})
        orchestrator = make_orchestrator(primary, secondary, custom)

        assert await orchestrator.get_providers() == {"data": ["a.com", "b.com", "c.com"]}
        assert orchestrator.get_statistics()["aggregate_failures"] == 1

    @pytest.mark.asyncio
    async def test_all_sources_failing_is_empty(self, make_orchestrator):
        orchestrator = make_orchestrator()

        assert await orchestrator.get_providers() == {"data": []}
        assert orchestrator.get_statistics()["aggregate_failures"] == 3

    @pytest.mark.asyncio
    async def test_list_apis_precedence(
        self, make_orchestrator, stub_source, primary_catalog, secondary_catalog, record_factory
    ):
        custom_catalog = {"shared.com": record_factory("Shared (custom)", "shared.com")}
        orchestrator = make_orchestrator(
            stub_source("primary", routes={"/list.json": primary_catalog}),
            stub_source("secondary", routes={"/list.json": secondary_catalog}),
            stub_source("custom", routes={"/list.json": custom_catalog}),
        )

        catalog = await orchestrator.list_apis()

        assert sorted(catalog) == ["a.com", "b.com", "c.com", "shared.com"]
        title = catalog["shared.com"]["versions"]["1.0.0"]["info"]["title"]
        assert title == "Shared (custom)"

    @pytest.mark.asyncio
    async def test_provider_merge(self, make_orchestrator, stub_source, record_factory):
        primary = stub_source(
            "primary", routes={"/a.com.json": {"apis": {"a.com": record_factory("Old", "a.com")}}}
        )
        secondary = stub_source(
            "secondary",
            routes={
                "/a.com.json": {
                    "apis": {"a.com": record_factory("New", "a.com"), "a.com:x": record_factory("X", "a.com")}
                }
            },
        )
        orchestrator = make_orchestrator(primary, secondary)

        apis = await orchestrator.get_provider("a.com")

        assert sorted(apis) == ["a.com", "a.com:x"]
        assert apis["a.com"]["versions"]["1.0.0"]["info"]["title"] == "New"

        stats = await orchestrator.get_provider_stats("a.com")
        assert stats["totalAPIs"] == 2
        assert stats["totalVersions"] == 2

    @pytest.mark.asyncio
    async def test_metrics_across_sources(
        self, make_orchestrator, stub_source, primary_catalog, secondary_catalog, record_factory
    ):
        primary = stub_source(
            "primary",
            routes={
                "/metrics.json": {"numSpecs": 10, "numAPIs": 3, "numEndpoints": 30},
                "/list.json": primary_catalog,
            },
        )
        secondary = stub_source(
            "secondary",
            routes={
                "/metrics.json": {"numSpecs": 5, "numAPIs": 2, "numEndpoints": 20},
                "/list.json": secondary_catalog,
            },
        )
        # No metrics document: falls back to the size of its catalog
        custom = stub_source(
            "custom", routes={"/list.json": {"custom:pets": record_factory("Pets", "custom")}}
        )
        orchestrator = make_orchestrator(primary, secondary, custom)

        metrics = await orchestrator.get_metrics()

        # shared.com is counted once; a third of primary's endpoints overlap
        assert metrics == {"numSpecs": 15, "numAPIs": 5, "numEndpoints": 40}

    @pytest.mark.asyncio
    async def test_search_merges_and_ranks(
        self, make_orchestrator, stub_source, primary_catalog, secondary_catalog
    ):
        orchestrator = make_orchestrator(
            stub_source("primary", routes={"/list.json": primary_catalog}),
            stub_source("secondary", routes={"/list.json": secondary_catalog}),
        )

        result = await orchestrator.search_apis("shared")

        assert len(result["results"]) == 1
        hit = result["results"][0]
        assert hit["id"] == "shared.com"
        assert hit["title"] == "Shared (secondary)"
        assert hit["source"] == "secondary"
        assert hit["score"] == 80
        assert result["pagination"]["total_results"] == 1

    @pytest.mark.asyncio
    async def test_search_provider_filter(self, make_orchestrator, stub_source, primary_catalog):
        orchestrator = make_orchestrator(stub_source("primary", routes={"/list.json": primary_catalog}))

        result = await orchestrator.search_apis("API", provider="b.com")

        assert [r["id"] for r in result["results"]] == ["b.com"]

    @pytest.mark.asyncio
    async def test_search_validation(self, make_orchestrator, memory_cache):
        orchestrator = make_orchestrator()

        with pytest.raises(ValidationError):
            await orchestrator.search_apis("   ")

        await orchestrator.search_apis("x", limit=80)
        assert memory_cache.has("catalog:search:x:all:1:50")

    @pytest.mark.asyncio
    async def test_search_key_is_normalized(self, make_orchestrator, stub_source, primary_catalog, memory_cache):
        primary = stub_source("primary", routes={"/list.json": primary_catalog})
        orchestrator = make_orchestrator(primary=primary)

        first = await orchestrator.search_apis("Shared")
        second = await orchestrator.search_apis("  shared ")

        assert first == second
        assert memory_cache.has("catalog:search:shared:all:1:20")
        assert len([k for k in memory_cache.keys() if k.startswith("catalog:search:")]) == 1
        assert primary.calls == ["/list.json"]

    @pytest.mark.asyncio
    async def test_paginated_listing_without_pager(
        self, make_orchestrator, stub_source, primary_catalog, secondary_catalog
    ):
        orchestrator = make_orchestrator(
            stub_source("primary", routes={"/list.json": primary_catalog}),
            stub_source("secondary", routes={"/list.json": secondary_catalog}),
        )

        page = await orchestrator.get_paginated_apis(page=1, limit=2)

        assert [r["id"] for r in page["results"]] == ["a.com", "b.com"]
        assert page["pagination"]["total_results"] == 4
        assert page["pagination"]["has_next"] is True

    @pytest.mark.asyncio
    async def test_paginated_listing_uses_pager(self, make_orchestrator, stub_source):
        pages = []

        async def fetch_page(page, limit):
            pages.append((page, limit))
            return PageChunk(items=[{"id": "p.com", "title": "P", "provider": "p.com"}], total=1)

        primary = stub_source("primary", pager=fetch_page)
        orchestrator = make_orchestrator(primary=primary)

        result = await orchestrator.get_paginated_apis()

        assert [r["id"] for r in result["results"]] == ["p.com"]
        assert result["results"][0]["source"] == "primary"
        assert pages == [(1, 10), (1, 1)]
        assert primary.calls == []

    @pytest.mark.asyncio
    async def test_rankings(self, make_orchestrator, stub_source, primary_catalog):
        orchestrator = make_orchestrator(stub_source("primary", routes={"/list.json": primary_catalog}))

        recent = await orchestrator.get_recently_updated_apis(limit=1)
        popular = await orchestrator.get_popular_apis()
        summary = await orchestrator.get_api_summary()

        assert list(recent) == ["b.com"]
        assert list(popular)[0] == "b.com"
        assert len(popular) == 3
        assert summary["total_apis"] == 3
        assert summary["categories"] == ["tools"]

    @pytest.mark.asyncio
    async def test_recent_zero_limit_uses_recent_default(self, make_orchestrator, memory_cache):
        orchestrator = make_orchestrator()

        await orchestrator.get_recently_updated_apis(limit=0)

        assert memory_cache.has("catalog:recent:10")


class TestCacheCoherence:
    """Test invalidation and warming after custom catalog changes."""

    def test_invalidate_custom_dependent_keys(self, make_orchestrator, memory_cache):
        orchestrator = make_orchestrator()
        for key in (
            "catalog:providers",
            "catalog:search:x:all:1:20",
            "catalog:spec:custom:pets:1.0.0",
            "catalog:api:a.com:v1",
            "catalog:spec:a.com",
        ):
            memory_cache.set(key, {"v": 1})

        assert orchestrator.invalidate_custom_catalog_caches() == 3
        assert sorted(memory_cache.keys()) == ["catalog:api:a.com:v1", "catalog:spec:a.com"]

    @pytest.mark.asyncio
    async def test_warm_critical_caches(self, make_orchestrator, memory_cache):
        orchestrator = make_orchestrator()
        orchestrator.get_metrics = AsyncMock(side_effect=RuntimeError("boom"))

        warmed = await orchestrator.warm_critical_caches()

        assert warmed == {"providers": True, "metrics": False, "all_apis": True}
        assert memory_cache.has("catalog:providers")
        assert memory_cache.has("catalog:all_apis")

    @pytest.mark.asyncio
    async def test_custom_change_refreshes_aggregates(self, make_orchestrator, stub_source, memory_cache):
        custom = stub_source("custom", routes={"/providers.json": {"data": ["custom"]}})
        orchestrator = make_orchestrator(custom=custom)
        memory_cache.set("catalog:providers", {"data": ["stale"]})

        warmed = await orchestrator.on_custom_catalog_changed()

        assert custom.reloads == 1
        assert warmed["providers"] is True
        assert memory_cache.get("catalog:providers") == {"data": ["custom"]}


class TestStatisticsAndLifecycle:
    """Test statistics, reset and cleanup."""

    @pytest.mark.asyncio
    async def test_statistics_shape(self, make_orchestrator, fake_clock):
        limiter = RateLimiter("primary", max_requests=2, window_seconds=10, clock=fake_clock)
        orchestrator = make_orchestrator(rate_limiters={"primary": limiter})

        await orchestrator.get_providers()
        stats = orchestrator.get_statistics()

        assert stats["total_requests"] == 1
        assert set(stats["sources"]) == {"primary", "secondary", "custom"}
        assert stats["rate_limiters"]["primary"]["canMakeRequest"] is True
        assert "hits" in stats["cache"]["store"]

    @pytest.mark.asyncio
    async def test_reset_returns_previous(self, make_orchestrator):
        orchestrator = make_orchestrator()
        await orchestrator.get_providers()

        previous = orchestrator.reset_statistics()

        assert previous["total_requests"] == 1
        assert orchestrator.get_statistics()["total_requests"] == 0

    @pytest.mark.asyncio
    async def test_cleanup_closes_sources(self, make_orchestrator, stub_source):
        sources = [stub_source(name) for name in ("primary", "secondary", "custom")]
        orchestrator = make_orchestrator(*sources)

        await orchestrator.cleanup()

        assert all(source.closed for source in sources)

    def test_repr(self, make_orchestrator):
        assert "FallbackOrchestrator(requests=0" in repr(make_orchestrator())
