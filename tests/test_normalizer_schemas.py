"""
Unit tests for normalizer schemas and validation helpers.

Tests cover:
    - Pagination clamping and derived fields
    - ApiSummary construction from raw and summary records
    - DirectoryMetrics aliases and pass-through
    - Metrics and provider validation
    - Integrity digest stability
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from apicatalog.normalizer.schemas import (
    ApiSummary,
    DirectoryMetrics,
    PaginationInfo,
    latest_update,
    parse_timestamp,
    preferred_version,
)
from apicatalog.normalizer.validation import (
    calculate_pagination,
    coerce_count,
    compute_integrity_digest,
    paginate,
    validate_metrics,
    validate_pagination,
    validate_providers,
)


class TestValidatePagination:
    """Test page/limit normalization."""

    def test_clamps_out_of_range(self):
        assert validate_pagination(-3, 99999) == (1, 100)

    def test_zero_limit_uses_default(self):
        assert validate_pagination(1, 0) == (1, 20)

    def test_missing_values(self):
        assert validate_pagination() == (1, 20)

    def test_floors_fractions_and_strings(self):
        assert validate_pagination("3", 10.9) == (3, 10)

    def test_garbage_uses_defaults(self):
        assert validate_pagination("abc", float("nan")) == (1, 20)

    def test_custom_max(self):
        assert validate_pagination(1, 80, max_limit=50) == (1, 50)


class TestPaginationInfo:
    """Test derived pagination fields."""

    def test_derived_fields(self):
        info = calculate_pagination(45, 2, 20)

        assert info.total_pages == 3
        assert info.has_next is True
        assert info.has_previous is True
        assert info.start_index == 20
        assert info.end_index == 40

    def test_last_page(self):
        info = PaginationInfo(page=3, limit=20, total_results=45)

        assert info.has_next is False
        assert info.end_index == 45

    def test_empty(self):
        info = calculate_pagination(0, 1, 20)

        assert info.total_pages == 0
        assert info.has_next is False
        assert info.has_previous is False

    def test_serialization_includes_derived(self):
        assert PaginationInfo(page=1, limit=10, total_results=11).model_dump() == {
            "page": 1,
            "limit": 10,
            "total_results": 11,
            "total_pages": 2,
            "has_next": True,
            "has_previous": False,
        }

    def test_rejects_invalid_page(self):
        with pytest.raises(PydanticValidationError):
            PaginationInfo(page=0, limit=10)

    def test_paginate_slices(self):
        items, info = paginate(list(range(7)), 2, 3)

        assert items == [3, 4, 5]
        assert info.total_results == 7

    def test_page_past_end_is_empty(self):
        items, info = paginate(list(range(3)), 5, 10)

        assert items == []
        assert info.has_previous is True


class TestApiSummary:
    """Test summary construction."""

    def test_from_raw_record(self, record_factory):
        record = record_factory("Pets", "pets.io", categories=["animals", 3])

        summary = ApiSummary.from_record("pets.io:store", record, source="secondary")

        assert summary.title == "Pets"
        assert summary.provider == "pets.io"
        assert summary.preferred == "1.0.0"
        assert summary.categories == ["animals"]
        assert summary.source == "secondary"
        assert summary.updated == "2024-01-01T00:00:00.000Z"

    def test_long_description_truncated(self, record_factory):
        record = record_factory("Long", "long.io")
        record["versions"]["1.0.0"]["info"]["description"] = "x" * 250

        summary = ApiSummary.from_record("long.io", record)

        assert summary.description == "x" * 200 + "..."

    def test_provider_from_id(self):
        record = {"preferred": "v1", "versions": {"v1": {"info": {}}}}

        summary = ApiSummary.from_record("acme.com:billing", record)

        assert summary.provider == "acme.com"
        assert summary.title == "acme.com:billing"

    def test_from_summary_record(self):
        summary = ApiSummary.from_record("a", {"title": "A", "provider": "a.com", "extra": 1})

        assert summary.title == "A"
        assert summary.provider == "a.com"

    def test_missing_preferred_version(self):
        summary = ApiSummary.from_record("x", {"preferred": "9", "versions": {"1": {}}})
        assert summary.title == "x"


class TestTimestamps:
    def test_parse_timestamp(self):
        assert parse_timestamp("1970-01-01T00:00:10Z") == 10.0
        assert parse_timestamp("not a date") == 0.0
        assert parse_timestamp(None) == 0.0

    def test_latest_update(self, record_factory):
        record = record_factory("A", "a", versions=("1", "2"))
        record["versions"]["1"]["updated"] = "2030-01-01T00:00:00Z"

        assert latest_update(record) == parse_timestamp("2030-01-01T00:00:00Z")
        assert latest_update({}) == 0.0

    def test_preferred_version(self, record_factory):
        record = record_factory("A", "a", versions=("1", "2"))
        assert preferred_version(record) is record["versions"]["2"]
        assert preferred_version({"versions": []}) == {}


class TestDirectoryMetrics:
    def test_aliases_round_trip(self):
        metrics = DirectoryMetrics(numSpecs=3, numAPIs=2, numEndpoints=9, datasets=[1])

        assert metrics.num_apis == 2
        assert metrics.to_dict() == {"numSpecs": 3, "numAPIs": 2, "numEndpoints": 9, "datasets": [1]}

    def test_negative_rejected(self):
        with pytest.raises(PydanticValidationError):
            DirectoryMetrics(numAPIs=-1)


class TestValidateMetrics:
    def test_valid(self):
        metrics, issues = validate_metrics({"numSpecs": 5, "numAPIs": 4, "numEndpoints": 100.0})

        assert metrics == {"numSpecs": 5, "numAPIs": 4, "numEndpoints": 100}
        assert issues == []

    def test_invalid_fields_zeroed(self):
        metrics, issues = validate_metrics({"numSpecs": -1, "numAPIs": "4", "numEndpoints": True, "x": 1})

        assert metrics == {"numSpecs": 0, "numAPIs": 0, "numEndpoints": 0, "x": 1}
        assert len(issues) == 3

    def test_not_an_object(self):
        metrics, issues = validate_metrics(None)

        assert metrics == {"numSpecs": 0, "numAPIs": 0, "numEndpoints": 0}
        assert issues

    @pytest.mark.parametrize(
        "value,expected",
        [(3, 3), (0, 0), (2.0, 2), (2.5, None), (-1, None), (True, None), ("3", None), (None, None)],
    )
    def test_coerce_count(self, value, expected):
        assert coerce_count(value) == expected


class TestValidateProviders:
    def test_data_wrapper(self):
        providers, issues = validate_providers({"data": ["a.com", " ", None, "b.com"]})

        assert providers == ["a.com", "b.com"]
        assert len(issues) == 2

    def test_bare_list(self):
        assert validate_providers(["x"]) == (["x"], [])

    def test_missing_data(self):
        providers, issues = validate_providers({"items": []})

        assert providers == []
        assert issues


class TestIntegrityDigest:
    def test_key_order_independent(self):
        assert compute_integrity_digest({"a": 1, "b": [1, 2]}) == compute_integrity_digest({"b": [1, 2], "a": 1})

    def test_detects_change(self):
        assert compute_integrity_digest({"a": 1}) != compute_integrity_digest({"a": 2})

    def test_unserializable(self):
        with pytest.raises(TypeError):
            compute_integrity_digest({"a": object()})
