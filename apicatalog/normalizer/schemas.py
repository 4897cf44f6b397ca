"""
Data schemas for catalog records.

Pydantic models providing type safety, validation, and serialization
for records combined from the primary, secondary, and custom catalogs.
Raw catalog records stay plain dicts; these models describe what the
orchestrator hands back to callers.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class CatalogSourceName(str, Enum):
    """Catalog sources, listed in increasing precedence."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    CUSTOM = "custom"


# Higher rank wins merge conflicts and ranking ties
SOURCE_PRECEDENCE: dict[str, int] = {
    CatalogSourceName.PRIMARY.value: 0,
    CatalogSourceName.SECONDARY.value: 1,
    CatalogSourceName.CUSTOM.value: 2,
}

HTTP_METHODS = ("get", "post", "put", "patch", "delete", "head", "options", "trace")


def parse_timestamp(value: Any) -> float:
    """
    Convert an ISO-8601 timestamp to epoch seconds.

    Returns 0.0 for missing or unparseable values so that records
    without dates sort as the oldest.
    """
    if not isinstance(value, str) or not value:
        return 0.0
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def preferred_version(record: dict) -> dict:
    """Return the preferred version entry of a catalog record, or {}."""
    versions = record.get("versions") or {}
    if not isinstance(versions, dict):
        return {}
    version = versions.get(record.get("preferred"))
    return version if isinstance(version, dict) else {}


def latest_update(record: dict) -> float:
    """Newest `updated` timestamp across all versions of a record."""
    versions = record.get("versions") or {}
    if not isinstance(versions, dict) or not versions:
        return 0.0
    return max(
        (parse_timestamp(v.get("updated")) for v in versions.values() if isinstance(v, dict)),
        default=0.0,
    )


class PaginationInfo(BaseModel):
    """
    Page position within a result set.

    Only page, limit and total_results are stored; everything else is
    derived on access so it can never disagree with them.
    """

    page: int = Field(..., description="1-based page number", ge=1)
    limit: int = Field(..., description="Items per page", ge=1)
    total_results: int = Field(0, description="Total matching items", ge=0)

    @computed_field  # type: ignore[misc]
    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_results / self.limit)

    @computed_field  # type: ignore[misc]
    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @computed_field  # type: ignore[misc]
    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def start_index(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def end_index(self) -> int:
        return min(self.start_index + self.limit, self.total_results)


class ApiSummary(BaseModel):
    """
    Compact view of one catalog record, used by listings and search.
    """

    id: str = Field(..., description="Catalog identifier (provider[:service])")
    title: str = Field("", description="Human readable API title")
    description: str = Field("", description="Truncated description")
    provider: str = Field("", description="Provider name")
    preferred: str = Field("", description="Preferred version")
    categories: list[str] = Field(default_factory=list, description="Catalog categories")
    updated: Optional[str] = Field(None, description="Preferred version update time")
    source: Optional[str] = Field(None, description="Source that supplied the record (primary/secondary/custom)")
    score: Optional[int] = Field(None, description="Search relevance score", ge=0)

    @field_validator("categories", mode="before")
    @classmethod
    def validate_categories(cls, v: Any) -> list[str]:
        """Drop anything that is not a string."""
        if not isinstance(v, list):
            return []
        return [c for c in v if isinstance(c, str)]

    @classmethod
    def from_record(
        cls,
        api_id: str,
        record: dict,
        source: Optional[str] = None,
    ) -> "ApiSummary":
        """
        Build a summary from a raw catalog record.

        Records that are already summaries (they carry ``title`` at the top
        level instead of ``versions``) are accepted as-is.

        Args:
            api_id: Catalog identifier
            record: Raw record with ``preferred`` and ``versions``
            source: Source name to tag the summary with

        Returns:
            ApiSummary instance
        """
        if "versions" not in record and "title" in record:
            data = {k: record.get(k) for k in cls.model_fields if k in record}
            data["id"] = api_id
            if source is not None:
                data["source"] = source
            return cls(**{k: v for k, v in data.items() if v is not None})

        version = preferred_version(record)
        info = version.get("info") or {}
        description = info.get("description") or ""
        if len(description) > 200:
            description = description[:200] + "..."

        return cls(
            id=api_id,
            title=info.get("title") or api_id,
            description=description,
            provider=info.get("x-providerName") or api_id.split(":")[0],
            preferred=str(record.get("preferred") or ""),
            categories=info.get("x-apisguru-categories") or [],
            updated=version.get("updated"),
            source=source,
        )


class DirectoryMetrics(BaseModel):
    """Directory-wide counters; unknown fields are passed through."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    num_specs: int = Field(0, alias="numSpecs", ge=0)
    num_apis: int = Field(0, alias="numAPIs", ge=0)
    num_endpoints: int = Field(0, alias="numEndpoints", ge=0)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class EndpointSummary(BaseModel):
    """One operation of an OpenAPI document."""

    model_config = ConfigDict(populate_by_name=True)

    method: str
    path: str
    summary: Optional[str] = None
    operation_id: Optional[str] = Field(None, alias="operationId")
    tags: list[str] = Field(default_factory=list)
    deprecated: bool = False


class ParameterInfo(BaseModel):
    name: str = "unnamed"
    location: str = Field("query", alias="in")
    required: bool = False
    type: str = "string"
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ResponseInfo(BaseModel):
    code: str
    description: str = "No description"
    content_types: list[str] = Field(default_factory=list)


class SecurityRequirement(BaseModel):
    type: str = "unknown"
    scopes: Optional[list[str]] = None


class EndpointDetails(EndpointSummary):
    """Full description of one operation."""

    description: Optional[str] = None
    parameters: list[ParameterInfo] = Field(default_factory=list)
    responses: list[ResponseInfo] = Field(default_factory=list)
    consumes: list[str] = Field(default_factory=list)
    produces: list[str] = Field(default_factory=list)
    security: Optional[list[SecurityRequirement]] = None


class ProviderStats(BaseModel):
    """Version and date statistics for one provider."""

    model_config = ConfigDict(populate_by_name=True)

    total_apis: int = Field(0, alias="totalAPIs", ge=0)
    total_versions: int = Field(0, alias="totalVersions", ge=0)
    latest_update: Optional[str] = Field(None, alias="latestUpdate")
    oldest_api: str = Field("", alias="oldestAPI")
    newest_api: str = Field("", alias="newestAPI")


class RequestBodySchema(BaseModel):
    content_type: str
    schema_: Any = Field(None, alias="schema")
    required: bool = False

    model_config = ConfigDict(populate_by_name=True)


class ParameterSchema(BaseModel):
    name: str = "unnamed"
    location: str = Field("query", alias="in")
    required: bool = False
    schema_: Any = Field(None, alias="schema")

    model_config = ConfigDict(populate_by_name=True)


class ResponseSchema(BaseModel):
    code: str
    content_type: str
    schema_: Any = Field(None, alias="schema")

    model_config = ConfigDict(populate_by_name=True)


class EndpointSchema(BaseModel):
    """Request and response schemas of one operation."""

    method: str
    path: str
    request_body: Optional[RequestBodySchema] = None
    parameters: list[ParameterSchema] = Field(default_factory=list)
    responses: list[ResponseSchema] = Field(default_factory=list)


class ContentExample(BaseModel):
    content_type: str
    example: Any = None
    description: Optional[str] = None
    code: Optional[str] = None


class ParameterExample(BaseModel):
    name: str
    example: Any = None


class EndpointExamples(BaseModel):
    """Request, response and parameter examples of one operation."""

    method: str
    path: str
    request_examples: list[ContentExample] = Field(default_factory=list)
    response_examples: list[ContentExample] = Field(default_factory=list)
    parameter_examples: list[ParameterExample] = Field(default_factory=list)
