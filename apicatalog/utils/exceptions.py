"""
Custom exception classes for the API catalog aggregator.

Provides a hierarchy of exceptions for upstream and cache failures
with appropriate context and debugging information.
"""

import asyncio
from typing import Any, Optional

import aiohttp


class CatalogError(Exception):
    """Base exception for all catalog errors.

    All custom exceptions inherit from this class, allowing
    catch-all error handling when needed.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
    """

    code: str = "CATALOG_ERROR"
    default_user_message: str = "An unexpected error occurred"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    @property
    def user_message(self) -> str:
        """Message safe to show to an end user."""
        return self.default_user_message

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "details": dict(self.details),
        }


def _compact(details: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in details.items() if v is not None}


class CacheError(CatalogError):
    """Raised when cache operations fail.

    Cache stores catch this internally and degrade to a miss; it only
    escapes from code that talks to the snapshot file directly.

    Attributes:
        operation: The cache operation that failed (read/write/load/save)
        cache_key: The key involved in the failed operation
    """

    code = "CACHE_ERROR"
    default_user_message = "Cache operation failed"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cache_key: Optional[str] = None,
        **kwargs
    ):
        details = _compact({"operation": operation, "cache_key": cache_key, **kwargs})
        super().__init__(message, details)
        self.operation = operation
        self.cache_key = cache_key


class ValidationError(CatalogError):
    """Raised when input violates a contract (bad page, missing argument)."""

    code = "VALIDATION_ERROR"
    default_user_message = "Invalid input"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        details = {"field": field, **kwargs}
        if value is not None:
            value_str = str(value)
            details["value"] = value_str[:100] + "..." if len(value_str) > 100 else value_str
        super().__init__(message, _compact(details))
        self.field = field
        self.value = value

    @property
    def user_message(self) -> str:
        return f"Invalid input: {self.message}"


class NotFoundError(CatalogError):
    """Raised when the requested provider, API, or endpoint does not exist."""

    code = "NOT_FOUND"
    default_user_message = "The requested resource was not found"

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        source: Optional[str] = None,
        **kwargs
    ):
        details = _compact({"resource": resource, "source": source, **kwargs})
        super().__init__(message, details)
        self.resource = resource
        self.source = source

    @property
    def user_message(self) -> str:
        if self.resource:
            return f"Not found: {self.resource}"
        return self.default_user_message


class APIError(CatalogError):
    """Raised when upstream calls fail.

    Covers HTTP errors, network failures, and invalid responses
    from catalog sources.

    Attributes:
        endpoint: URL or path that failed
        status_code: HTTP status code (if applicable)
        response_body: Response content (if available)
        source: Source name (primary/secondary/custom)
    """

    code = "API_ERROR"
    default_user_message = "Upstream catalog request failed"

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        source: Optional[str] = None,
        **kwargs
    ):
        details = {
            "endpoint": endpoint,
            "status_code": status_code,
            "source": source,
            **kwargs
        }
        if response_body:
            # Truncate response body for readability
            details["response_preview"] = response_body[:200] + "..." if len(response_body) > 200 else response_body

        super().__init__(message, _compact(details))
        self.endpoint = endpoint
        self.status_code = status_code
        self.response_body = response_body
        self.source = source


class NetworkError(APIError):
    """Raised when a source cannot be reached at all."""

    code = "NETWORK_ERROR"
    default_user_message = "Could not connect to the catalog service"


class SourceTimeoutError(APIError):
    """Raised when a source does not answer before the deadline."""

    code = "TIMEOUT_ERROR"
    default_user_message = "The catalog service took too long to respond"


class ServerError(APIError):
    """Raised when a source returns a 5xx response."""

    code = "SERVER_ERROR"
    default_user_message = "The catalog service is temporarily unavailable"


class RateLimitError(APIError):
    """Raised when a source answers 429.

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by the source)
    """

    code = "RATE_LIMIT_ERROR"
    default_user_message = "Too many requests, please try again later"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)
        self.retry_after = retry_after


class RateLimiterClearedError(CatalogError):
    """Delivered to every queued task when a rate limiter is cleared."""

    code = "RATE_LIMITER_CLEARED"
    default_user_message = "Request was cancelled"

    def __init__(self, limiter: Optional[str] = None):
        super().__init__("Rate limiter cleared", _compact({"limiter": limiter}))
        self.limiter = limiter


def error_from_status(
    status_code: int,
    endpoint: Optional[str] = None,
    response_body: Optional[str] = None,
    source: Optional[str] = None,
    retry_after: Optional[int] = None,
) -> CatalogError:
    """
    Map an HTTP error status to the matching error kind.

    Args:
        status_code: HTTP status returned by the source
        endpoint: URL or path requested
        response_body: Response text for debugging
        source: Source name

    Returns:
        Error instance (not raised)
    """
    context = {"endpoint": endpoint, "source": source, "response_body": response_body}

    if status_code == 404:
        return NotFoundError(
            f"Resource not found: {endpoint}",
            resource=endpoint,
            source=source,
            status_code=status_code,
        )
    if status_code in (408, 504):
        return SourceTimeoutError(
            f"Request timed out: {status_code}", status_code=status_code, **context
        )
    if status_code == 429:
        return RateLimitError(
            "Rate limit exceeded",
            retry_after=retry_after,
            status_code=status_code,
            **context,
        )
    if status_code >= 500:
        return ServerError(f"Server error: {status_code}", status_code=status_code, **context)
    if status_code in (400, 422):
        return ValidationError(
            f"Request rejected: {status_code}",
            field="request",
            endpoint=endpoint,
            source=source,
            status_code=status_code,
        )
    return APIError(f"Request failed: {status_code}", status_code=status_code, **context)


def wrap_exception(
    exc: BaseException,
    endpoint: Optional[str] = None,
    source: Optional[str] = None,
) -> CatalogError:
    """
    Convert a transport exception into a catalog error.

    Catalog errors pass through unchanged.
    """
    if isinstance(exc, CatalogError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return SourceTimeoutError(
            f"Request timed out: {endpoint}", endpoint=endpoint, source=source
        )
    if isinstance(exc, aiohttp.ClientConnectionError):
        return NetworkError(
            f"Connection failed: {exc}", endpoint=endpoint, source=source
        )
    return APIError(f"Unexpected error: {exc}", endpoint=endpoint, source=source)
