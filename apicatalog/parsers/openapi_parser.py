"""
OpenAPI document parser.

Extracts operation listings, per-operation details, schemas and examples
from OpenAPI 3.x documents. Swagger 2.0 documents are read for paths,
operations and parameters only; their securityDefinitions and
consumes/produces lists are not interpreted.

Extraction covers:
    - Operations: every HTTP method under every path item
    - Parameters: path-level then operation-level
    - Responses: status code, description and media types
    - Security: requirement names resolved through components.securitySchemes
    - Schemas and examples: request body, parameters and response media types
"""

import logging
from typing import Any, Optional

from apicatalog.config import PaginationConfig
from apicatalog.normalizer.schemas import (
    HTTP_METHODS,
    EndpointDetails,
    EndpointSummary,
    ContentExample,
    EndpointExamples,
    EndpointSchema,
    ParameterExample,
    ParameterInfo,
    ParameterSchema,
    RequestBodySchema,
    ResponseInfo,
    ResponseSchema,
    SecurityRequirement,
)
from apicatalog.normalizer.validation import paginate, validate_pagination
from apicatalog.utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


class OpenAPIParser:
    """
    Read-only view over one OpenAPI document.

    Example:
        >>> parser = OpenAPIParser(spec)
        >>> page = parser.list_endpoints(page=1, limit=30, tag="pets")
        >>> details = parser.endpoint_details("GET", "/pets/{id}")
    """

    def __init__(self, spec: Any, api_id: str = ""):
        self.spec = spec if isinstance(spec, dict) else {}
        self.api_id = api_id

    def _paths(self) -> dict:
        paths = self.spec.get("paths")
        return paths if isinstance(paths, dict) else {}

    def extract_endpoints(self) -> list[EndpointSummary]:
        """All operations in document order."""
        endpoints = []
        for path, item in self._paths().items():
            if not isinstance(item, dict):
                continue
            for method in HTTP_METHODS:
                operation = item.get(method)
                if not isinstance(operation, dict):
                    continue
                tags = operation.get("tags")
                endpoints.append(
                    EndpointSummary(
                        method=method.upper(),
                        path=path,
                        summary=operation.get("summary"),
                        operation_id=operation.get("operationId"),
                        tags=[t for t in tags if isinstance(t, str)] if isinstance(tags, list) else [],
                        deprecated=bool(operation.get("deprecated", False)),
                    )
                )
        return endpoints

    def list_endpoints(
        self,
        page: Optional[int] = 1,
        limit: Optional[int] = PaginationConfig.ENDPOINTS_DEFAULT_LIMIT,
        tag: Optional[str] = None,
    ) -> dict:
        """
        One page of operations, optionally filtered by tag.

        The tag filter is a case-insensitive substring match against any
        of an operation's tags. ``available_tags`` always covers the whole
        document, not just the filtered page.

        Returns:
            ``{"results": [...], "pagination": {...}, "available_tags": [...]}``
        """
        page, limit = validate_pagination(
            page, limit or PaginationConfig.ENDPOINTS_DEFAULT_LIMIT
        )
        endpoints = self.extract_endpoints()
        available_tags = sorted({t for e in endpoints for t in e.tags})

        if tag:
            needle = tag.lower()
            endpoints = [e for e in endpoints if any(needle in t.lower() for t in e.tags)]

        page_items, info = paginate(endpoints, page, limit)
        return {
            "results": [e.model_dump(by_alias=True, exclude_none=True) for e in page_items],
            "pagination": info.model_dump(),
            "available_tags": available_tags,
        }

    def _find_operation(self, method: str, path: str) -> tuple[dict, dict]:
        item = self._paths().get(path)
        if not isinstance(item, dict):
            raise NotFoundError(f"Path not found: {path}", resource=path, api_id=self.api_id)

        operation = item.get(method.lower())
        if not isinstance(operation, dict):
            raise NotFoundError(
                f"Method {method.upper()} not found for path {path}",
                resource=f"{method.upper()} {path}",
                api_id=self.api_id,
            )
        return item, operation

    @staticmethod
    def _parameters(item: dict, operation: dict) -> list[ParameterInfo]:
        parameters = []
        for param in OpenAPIParser._raw_parameters(item, operation):
            schema = param.get("schema") if isinstance(param.get("schema"), dict) else {}
            parameters.append(
                ParameterInfo(
                    name=param.get("name") or "unnamed",
                    location=param.get("in") or "query",
                    required=bool(param.get("required", False)),
                    type=param.get("type") or schema.get("type") or "string",
                    description=param.get("description"),
                )
            )
        return parameters

    @staticmethod
    def _responses(operation: dict) -> list[ResponseInfo]:
        responses = []
        for code, response in (operation.get("responses") or {}).items():
            if not isinstance(response, dict):
                continue
            content = response.get("content")
            responses.append(
                ResponseInfo(
                    code=str(code),
                    description=response.get("description") or "No description",
                    content_types=list(content) if isinstance(content, dict) else [],
                )
            )
        return responses

    def _security(self, operation: dict) -> list[SecurityRequirement]:
        requirements = operation.get("security")
        if requirements is None:
            requirements = self.spec.get("security") or []

        components = self.spec.get("components") or {}
        schemes = components.get("securitySchemes") or {}

        security = []
        for requirement in requirements:
            if not isinstance(requirement, dict):
                continue
            for name, scopes in requirement.items():
                scheme = schemes.get(name)
                if not isinstance(scheme, dict):
                    continue
                security.append(
                    SecurityRequirement(
                        type=scheme.get("type") or "unknown",
                        scopes=list(scopes) if isinstance(scopes, list) and scopes else None,
                    )
                )
        return security

    def endpoint_details(self, method: str, path: str) -> dict:
        """
        Full description of one operation.

        Raises:
            NotFoundError: If the path or the method under it does not exist
        """
        item, operation = self._find_operation(method, path)

        responses = self._responses(operation)
        request_body = operation.get("requestBody") or {}
        request_content = request_body.get("content") if isinstance(request_body, dict) else None
        security = self._security(operation)
        tags = operation.get("tags")

        details = EndpointDetails(
            method=method.upper(),
            path=path,
            summary=operation.get("summary") or None,
            description=operation.get("description") or None,
            operation_id=operation.get("operationId") or None,
            tags=[t for t in tags if isinstance(t, str)] if isinstance(tags, list) else [],
            deprecated=bool(operation.get("deprecated", False)),
            parameters=self._parameters(item, operation),
            responses=responses,
            consumes=_unique(list(request_content) if isinstance(request_content, dict) else []),
            produces=_unique([ct for r in responses for ct in r.content_types]),
            security=security or None,
        )
        return details.model_dump(by_alias=True, exclude_none=True)

    def endpoint_schema(self, method: str, path: str) -> dict:
        """
        Request body, parameter and response schemas of one operation.

        Only the first request body content type is reported. Parameters
        without a ``schema`` get one built from their Swagger 2.0 ``type``.

        Raises:
            NotFoundError: If the path or the method under it does not exist
        """
        item, operation = self._find_operation(method, path)

        request_body = None
        body = operation.get("requestBody")
        if isinstance(body, dict) and isinstance(body.get("content"), dict) and body["content"]:
            content_type, media = next(iter(body["content"].items()))
            if isinstance(media, dict) and media.get("schema"):
                request_body = RequestBodySchema(
                    content_type=content_type,
                    schema=media["schema"],
                    required=bool(body.get("required", False)),
                )

        parameters = [
            ParameterSchema(
                name=param.get("name") or "unnamed",
                location=param.get("in") or "query",
                required=bool(param.get("required", False)),
                schema=param.get("schema") or {"type": param.get("type") or "string"},
            )
            for param in self._raw_parameters(item, operation)
        ]

        responses = [
            ResponseSchema(code=code, content_type=content_type, schema=media["schema"])
            for code, _, content_type, media in self._response_media(operation)
            if media.get("schema")
        ]

        schema = EndpointSchema(
            method=method.upper(),
            path=path,
            request_body=request_body,
            parameters=parameters,
            responses=responses,
        )
        return schema.model_dump(by_alias=True, exclude_none=True)

    def endpoint_examples(self, method: str, path: str) -> dict:
        """
        Request, response and parameter examples of one operation.

        A media type's single ``example`` wins over its named ``examples``;
        named examples are reported one by one with the name as the
        fallback description.

        Raises:
            NotFoundError: If the path or the method under it does not exist
        """
        item, operation = self._find_operation(method, path)

        request_examples = []
        body = operation.get("requestBody")
        content = body.get("content") if isinstance(body, dict) else None
        if isinstance(content, dict):
            for content_type, media in content.items():
                if isinstance(media, dict):
                    request_examples.extend(
                        _media_examples(content_type, media, media.get("description"))
                    )

        response_examples = []
        for code, response, content_type, media in self._response_media(operation):
            response_examples.extend(
                example.model_copy(update={"code": code})
                for example in _media_examples(content_type, media, response.get("description"))
            )

        parameter_examples = [
            ParameterExample(name=param.get("name") or "unnamed", example=param["example"])
            for param in self._raw_parameters(item, operation)
            if param.get("example") is not None
        ]

        examples = EndpointExamples(
            method=method.upper(),
            path=path,
            request_examples=request_examples,
            response_examples=response_examples,
            parameter_examples=parameter_examples,
        )
        return examples.model_dump(exclude_none=True)

    @staticmethod
    def _raw_parameters(item: dict, operation: dict) -> list[dict]:
        raw = list(item.get("parameters") or []) + list(operation.get("parameters") or [])
        return [param for param in raw if isinstance(param, dict)]

    @staticmethod
    def _response_media(operation: dict):
        """Yield ``(code, response, content_type, media)`` for every response media type."""
        for code, response in (operation.get("responses") or {}).items():
            if not isinstance(response, dict):
                continue
            content = response.get("content")
            if not isinstance(content, dict):
                continue
            for content_type, media in content.items():
                if isinstance(media, dict):
                    yield str(code), response, content_type, media


def _media_examples(content_type: str, media: dict, description: Optional[str]) -> list[ContentExample]:
    if media.get("example") is not None:
        return [ContentExample(content_type=content_type, example=media["example"], description=description)]

    examples = media.get("examples")
    if not isinstance(examples, dict):
        return []
    return [
        ContentExample(
            content_type=content_type,
            example=example.get("value", example) if isinstance(example, dict) else example,
            description=(example.get("description") if isinstance(example, dict) else None) or name,
        )
        for name, example in examples.items()
    ]
