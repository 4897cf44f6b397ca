"""
Parsers Module

OpenAPI document parsing.

Components:
    - OpenAPIParser: Operation listings and per-operation details
"""

from .openapi_parser import OpenAPIParser

__all__ = [
    "OpenAPIParser",
]
