"""
Tests Package

Unit tests for the API catalog aggregator.

Structure:
    - Component tests: cache stores, rate limiter, pagination, merge engine
    - Source tests: HTTP and custom catalog sources
    - Orchestrator tests: fallback chain and aggregate operations against stub sources
"""

__all__ = []
