"""
API Catalog Aggregator - CLI Entry Point.

Command-line access to the merged API directory and its cache.

Usage:
    python -m apicatalog.main providers
    python -m apicatalog.main metrics
    python -m apicatalog.main search stripe --limit 10
    python -m apicatalog.main api github.com 1.1.4
    python -m apicatalog.main endpoints custom:petstore:1.0.0 --tag pets
    python -m apicatalog.main schema custom:petstore:1.0.0 POST /pets
    python -m apicatalog.main cache stats
    python -m apicatalog.main cache keys "catalog:search:*"
    python -m apicatalog.main cache delete catalog:providers
    python -m apicatalog.main cache invalidate

Results are printed to stdout as JSON; logs go to stderr.
"""

import argparse
import asyncio
import fnmatch
import logging
import sys
from typing import Any, NoReturn, Optional

import orjson

from apicatalog.config import AppConfig, PaginationConfig
from apicatalog.orchestrator.factory import build_orchestrator
from apicatalog.orchestrator.fallback import FallbackOrchestrator
from apicatalog.orchestrator.persistent_cache import PersistentCacheStore
from apicatalog.utils.exceptions import CatalogError, ValidationError
from apicatalog.utils.logger import configure_package_logging

logger = logging.getLogger(__name__)


def _print_json(data: Any) -> None:
    sys.stdout.write(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS).decode())
    sys.stdout.write("\n")


class CatalogCLI:
    """
    Command-line interface for the catalog aggregator.

    Features:
        - Directory queries (providers, metrics, search, single API)
        - Endpoint listings for one API
        - Cache inspection, clearing and out-of-process invalidation
    """

    def __init__(self):
        self.parser = self._create_parser()
        self.args: Optional[argparse.Namespace] = None

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="apicatalog",
            description="Query a merged OpenAPI directory built from several catalogs.",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Configuration:
  Set environment variables in .env file:
    - OPENAPI_DIRECTORY_CACHE_DIR: Cache directory
    - DISABLE_CACHE: Set to true to bypass the cache
    - PRIMARY_CATALOG_URL / SECONDARY_CATALOG_URL: Catalog roots
            """,
        )
        parser.add_argument(
            "--log-level",
            type=str,
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Override default log level",
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {AppConfig.VERSION}",
        )

        commands = parser.add_subparsers(dest="command", required=True)

        commands.add_parser("providers", help="List every provider")
        commands.add_parser("metrics", help="Directory metrics")
        commands.add_parser("summary", help="Directory overview")

        search = commands.add_parser("search", help="Search APIs")
        search.add_argument("query", help="Search text")
        search.add_argument("--provider", help="Only identifiers containing this provider")
        search.add_argument("--page", type=int, default=1)
        search.add_argument("--limit", type=int, default=PaginationConfig.DEFAULT_LIMIT)

        api = commands.add_parser("api", help="Show one API record")
        api.add_argument("provider", help="Provider name, e.g. github.com")
        api.add_argument("api", help="API name or version")
        api.add_argument("--service", help="Service name for multi-service providers")

        endpoints = commands.add_parser("endpoints", help="List operations of an API")
        endpoints.add_argument("api_id", help="Catalog identifier")
        endpoints.add_argument("--tag", help="Tag substring filter")
        endpoints.add_argument("--page", type=int, default=1)
        endpoints.add_argument("--limit", type=int, default=PaginationConfig.ENDPOINTS_DEFAULT_LIMIT)

        operation_commands = {
            "schema": "Request and response schemas of one operation",
            "examples": "Request and response examples of one operation",
        }
        for name, help_text in operation_commands.items():
            operation = commands.add_parser(name, help=help_text)
            operation.add_argument("api_id", help="Catalog identifier")
            operation.add_argument("method", help="HTTP method, e.g. GET")
            operation.add_argument("path", help="Path template, e.g. /pets/{petId}")

        cache = commands.add_parser("cache", help="Inspect or reset the cache")
        cache.add_argument("action", choices=["stats", "keys", "delete", "clear", "invalidate"])
        cache.add_argument("key", nargs="?", help="Key to delete, or a glob pattern for keys")

        return parser

    def _validate_configuration(self) -> None:
        """
        Raises:
            SystemExit: If configuration is invalid
        """
        is_valid, errors = AppConfig.validate()
        if not is_valid:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            sys.exit(1)

    async def _query(self, orchestrator: FallbackOrchestrator) -> Any:
        args = self.args
        if args.command == "providers":
            return await orchestrator.get_providers()
        if args.command == "metrics":
            return await orchestrator.get_metrics()
        if args.command == "summary":
            return await orchestrator.get_api_summary()
        if args.command == "search":
            return await orchestrator.search_apis(args.query, args.provider, args.page, args.limit)
        if args.command == "api":
            if args.service:
                return await orchestrator.get_service_api(args.provider, args.service, args.api)
            return await orchestrator.get_api(args.provider, args.api)
        if args.command == "endpoints":
            return await orchestrator.get_api_endpoints(args.api_id, args.page, args.limit, args.tag)
        if args.command == "schema":
            return await orchestrator.get_endpoint_schema(args.api_id, args.method, args.path)
        if args.command == "examples":
            return await orchestrator.get_endpoint_examples(args.api_id, args.method, args.path)
        raise ValueError(f"Unknown command: {args.command}")

    async def _run_query(self) -> Any:
        orchestrator = build_orchestrator()
        try:
            return await self._query(orchestrator)
        finally:
            await orchestrator.cleanup()

    def _run_cache(self, action: str, key: Optional[str] = None) -> dict:
        store = PersistentCacheStore(maintenance_interval=0)

        if action == "keys":
            keys = sorted(store.keys())
            if key:
                keys = [k for k in keys if fnmatch.fnmatchcase(k, key)]
            return {"keys": keys, "total": len(keys)}
        if action == "delete":
            if not key:
                raise ValidationError("Cache key is required", field="key")
            deleted = store.delete(key)
            store.save()
            return {"key": key, "deleted": deleted}

        if action == "stats":
            return {
                "config": store.get_config(),
                "stats": store.get_stats(),
                "health": store.perform_health_check(),
            }
        if action == "clear":
            store.clear()
            return {"cleared": True, "cache_dir": str(store.get_cache_dir())}

        # Picked up by any running process on its next read or maintenance tick
        return {"flag_created": store.create_invalidation_flag(), "flag_file": str(store.flag_file)}

    def run(self, argv: Optional[list[str]] = None) -> int:
        """
        Parse arguments and execute the requested command.

        Returns:
            Process exit code
        """
        self.args = self.parser.parse_args(argv)
        configure_package_logging(self.args.log_level)
        self._validate_configuration()

        try:
            if self.args.command == "cache":
                result = self._run_cache(self.args.action, self.args.key)
            else:
                result = asyncio.run(self._run_query())
        except CatalogError as e:
            logger.error(f"{self.args.command} failed: {e}")
            _print_json(e.to_dict())
            return 1

        _print_json(result)
        return 0


def main() -> NoReturn:
    """
    Application entry point.

    Creates and runs CLI instance.
    """
    try:
        cli = CatalogCLI()
        sys.exit(cli.run())
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
