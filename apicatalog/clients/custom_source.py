"""
Local custom catalog source.

Serves specs imported by the user from the custom-specs directory:

    {specs_dir}/manifest.json                  index of imported specs
    {specs_dir}/custom/{name}/{version}.json   one catalog record per spec

Records use the same shape as the remote catalogs (``preferred`` plus
``versions``), optionally with the OpenAPI document embedded under
``versions[v]["spec"]``. Every spec is listed under provider ``custom``
with identifier ``custom:{name}:{version}``.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import orjson

from ..config import SourceConfig
from ..normalizer.schemas import HTTP_METHODS, preferred_version
from ..orchestrator.rate_limiter import RateLimiter
from ..utils.exceptions import NotFoundError
from .base import CatalogSource, ExistenceProbes, Supported, Unsupported

logger = logging.getLogger(__name__)

CUSTOM_PROVIDER = "custom"


def parse_spec_id(spec_id: str) -> Optional[tuple[str, str]]:
    """Split ``custom:{name}:{version}`` into (name, version)."""
    parts = spec_id.split(":")
    if len(parts) != 3 or parts[0] != CUSTOM_PROVIDER or not parts[1] or not parts[2]:
        return None
    return parts[1], parts[2]


def count_endpoints(record: dict) -> int:
    """Number of operations in the embedded spec of the preferred version."""
    spec = preferred_version(record).get("spec") or {}
    paths = spec.get("paths") if isinstance(spec, dict) else None
    if not isinstance(paths, dict):
        return 0
    return sum(
        1
        for item in paths.values()
        if isinstance(item, dict)
        for method in item
        if method.lower() in HTTP_METHODS
    )


class CustomCatalogSource(CatalogSource):
    """
    Filesystem-backed catalog of user-imported specs.

    Records are read lazily and memoized until ``reload()``.

    Example:
        >>> source = CustomCatalogSource(Path("~/.cache/openapi-directory-mcp/custom-specs"))
        >>> await source.has_api("custom:petstore:1.0.0")
        True
    """

    name = CUSTOM_PROVIDER

    def __init__(
        self,
        specs_dir: Optional[Path] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """
        Args:
            specs_dir: Custom specs root (defaults to SourceConfig.CUSTOM_SPECS_DIR)
            rate_limiter: Optional limiter every read is admitted through
        """
        super().__init__(
            probes=Supported(ExistenceProbes(has_provider=self.has_provider, has_api=self.has_api)),
            pager=Unsupported("custom catalog is listed in full"),
        )
        self.specs_dir = Path(specs_dir or SourceConfig.CUSTOM_SPECS_DIR).expanduser()
        self.manifest_file = self.specs_dir / "manifest.json"
        self.rate_limiter = rate_limiter
        self._manifest: Optional[dict] = None
        self._catalog: Optional[dict] = None

    # ========== Manifest and records ==========

    def _load_manifest(self) -> dict:
        """
        Load the manifest, tolerating a missing or corrupt file.

        Returns:
            Mapping of spec id -> manifest entry
        """
        if self._manifest is not None:
            return self._manifest

        specs: dict = {}
        if self.manifest_file.exists():
            try:
                data = orjson.loads(self.manifest_file.read_bytes())
                if isinstance(data, dict) and isinstance(data.get("specs"), dict):
                    specs = data["specs"]
                else:
                    logger.warning(f"Invalid manifest structure in {self.manifest_file}")
            except (OSError, orjson.JSONDecodeError) as e:
                logger.warning(f"Failed to load manifest {self.manifest_file}: {e}")

        self._manifest = specs
        return specs

    def _spec_file(self, name: str, version: str) -> Path:
        return self.specs_dir / CUSTOM_PROVIDER / name / f"{version}.json"

    def _load_catalog(self) -> dict:
        """Read every spec listed in the manifest; unreadable ones are skipped."""
        if self._catalog is not None:
            return self._catalog

        catalog: dict = {}
        for spec_id in sorted(self._load_manifest()):
            parsed = parse_spec_id(spec_id)
            if parsed is None:
                logger.warning(f"Skipping malformed custom spec id: {spec_id}")
                continue
            try:
                record = orjson.loads(self._spec_file(*parsed).read_bytes())
            except (OSError, orjson.JSONDecodeError) as e:
                logger.warning(f"Failed to load custom spec {spec_id}: {e}")
                continue
            if isinstance(record, dict):
                catalog[spec_id] = record

        self._catalog = catalog
        logger.debug(f"Loaded {len(catalog)} custom specs from {self.specs_dir}")
        return catalog

    def reload(self) -> None:
        """Forget memoized manifest and records (after an import or removal)."""
        self._manifest = None
        self._catalog = None
        logger.info("Custom catalog reloaded")

    # ========== Path routing ==========

    def _metrics(self) -> dict:
        catalog = self._load_catalog()
        return {
            "numSpecs": len(catalog),
            "numAPIs": len(catalog),
            "numEndpoints": sum(count_endpoints(r) for r in catalog.values()),
        }

    def _resolve(self, path: str) -> Any:
        catalog = self._load_catalog()

        if path == "/providers.json":
            return {"data": [CUSTOM_PROVIDER] if catalog else []}
        if path == "/list.json":
            return catalog
        if path == "/metrics.json":
            return self._metrics()
        if path == f"/{CUSTOM_PROVIDER}.json" and catalog:
            return {"apis": catalog}
        if path == f"/{CUSTOM_PROVIDER}/services.json" and catalog:
            names = sorted({parse_spec_id(spec_id)[0] for spec_id in catalog})
            return {"data": names}

        prefix = f"/specs/{CUSTOM_PROVIDER}/"
        if path.startswith(prefix) and path.endswith(".json"):
            tail = path[len(prefix):-len(".json")]
            spec_id = f"{CUSTOM_PROVIDER}:{tail.replace('/', ':')}"
            if spec_id in catalog:
                return catalog[spec_id]

        raise NotFoundError(f"Not found in custom catalog: {path}", resource=path, source=self.name)

    async def fetch_raw(self, path: str) -> Any:
        """Serve a catalog path from disk."""
        if self.rate_limiter is None:
            return self._resolve(path)

        async def read() -> Any:
            return self._resolve(path)

        return await self.rate_limiter.execute(read)

    # ========== Probes ==========

    async def has_provider(self, provider: str) -> bool:
        return provider == CUSTOM_PROVIDER and bool(self._load_manifest())

    async def has_api(self, api_id: str) -> bool:
        return api_id in self._load_manifest()

    def get_statistics(self) -> dict:
        stats = {"specs_dir": str(self.specs_dir), "total_specs": len(self._load_catalog())}
        if self.rate_limiter is not None:
            stats["rate_limiter"] = self.rate_limiter.get_status()
        return stats
