"""
Configuration management for the API catalog aggregator.

Environment-based configuration using python-dotenv. Values are read once on
import; tests override them by passing explicit arguments to constructors.
"""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class CacheConfig:
    """Cache store configuration."""

    # DISABLE_CACHE=true turns every cache into a pass-through
    ENABLED: bool = not _env_flag("DISABLE_CACHE")

    # Per-user cache directory (snapshot file, invalidation flag, custom specs)
    CACHE_DIR: Path = Path(
        os.getenv(
            "OPENAPI_DIRECTORY_CACHE_DIR",
            str(Path.home() / ".cache" / "openapi-directory-mcp"),
        )
    ).expanduser()

    CACHE_FILE: str = "cache.json"
    INVALIDATION_FLAG: str = ".invalidate"

    # Persistent maintenance tick (prune + flag check + flush)
    MAINTENANCE_INTERVAL_SECONDS: int = int(os.getenv("CACHE_MAINTENANCE_INTERVAL", "300"))

    # Default TTLs when a caller omits one
    PERSISTENT_DEFAULT_TTL: int = 24 * 60 * 60
    TRANSIENT_DEFAULT_TTL: int = 60 * 60

    MIN_TTL: int = 1
    MAX_KEYS: int = int(os.getenv("CACHE_MAX_KEYS", "1000"))

    # Test-style configuration disables the maintenance timer
    TEST_MODE: bool = (
        os.getenv("APICATALOG_ENV", "").lower() == "test"
        or "PYTEST_CURRENT_TEST" in os.environ
    )


class CacheTTL:
    """Named cache lifetimes in seconds."""

    DEFAULT: int = 24 * 60 * 60
    PROVIDERS: int = 24 * 60 * 60
    APIS: int = 12 * 60 * 60
    SPECS: int = 6 * 60 * 60
    ENDPOINTS: int = 10 * 60
    SEARCH: int = 5 * 60
    POPULAR: int = 60 * 60
    RECENT: int = 30 * 60
    STATS: int = 30 * 60
    METRICS: int = 60 * 60

    # Aggregated orchestrator results change with any of three sources
    PAGINATED: int = 5 * 60
    SUMMARY: int = 10 * 60
    AGGREGATE_METRICS: int = 5 * 60


class RateLimitConfig:
    """Rate limiter presets as (max_requests, window_seconds)."""

    PRESETS: dict[str, tuple[int, float]] = {
        "external": (10, 60.0),
        "primary": (30, 60.0),
        "secondary": (20, 60.0),
        "custom": (1000, 1.0),
        "testing": (5, 30.0),
    }

    # Minimum sleep while the window is full
    MIN_WAIT_SECONDS: float = 0.1

    # Pause between consecutive tasks
    POLITENESS_DELAY_SECONDS: float = 0.05

    @classmethod
    def get_preset(cls, name: str) -> tuple[int, float]:
        """
        Look up a named preset.

        Args:
            name: Preset name (external/primary/secondary/custom/testing)

        Returns:
            Tuple of (max_requests, window_seconds)

        Raises:
            KeyError: If the preset is unknown
        """
        if name not in cls.PRESETS:
            raise KeyError(f"Unknown rate limit preset: {name}")
        return cls.PRESETS[name]


class PaginationConfig:
    """Pagination limits and adaptive fetch thresholds."""

    DEFAULT_LIMIT: int = 20
    MAX_LIMIT: int = 100
    MIN_LIMIT: int = 1

    LARGE_FETCH_LIMIT: int = 1000
    CHUNKED_FETCH_SIZE: int = 100

    # Strategy selection
    PROBE_LIMIT: int = 10
    SMALL_DATASET_THRESHOLD: int = 100
    PARALLEL_CHUNK_SIZE: int = 50
    PARALLEL_CONCURRENCY: int = 2

    SEQUENTIAL_DELAY_SECONDS: float = 0.05
    BATCH_DELAY_SECONDS: float = 0.2

    # Per-operation limits
    SEARCH_MAX_LIMIT: int = 50
    ENDPOINTS_DEFAULT_LIMIT: int = 30
    POPULAR_LIMIT: int = 20
    RECENT_DEFAULT_LIMIT: int = 10


class SourceConfig:
    """Upstream catalog sources."""

    PRIMARY_BASE_URL: str = os.getenv("PRIMARY_CATALOG_URL", "https://api.apis.guru/v2")
    SECONDARY_BASE_URL: str = os.getenv(
        "SECONDARY_CATALOG_URL", "https://api.openapidirectory.com"
    )

    # Locally imported specs live beside the cache
    CUSTOM_SPECS_DIR: Path = Path(
        os.getenv("CUSTOM_SPECS_DIR", str(CacheConfig.CACHE_DIR / "custom-specs"))
    ).expanduser()

    REQUEST_TIMEOUT: int = int(os.getenv("REQUEST_TIMEOUT", "30"))
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
    RETRY_BASE_DELAY: float = float(os.getenv("RETRY_BASE_DELAY", "1.0"))
    USER_AGENT: str = os.getenv("USER_AGENT", "apicatalog/1.0")


class LoggingConfig:
    """Logging configuration."""

    # Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    LOG_DIR: Path = Path(os.getenv("LOG_DIR", "logs"))
    LOG_FILE: str = os.getenv("LOG_FILE", "apicatalog.log")

    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    # Maximum log file size in bytes (10MB default)
    MAX_LOG_SIZE: int = int(os.getenv("MAX_LOG_SIZE", str(10 * 1024 * 1024)))

    # Number of backup log files to keep
    BACKUP_COUNT: int = int(os.getenv("BACKUP_COUNT", "5"))

    @classmethod
    def ensure_log_directory(cls) -> None:
        """Create log directory if it doesn't exist."""
        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_log_file_path(cls) -> Path:
        """Get full path to log file."""
        return cls.LOG_DIR / cls.LOG_FILE


class AppConfig:
    """Main application configuration aggregating all config classes."""

    cache = CacheConfig
    ttl = CacheTTL
    rate_limits = RateLimitConfig
    pagination = PaginationConfig
    sources = SourceConfig
    logging = LoggingConfig

    APP_NAME: str = "API Catalog Aggregator"
    VERSION: str = "1.0.0"

    @classmethod
    def initialize(cls) -> None:
        """Create the directories the application writes to."""
        LoggingConfig.ensure_log_directory()

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate configuration settings.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        if not SourceConfig.PRIMARY_BASE_URL.startswith(("http://", "https://")):
            errors.append("PRIMARY_CATALOG_URL must be an http(s) URL")

        if not SourceConfig.SECONDARY_BASE_URL.startswith(("http://", "https://")):
            errors.append("SECONDARY_CATALOG_URL must be an http(s) URL")

        if CacheConfig.MAINTENANCE_INTERVAL_SECONDS < 1:
            errors.append("CACHE_MAINTENANCE_INTERVAL must be at least 1 second")

        if SourceConfig.REQUEST_TIMEOUT <= 0:
            errors.append("REQUEST_TIMEOUT must be greater than 0")

        if SourceConfig.MAX_RETRIES < 1:
            errors.append("MAX_RETRIES must be at least 1")

        return (len(errors) == 0, errors)

    @classmethod
    def describe(cls, name: Optional[str] = None) -> dict:
        """Summarize effective settings, optionally for a single section."""
        summary = {
            "cache": {
                "enabled": CacheConfig.ENABLED,
                "cache_dir": str(CacheConfig.CACHE_DIR),
                "maintenance_interval": CacheConfig.MAINTENANCE_INTERVAL_SECONDS,
                "test_mode": CacheConfig.TEST_MODE,
            },
            "sources": {
                "primary": SourceConfig.PRIMARY_BASE_URL,
                "secondary": SourceConfig.SECONDARY_BASE_URL,
                "custom": str(SourceConfig.CUSTOM_SPECS_DIR),
            },
            "rate_limits": dict(RateLimitConfig.PRESETS),
        }
        if name is not None:
            return summary.get(name, {})
        return summary


# Initialize configuration on module import
AppConfig.initialize()
