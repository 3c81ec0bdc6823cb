"""Bootstrap module for the post harvesting subsystem.

Central responsibilities:
- Load and validate settings from environment (.env supported through pydantic-settings)
- Configure structured logging (structlog + rotating handlers)
- Open the SQLite post store and the credential slot explicitly
- Provide an application context object handed to every operation
- Expose Prometheus metric instruments (counters, histograms)

Design notes:
- There is no global context singleton: callers build one with ``bootstrap()``
  and pass it around. Tests build their own with ``tmp_path`` settings.
- The store handle lives as long as the context; ``AppContext.close()`` releases it.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, TYPE_CHECKING
import logging
from logging.handlers import RotatingFileHandler
import os
import sys
import time

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from prometheus_client import Counter, Histogram

if TYPE_CHECKING:  # pragma: no cover
    from .core.storage import PostStore
    from .session import CredentialStore

# ------------------------------------------------------------
# Settings
# ------------------------------------------------------------

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class Settings(BaseSettings):
    """Application settings loaded from environment.

    Every recognised option is declared here with its default; nothing else
    in the code base reads ad-hoc option dicts. Values are validated once when
    the object is built.
    """

    app_name: str = Field("postharvest", alias="APP_NAME")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_file: str | None = Field(None, alias="LOG_FILE")
    log_max_bytes: int = Field(2_000_000, alias="LOG_MAX_BYTES")  # ~2MB
    log_backup_count: int = Field(5, alias="LOG_BACKUP_COUNT")

    # Files / artifacts. AUTH_FILE and SQLITE_PATH default to locations under DATA_DIR.
    data_dir: str = Field(default_factory=lambda: Settings._default_data_dir(), alias="DATA_DIR")
    auth_file: Optional[str] = Field(None, alias="AUTH_FILE")
    sqlite_path: Optional[str] = Field(None, alias="SQLITE_PATH")
    screenshot_dir: str = Field("screenshots", alias="SCREENSHOT_DIR")

    # Browser
    playwright_headless_scrape: bool = Field(False, alias="PLAYWRIGHT_HEADLESS_SCRAPE")
    login_url: str = Field("https://www.linkedin.com/login", alias="LOGIN_URL")
    feed_url_pattern: str = Field(r"linkedin\.com/feed", alias="FEED_URL_PATTERN")
    auth_cookie_name: str = Field("li_at", alias="AUTH_COOKIE_NAME")
    auth_cookie_url: str = Field("https://www.linkedin.com", alias="AUTH_COOKIE_URL")
    auth_max_age_days: int = Field(30, alias="AUTH_MAX_AGE_DAYS")
    login_poll_interval_ms: int = Field(1500, alias="LOGIN_POLL_INTERVAL_MS")

    # Search & extraction
    search_concurrency: int = Field(8, alias="SEARCH_CONCURRENCY")
    pagination_depth: int = Field(3, alias="PAGINATION_DEPTH")
    max_pagination_depth: int = Field(10, alias="MAX_PAGINATION_DEPTH")
    scroll_settle_ms: int = Field(1200, alias="SCROLL_SETTLE_MS")
    # 0 disables the timeout (Playwright semantics); slow or manually gated pages are expected.
    results_wait_timeout_ms: int = Field(0, alias="RESULTS_WAIT_TIMEOUT_MS")
    navigation_timeout_ms: int = Field(0, alias="NAVIGATION_TIMEOUT_MS")
    body_min_chars: int = Field(10, alias="BODY_MIN_CHARS")
    capture_screenshots: bool = Field(False, alias="CAPTURE_SCREENSHOTS")

    # Queries
    query_default_limit: int = Field(10, alias="QUERY_DEFAULT_LIMIT")
    query_max_limit: int = Field(50, alias="QUERY_MAX_LIMIT")

    @staticmethod
    def _default_data_dir() -> str:
        """Return the per-user data directory (auth blob + resources)."""
        if sys.platform == "win32":
            base = os.environ.get("APPDATA", os.path.expanduser("~"))
            return os.path.join(base, "linkedin-mcp")
        return os.path.join(os.path.expanduser("~"), ".linkedin-mcp")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("search_concurrency", "max_pagination_depth", "auth_max_age_days", "login_poll_interval_ms")
    @classmethod
    def _check_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator(
        "pagination_depth",
        "scroll_settle_ms",
        "results_wait_timeout_ms",
        "navigation_timeout_ms",
        "body_min_chars",
        "query_default_limit",
        "query_max_limit",
    )
    @classmethod
    def _check_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @property
    def auth_path(self) -> Path:
        if self.auth_file:
            return Path(self.auth_file)
        return Path(self.data_dir) / "auth.json"

    @property
    def resources_dir(self) -> Path:
        return Path(self.data_dir) / "resources"

    @property
    def database_path(self) -> Path:
        if self.sqlite_path:
            return Path(self.sqlite_path)
        return self.resources_dir / "linkedin.db"

    @property
    def login_poll_interval(self) -> float:
        return self.login_poll_interval_ms / 1000.0

    # Pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )


# ------------------------------------------------------------
# Logging configuration (structlog)
# ------------------------------------------------------------

_SENSITIVE_KEYS = {
    "password",
    "pass",
    "pwd",
    "authorization",
    "cookie",
    "cookies",
    "li_at",
    "token",
    "storage_state",
    "origins",
}


def redact_sensitive(logger, method_name, event_dict):  # noqa: D401
    """Shallow redaction of session secrets that end up in log context.

    Cookies and storage entries are the whole authenticated identity, so any
    key that looks like one is replaced before rendering.
    """

    def _scrub(value):
        if isinstance(value, dict):
            out = {}
            for k, v in value.items():
                ks = str(k).lower()
                if ks in _SENSITIVE_KEYS or any(sk in ks for sk in ("token", "password", "cookie", "authorization")):
                    out[k] = "[REDACTED]"
                else:
                    out[k] = _scrub(v)
            return out
        if isinstance(value, (list, tuple)):
            return [_scrub(v) for v in value]
        return value

    return _scrub(event_dict)


def configure_logging(level: str = "INFO", settings: Settings | None = None) -> None:
    """Configure structured logging with structlog.

    Uses a standard logging handler + structlog processors for JSON output.
    A rotating file handler is added when ``LOG_FILE`` is set.
    """
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            timestamper,
            structlog.processors.add_log_level,
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    # Log lines go to stderr so CLI JSON output on stdout stays parseable.
    handlers: list[logging.Handler] = []
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter("%(message)s"))
    handlers.append(stream_handler)

    if settings and settings.log_file:
        try:
            log_path = Path(settings.log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(logging.Formatter("%(message)s"))
            handlers.append(file_handler)
        except OSError as e:  # pragma: no cover
            print(f"Failed to set file handler: {e}", file=sys.stderr)

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


# ------------------------------------------------------------
# Metrics instruments
# ------------------------------------------------------------
SEARCH_RUNS_TOTAL = Counter(
    "postharvest_search_runs_total", "Search invocations by outcome", labelnames=("status",)
)
SEARCH_DURATION_SECONDS = Histogram(
    "postharvest_search_duration_seconds", "Duration of a full search in seconds"
)
SEARCH_IDENTIFIERS_DISCOVERED = Counter(
    "postharvest_identifiers_discovered_total", "Unique content identifiers found during discovery"
)
ITEMS_EXTRACTED_TOTAL = Counter(
    "postharvest_items_extracted_total", "Items processed by the worker pool", labelnames=("outcome",)
)
FIELDS_ABSENT_TOTAL = Counter(
    "postharvest_fields_absent_total", "Extracted fields that came back absent", labelnames=("field",)
)
PERSISTED_ROWS_TOTAL = Counter(
    "postharvest_persisted_rows_total", "Rows offered to the store by result", labelnames=("result",)
)
LOGIN_DETECTIONS_TOTAL = Counter(
    "postharvest_login_detections_total", "Successful login detections by channel", labelnames=("reason",)
)
STEP_DURATION = Histogram(
    "postharvest_step_duration_seconds", "Duration of internal steps", labelnames=("step",)
)


# ------------------------------------------------------------
# Context dataclass
# ------------------------------------------------------------
@dataclass(slots=True)
class AppContext:
    settings: Settings
    logger: structlog.BoundLogger
    store: "PostStore"
    credentials: "CredentialStore"

    def has_valid_session(self) -> bool:
        return self.credentials.is_valid(self.credentials.load())

    def close(self) -> None:
        self.store.close()


def ensure_directories(settings: Settings, logger) -> None:
    for d in (settings.auth_path.parent, settings.database_path.parent, Path(settings.screenshot_dir)):
        try:
            Path(d).mkdir(parents=True, exist_ok=True)
        except OSError as e:  # pragma: no cover
            logger.warning("directory_creation_failed", path=str(d), error=str(e))


def bootstrap(settings: Settings | None = None) -> AppContext:
    """Build an application context.

    Args:
        settings: Explicit settings (tests); loaded from the environment when omitted.
    """
    # Local imports: storage and session import metric instruments from this module.
    from .core.storage import PostStore
    from .session import CredentialStore

    settings = settings or Settings()
    configure_logging(settings.log_level, settings)
    logger = structlog.get_logger().bind(component="bootstrap")
    ensure_directories(settings, logger)

    t0 = time.perf_counter()
    store = PostStore.open(settings.database_path, logger=logger.bind(component="store"))
    credentials = CredentialStore(
        settings.auth_path,
        cookie_name=settings.auth_cookie_name,
        max_age_days=settings.auth_max_age_days,
    )
    elapsed = time.perf_counter() - t0

    ctx = AppContext(
        settings=settings,
        logger=logger.bind(subsystem="core"),
        store=store,
        credentials=credentials,
    )
    logger.info(
        "bootstrap_complete",
        database=str(settings.database_path),
        auth_file=str(settings.auth_path),
        elapsed=f"{elapsed:.3f}s",
    )
    return ctx
