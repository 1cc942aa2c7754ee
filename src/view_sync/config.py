"""Runtime configuration for the view synchronization layer."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_PROVIDER_URL = "https://www.googleapis.com/youtube/v3"


@dataclass(slots=True)
class BackingStoreSettings:
    """HTTP access settings for the site's backing store API."""

    base_url: str = ""
    token: str | None = None
    auth_reads: bool = False
    request_timeout_seconds: float = 30.0
    max_attempts: int = 3
    backoff_base_seconds: float = 0.4
    backoff_jitter_seconds: float = 0.15
    retry_after_max_seconds: float = 15.0


@dataclass(slots=True)
class ProviderSettings:
    """Upstream metrics provider settings."""

    base_url: str = DEFAULT_PROVIDER_URL
    api_keys: tuple[str, ...] = ()
    key_cooldown_seconds: int = 3_600
    request_timeout_seconds: float = 15.0
    max_attempts: int = 2


@dataclass(slots=True)
class CacheSettings:
    """Ephemeral view cache freshness policy."""

    max_age_hours: int = 24
    refresh_hour: int = 6
    timezone: str = "UTC"


@dataclass(slots=True)
class SyncSettings:
    """Batch synchronizer pacing."""

    request_delay_seconds: float = 0.25
    server_refresh_concurrency: int = 5


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".view_sync.db")
    backing_store: BackingStoreSettings = field(default_factory=BackingStoreSettings)
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("VIEW_SYNC_DB_PATH", ".view_sync.db")),
            backing_store=BackingStoreSettings(
                base_url=os.getenv("VIEW_SYNC_BACKING_STORE_URL", "").strip().rstrip("/"),
                token=os.getenv("VIEW_SYNC_BACKING_STORE_TOKEN") or None,
                auth_reads=_env_bool("VIEW_SYNC_AUTH_READS", default=False),
                request_timeout_seconds=float(
                    os.getenv("VIEW_SYNC_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                max_attempts=int(os.getenv("VIEW_SYNC_MAX_ATTEMPTS", "3")),
                backoff_base_seconds=float(os.getenv("VIEW_SYNC_BACKOFF_BASE_SECONDS", "0.4")),
                backoff_jitter_seconds=float(
                    os.getenv("VIEW_SYNC_BACKOFF_JITTER_SECONDS", "0.15"),
                ),
                retry_after_max_seconds=float(
                    os.getenv("VIEW_SYNC_RETRY_AFTER_MAX_SECONDS", "15.0"),
                ),
            ),
            provider=ProviderSettings(
                base_url=os.getenv("VIEW_SYNC_PROVIDER_URL", DEFAULT_PROVIDER_URL)
                .strip()
                .rstrip("/"),
                api_keys=_collect_api_keys(),
                key_cooldown_seconds=int(
                    os.getenv("VIEW_SYNC_PROVIDER_KEY_COOLDOWN_SECONDS", "3600"),
                ),
                request_timeout_seconds=float(
                    os.getenv("VIEW_SYNC_PROVIDER_TIMEOUT_SECONDS", "15.0"),
                ),
                max_attempts=int(os.getenv("VIEW_SYNC_PROVIDER_MAX_ATTEMPTS", "2")),
            ),
            cache=CacheSettings(
                max_age_hours=int(os.getenv("VIEW_SYNC_CACHE_MAX_AGE_HOURS", "24")),
                refresh_hour=int(os.getenv("VIEW_SYNC_CACHE_REFRESH_HOUR", "6")),
                timezone=os.getenv("VIEW_SYNC_CACHE_TIMEZONE", "UTC").strip() or "UTC",
            ),
            sync=SyncSettings(
                request_delay_seconds=float(os.getenv("VIEW_SYNC_REQUEST_DELAY_SECONDS", "0.25")),
                server_refresh_concurrency=int(
                    os.getenv("VIEW_SYNC_SERVER_REFRESH_CONCURRENCY", "5"),
                ),
            ),
        )

    def validate_for_sync(self) -> None:
        """Raise configuration error if provider-driven synchronization cannot run."""

        if not self.provider.api_keys:
            raise ValueError(
                "At least one provider API key is required. "
                "Set VIEW_SYNC_PROVIDER_API_KEYS or VIEW_SYNC_PROVIDER_API_KEY.",
            )
        _validate_url(self.provider.base_url, name="VIEW_SYNC_PROVIDER_URL")
        if self.provider.key_cooldown_seconds <= 0:
            raise ValueError("VIEW_SYNC_PROVIDER_KEY_COOLDOWN_SECONDS must be > 0.")
        if self.provider.max_attempts <= 0:
            raise ValueError("VIEW_SYNC_PROVIDER_MAX_ATTEMPTS must be a positive integer.")
        self.validate_cache()
        if self.sync.request_delay_seconds < 0:
            raise ValueError("VIEW_SYNC_REQUEST_DELAY_SECONDS must be >= 0.")

    def validate_for_backing_store(self) -> None:
        """Raise configuration error if the backing store client cannot be built."""

        if not self.backing_store.base_url:
            raise ValueError(
                "Backing store URL is required. Set VIEW_SYNC_BACKING_STORE_URL.",
            )
        _validate_url(self.backing_store.base_url, name="VIEW_SYNC_BACKING_STORE_URL")
        if self.backing_store.request_timeout_seconds <= 0:
            raise ValueError("VIEW_SYNC_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.backing_store.max_attempts <= 0:
            raise ValueError("VIEW_SYNC_MAX_ATTEMPTS must be a positive integer.")
        if self.backing_store.backoff_base_seconds < 0:
            raise ValueError("VIEW_SYNC_BACKOFF_BASE_SECONDS must be >= 0.")
        if self.backing_store.backoff_jitter_seconds < 0:
            raise ValueError("VIEW_SYNC_BACKOFF_JITTER_SECONDS must be >= 0.")
        if self.backing_store.retry_after_max_seconds <= 0:
            raise ValueError("VIEW_SYNC_RETRY_AFTER_MAX_SECONDS must be > 0.")
        if self.sync.server_refresh_concurrency <= 0:
            raise ValueError("VIEW_SYNC_SERVER_REFRESH_CONCURRENCY must be a positive integer.")

    def validate_cache(self) -> None:
        if self.cache.max_age_hours <= 0:
            raise ValueError("VIEW_SYNC_CACHE_MAX_AGE_HOURS must be > 0.")
        if not 0 <= self.cache.refresh_hour <= 23:  # noqa: PLR2004
            raise ValueError("VIEW_SYNC_CACHE_REFRESH_HOUR must be between 0 and 23.")
        self.cache_timezone()

    def cache_timezone(self) -> ZoneInfo:
        """Resolve the configured cache timezone name."""

        try:
            return ZoneInfo(self.cache.timezone)
        except (ZoneInfoNotFoundError, ValueError) as error:
            raise ValueError(
                f"Invalid VIEW_SYNC_CACHE_TIMEZONE: {self.cache.timezone!r}",
            ) from error


def _collect_api_keys() -> tuple[str, ...]:
    values: list[str] = []
    csv_list = os.getenv("VIEW_SYNC_PROVIDER_API_KEYS", "").strip()
    if csv_list:
        values.extend(part.strip() for part in csv_list.split(","))
    single = os.getenv("VIEW_SYNC_PROVIDER_API_KEY", "").strip()
    if single:
        values.append(single)

    deduped: list[str] = []
    for value in values:
        if value and value not in deduped:
            deduped.append(value)
    return tuple(deduped)


def _validate_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
