"""
JWKS client with a background refresh thread.

Keys are served from an in-memory snapshot only. A single thread per client
fetches the key set, proactively before the cached copy expires and with
exponential backoff while the endpoint is failing. Request handling never
waits on the network and never triggers a fetch.
"""

import random
import threading
import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Callable, FrozenSet, Mapping, Optional

import httpx
from cryptography.hazmat.primitives.asymmetric import rsa

from shared.errors import ExternalServiceError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .keys import parse_key_set


DEFAULT_FALLBACK_TTL = 600.0
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_MIN_REFRESH_INTERVAL = 1.0

REFRESH_RATIO = 0.8
BACKOFF_BASE = 30.0
BACKOFF_MAX = 600.0
BACKOFF_JITTER = 0.25


@dataclass(frozen=True)
class CacheRecord:
    """One version of the cached key set. Replaced, never mutated."""

    keys: Mapping[str, rsa.RSAPublicKey] = field(default_factory=lambda: MappingProxyType({}))
    ttl: float = DEFAULT_FALLBACK_TTL
    fetched_at: Optional[float] = None
    last_fetch_ok: bool = False
    last_error: Optional[str] = None

    @property
    def refresh_after(self) -> Optional[float]:
        if self.fetched_at is None:
            return None
        return self.fetched_at + REFRESH_RATIO * self.ttl

    def is_fresh(self, now: float) -> bool:
        return (
            bool(self.keys)
            and self.fetched_at is not None
            and now - self.fetched_at < self.ttl
        )


def calculate_backoff(
    failure_count: int,
    *,
    base: float = BACKOFF_BASE,
    max_delay: float = BACKOFF_MAX,
    jitter: float = BACKOFF_JITTER,
) -> float:
    """Delay before the next attempt after ``failure_count`` consecutive failures.

    ``min(base * 2**(n-1), max_delay)`` with +/- ``jitter`` uniform noise.
    Zero failures means no extra delay.
    """
    if failure_count <= 0:
        return 0.0

    # 2**32 * base is far past any sane cap, stop growing there
    exponent = min(failure_count - 1, 32)
    delay = min(base * (2 ** exponent), max_delay)

    jitter_amount = delay * jitter
    return delay + random.uniform(-jitter_amount, jitter_amount)


def parse_cache_control(header: Optional[str], fallback_ttl: float) -> float:
    """Derive a TTL in seconds from a Cache-Control header.

    The first directive that decides wins: ``max-age=N`` gives N,
    ``no-cache``/``no-store`` give 0. Anything else falls back.
    """
    if not header:
        return fallback_ttl

    for directive in header.split(","):
        directive = directive.strip().lower()

        if directive.startswith("max-age="):
            value = directive[len("max-age="):].strip().strip('"')
            try:
                max_age = int(value)
            except ValueError:
                continue
            if max_age >= 0:
                return float(max_age)

        if directive in ("no-cache", "no-store"):
            return 0.0

    return fallback_ttl


class JWKSClient:
    """Fetches and caches a JSON Web Key Set for signature verification."""

    def __init__(
        self,
        jwks_url: str,
        fallback_ttl: float = DEFAULT_FALLBACK_TTL,
        *,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        min_refresh_interval: float = DEFAULT_MIN_REFRESH_INTERVAL,
        transport: Optional[httpx.BaseTransport] = None,
        http_client: Optional[httpx.Client] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.jwks_url = jwks_url
        self.fallback_ttl = fallback_ttl
        self.min_refresh_interval = min_refresh_interval
        self.metrics = metrics
        self.logger = get_logger("auth.jwks")
        self._clock = clock

        if http_client is None:
            self._http = httpx.Client(timeout=http_timeout, transport=transport)
            self._owns_http_client = True
        else:
            self._http = http_client
            self._owns_http_client = False

        self._lock = threading.Lock()
        self._record = CacheRecord(ttl=fallback_ttl)
        self._failure_count = 0
        self._attempts = 0

        self._stop_event = threading.Event()
        self._initialized = threading.Event()
        self._thread = threading.Thread(
            target=self._refresh_loop,
            name=f"jwks-refresh[{jwks_url}]",
            daemon=True,
        )
        self._thread.start()

    def __enter__(self) -> "JWKSClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get_public_key(self, kid: str) -> Optional[rsa.RSAPublicKey]:
        """Return the cached key for ``kid`` or None. Never fetches."""
        with self._lock:
            return self._record.keys.get(kid)

    def key_ids(self) -> FrozenSet[str]:
        """Key ids of the current snapshot."""
        with self._lock:
            return frozenset(self._record.keys)

    def snapshot(self) -> CacheRecord:
        with self._lock:
            return self._record

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def is_healthy(self) -> bool:
        """Healthy before the first attempt, then only while keys are unexpired."""
        with self._lock:
            if self._attempts == 0:
                return True
            record = self._record
        return record.is_fresh(self._clock())

    def wait_for_initialization(self, timeout: Optional[float] = None) -> bool:
        """Block until the first fetch attempt has finished, successful or not."""
        return self._initialized.wait(timeout)

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop the refresh thread and wait for it to exit."""
        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)

        if self._thread.is_alive():
            self.logger.warning(
                "JWKS refresh thread still running after close timeout",
                jwks_url=self.jwks_url,
                timeout=timeout,
            )
            return

        if self._owns_http_client:
            self._http.close()

        with self._lock:
            self._record = CacheRecord(ttl=self.fallback_ttl)

    def _refresh_loop(self) -> None:
        self.logger.debug("JWKS refresh loop started", jwks_url=self.jwks_url)
        try:
            self._refresh()
            self._initialized.set()

            while not self._stop_event.is_set():
                delay = self._next_refresh_delay()
                if self._stop_event.wait(delay):
                    break
                self._refresh()
        finally:
            self._initialized.set()
            self.logger.debug("JWKS refresh loop stopped", jwks_url=self.jwks_url)

    def _next_refresh_delay(self) -> float:
        """Seconds until the next fetch attempt."""
        with self._lock:
            record = self._record
            failure_count = self._failure_count

        if record.keys and failure_count == 0 and record.refresh_after is not None:
            delay = record.refresh_after - self._clock()
        else:
            delay = calculate_backoff(failure_count)

        # ttl=0 or an empty key set would otherwise poll the endpoint in a tight loop
        return max(delay, self.min_refresh_interval, 0.0)

    def _refresh(self) -> None:
        """Run one fetch attempt and fold the outcome into the cache."""
        started = time.perf_counter()
        try:
            record = self._fetch()
        except ExternalServiceError as exc:
            self._record_failure(exc.message, started)
            return
        except Exception as exc:
            self.logger.error(
                "Unexpected error during JWKS refresh",
                jwks_url=self.jwks_url,
                error=str(exc),
                exc_info=True,
            )
            self._record_failure(str(exc), started)
            return

        with self._lock:
            self._record = record
            self._failure_count = 0
            self._attempts += 1

        self.logger.info(
            "JWKS refreshed successfully",
            jwks_url=self.jwks_url,
            keys_count=len(record.keys),
            ttl=record.ttl,
        )
        if self.metrics:
            self.metrics.record_jwks_refresh(self.jwks_url, "success", time.perf_counter() - started)
            self.metrics.set_jwks_cached_keys(self.jwks_url, len(record.keys))

    def _record_failure(self, error: str, started: float) -> None:
        with self._lock:
            self._failure_count += 1
            self._attempts += 1
            self._record = replace(self._record, last_fetch_ok=False, last_error=error)
            failure_count = self._failure_count
            cached_keys = len(self._record.keys)

        self.logger.warning(
            "JWKS refresh failed",
            jwks_url=self.jwks_url,
            error=error,
            failure_count=failure_count,
            serving_stale=cached_keys > 0,
        )
        if self.metrics:
            self.metrics.record_jwks_refresh(self.jwks_url, "failure", time.perf_counter() - started)

    def _fetch(self) -> CacheRecord:
        """Fetch and parse the key set without touching the cache."""
        try:
            response = self._http.get(self.jwks_url)
        except httpx.HTTPError as exc:
            raise ExternalServiceError("jwks", f"failed to fetch {self.jwks_url}: {exc}") from exc

        if response.status_code != 200:
            raise ExternalServiceError(
                "jwks",
                f"endpoint returned status {response.status_code}",
                details={"status_code": response.status_code},
            )

        ttl = parse_cache_control(response.headers.get("Cache-Control"), self.fallback_ttl)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalServiceError("jwks", f"malformed JSON payload: {exc}") from exc

        try:
            keys, skipped = parse_key_set(payload)
        except ValidationError as exc:
            raise ExternalServiceError("jwks", exc.message) from exc

        for problem in skipped:
            self.logger.warning("Skipping unusable JWKS key", jwks_url=self.jwks_url, **problem)

        return CacheRecord(
            keys=MappingProxyType(keys),
            ttl=ttl,
            fetched_at=self._clock(),
            last_fetch_ok=True,
        )
