"""
Coordinated Overpass API HTTP layer.

All Overpass HTTP requests in the engine MUST go through this module.
It provides:
- SQLite cache check before any HTTP request (TTL via models.py)
- Ordered failover across equivalent public mirrors
- A fixed per-attempt time budget (OVERPASS_ATTEMPT_TIMEOUT, 25s default)
- Per-mirror minimum request spacing (the public mirrors rate limit)
- ss_trace / health_monitor integration for observability

Failover policy: each mirror is tried once, in priority order. A
timeout, non-2xx status, non-JSON body or a server error remark in the
body moves on to the next mirror. There is no retry-with-backoff
against the same mirror; when every mirror has failed the caller gets
OverpassUnavailableError listing what went wrong at each one.

The blocking requests call runs in a worker thread (asyncio.to_thread)
so the event loop only suspends on the network.
"""

import asyncio
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

import health_monitor
from config import OVERPASS_ATTEMPT_TIMEOUT, OVERPASS_ENDPOINTS
from models import get_overpass_cache, overpass_cache_key, set_overpass_cache
from ss_trace import get_trace

logger = logging.getLogger(__name__)

# Failure kinds, used to pick the user-facing advice when all mirrors fail.
KIND_TIMEOUT = "timeout"
KIND_RATE_LIMIT = "rate_limit"
KIND_SERVER_BUSY = "server_busy"
KIND_HTTP_ERROR = "http_error"
KIND_PARSE_ERROR = "parse_error"
KIND_NETWORK = "network"

_BODY_ERROR_INDICATORS = ("runtime error", "timed out", "out of memory")


class OverpassQueryError(Exception):
    """One mirror failed to answer a query."""

    def __init__(self, message: str, kind: str, status_code: int = 0):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class QueryAborted(Exception):
    """The caller no longer wants the answer; no further mirrors were tried."""


@dataclass(frozen=True)
class AttemptFailure:
    """What went wrong at one mirror."""
    endpoint: str
    kind: str
    detail: str
    status_code: int = 0


class OverpassUnavailableError(Exception):
    """Raised when every configured mirror failed."""

    def __init__(self, failures: Sequence[AttemptFailure]):
        self.failures = tuple(failures)
        kinds = ", ".join(f.kind for f in self.failures) or "none"
        super().__init__(
            f"All {len(self.failures)} Overpass endpoints failed ({kinds})"
        )


class OverpassHTTPClient:
    MIN_SPACING = 1.0  # seconds between requests to the same mirror

    def __init__(
        self,
        endpoints: Optional[Sequence[str]] = None,
        attempt_timeout: Optional[float] = None,
        min_spacing: Optional[float] = None,
        use_cache: bool = True,
    ):
        self.endpoints: List[str] = list(OVERPASS_ENDPOINTS if endpoints is None else endpoints)
        if not self.endpoints:
            raise ValueError("at least one Overpass endpoint is required")
        self.attempt_timeout = (
            OVERPASS_ATTEMPT_TIMEOUT if attempt_timeout is None else attempt_timeout
        )
        self.min_spacing = self.MIN_SPACING if min_spacing is None else min_spacing
        self.use_cache = use_cache
        self._lock = threading.Lock()
        self._last_request_time: Dict[str, float] = {}

    async def query_async(
        self,
        overpass_ql: str,
        caller: str = "unknown",
        should_abort: Optional[Callable[[], bool]] = None,
    ) -> Dict[str, Any]:
        """
        Execute an Overpass QL query, cache first, then mirrors in order.

        Args:
            overpass_ql: The Overpass QL query string.
            caller: Identifier for trace attribution.
            should_abort: Checked before each mirror attempt; when it
                returns True the loop stops with QueryAborted.

        Returns:
            Parsed JSON response dict from Overpass.

        Raises:
            OverpassUnavailableError: every mirror failed.
            QueryAborted: should_abort() fired before a mirror answered.
        """
        cache_key = overpass_cache_key(overpass_ql)
        cached = self._read_cache(cache_key, caller)
        if cached is not None:
            return cached

        failures: List[AttemptFailure] = []
        total = len(self.endpoints)
        for index, endpoint in enumerate(self.endpoints, start=1):
            if should_abort is not None and should_abort():
                raise QueryAborted(
                    f"Overpass query abandoned before attempt {index}/{total} [caller={caller}]"
                )
            logger.info(
                "Trying Overpass endpoint %d/%d (%s) [caller=%s]",
                index, total, endpoint, caller,
            )
            try:
                data = await asyncio.wait_for(
                    asyncio.to_thread(self._do_request, endpoint, overpass_ql, caller),
                    timeout=self.attempt_timeout,
                )
            except asyncio.TimeoutError:
                failure = AttemptFailure(
                    endpoint, KIND_TIMEOUT,
                    f"no response within {self.attempt_timeout:g}s",
                )
                # The worker thread is left to finish on its own and
                # records its outcome when requests gives up.
            except OverpassQueryError as e:
                failure = AttemptFailure(endpoint, e.kind, str(e), e.status_code)
            else:
                if index > 1:
                    logger.info("Overpass endpoint %d/%d succeeded after failover", index, total)
                self._write_cache(cache_key, data)
                return data

            failures.append(failure)
            logger.warning(
                "Overpass endpoint %d/%d failed: %s (%s) [caller=%s]",
                index, total, failure.kind, failure.detail, caller,
            )

        logger.error("All %d Overpass endpoints failed [caller=%s]", total, caller)
        raise OverpassUnavailableError(failures)

    def _read_cache(self, cache_key: str, caller: str) -> Optional[Dict[str, Any]]:
        if not self.use_cache:
            return None
        cached = get_overpass_cache(cache_key)
        if cached is None:
            return None
        try:
            data = json.loads(cached)
        except (json.JSONDecodeError, TypeError):
            logger.warning(
                "Corrupted Overpass cache entry for key %s, falling through to HTTP",
                cache_key,
            )
            return None
        trace = get_trace()
        if trace:
            trace.record_api_call(
                service="overpass",
                endpoint=caller,
                elapsed_ms=0,
                status_code=200,
                provider_status="cache_hit",
            )
        return data

    def _write_cache(self, cache_key: str, data: Dict[str, Any]) -> None:
        if not self.use_cache:
            return
        try:
            set_overpass_cache(cache_key, json.dumps(data))
        except (TypeError, ValueError):
            logger.warning("Overpass response not cacheable for key %s", cache_key, exc_info=True)

    def _wait_for_spacing(self, endpoint: str) -> None:
        with self._lock:
            now = time.monotonic()
            last = self._last_request_time.get(endpoint)
            if last is not None:
                elapsed = now - last
                if elapsed < self.min_spacing:
                    time.sleep(self.min_spacing - elapsed)
            self._last_request_time[endpoint] = time.monotonic()

    def _do_request(self, endpoint: str, overpass_ql: str, caller: str) -> Dict[str, Any]:
        """Make a single request to one mirror. Runs in a worker thread."""
        self._wait_for_spacing(endpoint)

        start = time.monotonic()
        try:
            # Fresh session per request (thread-safe, no shared state)
            session = requests.Session()
            session.trust_env = False
            resp = session.post(
                endpoint,
                data={"data": overpass_ql},
                timeout=self.attempt_timeout,
            )
        except requests.exceptions.Timeout:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._record(endpoint, caller, elapsed_ms, 0, "timeout")
            raise OverpassQueryError(
                f"Overpass request timeout after {self.attempt_timeout:g}s [caller={caller}]",
                KIND_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._record(endpoint, caller, elapsed_ms, 0, "exception", error=str(e))
            raise OverpassQueryError(
                f"Overpass request failed: {e} [caller={caller}]",
                KIND_NETWORK,
            ) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        status_code = resp.status_code

        if status_code == 429:
            self._record(endpoint, caller, elapsed_ms, status_code, "rate_limit")
            raise OverpassQueryError(
                f"Overpass 429 Too Many Requests [caller={caller}]",
                KIND_RATE_LIMIT, status_code,
            )
        if status_code == 504:
            self._record(endpoint, caller, elapsed_ms, status_code, "timeout")
            raise OverpassQueryError(
                f"Overpass 504 Gateway Timeout [caller={caller}]",
                KIND_SERVER_BUSY, status_code,
            )
        if not 200 <= status_code < 300:
            self._record(endpoint, caller, elapsed_ms, status_code, "http_error")
            raise OverpassQueryError(
                f"Overpass HTTP {status_code} [caller={caller}]",
                KIND_HTTP_ERROR, status_code,
            )

        try:
            data = resp.json()
        except ValueError:
            self._record(endpoint, caller, elapsed_ms, status_code, "parse_error")
            raise OverpassQueryError(
                f"Overpass returned non-JSON response (HTTP {status_code}) [caller={caller}]",
                KIND_PARSE_ERROR, status_code,
            )
        if not isinstance(data, dict):
            self._record(endpoint, caller, elapsed_ms, status_code, "parse_error")
            raise OverpassQueryError(
                f"Overpass returned unexpected JSON ({type(data).__name__}) [caller={caller}]",
                KIND_PARSE_ERROR, status_code,
            )

        # Overpass may put errors in osm3s.remark or top-level remark
        osm3s = data.get("osm3s", {}) or {}
        remark = str(osm3s.get("remark") or data.get("remark") or "")
        remark_lower = remark.lower()
        if "too many requests" in remark_lower:
            self._record(endpoint, caller, elapsed_ms, status_code, "rate_limit")
            raise OverpassQueryError(
                f"Overpass rate limit in response body [caller={caller}]",
                KIND_RATE_LIMIT, status_code,
            )
        if any(indicator in remark_lower for indicator in _BODY_ERROR_INDICATORS):
            self._record(endpoint, caller, elapsed_ms, status_code, "body_error")
            raise OverpassQueryError(
                f"Overpass server error in response body: {remark[:100]} [caller={caller}]",
                KIND_SERVER_BUSY, status_code,
            )

        self._record(endpoint, caller, elapsed_ms, status_code, "", success=True)
        return data

    @staticmethod
    def _record(
        endpoint: str,
        caller: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str,
        success: bool = False,
        error: Optional[str] = None,
    ) -> None:
        trace = get_trace()
        if trace:
            trace.record_api_call(
                service="overpass",
                endpoint=endpoint,
                elapsed_ms=elapsed_ms,
                status_code=status_code,
                provider_status=provider_status,
            )
        try:
            health_monitor.record_call(
                "overpass", success, elapsed_ms, None if success else (error or provider_status)
            )
        except Exception:
            logger.debug("Health tracking failed for overpass", exc_info=True)
