"""
Phonecheck diagnostics API client with authentication, caching, and retry logic.

This module provides resilient access to the diagnostics provider:
- Master-account token authentication (refreshed once on 401)
- Exponential backoff retry logic for transient failures
- Circuit breaker to stop hammering a provider that is down
- Bounded concurrency (semaphore) and per-call timeouts
- In-memory TTL cache for device detail lookups
"""

import httpx
import asyncio
import time
from cachetools import TTLCache
from typing import List, Dict, Any, Optional, Iterable
from core.config import settings
from core.exceptions import (
    DiagnosticsAPIError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
)
import logging

logger = logging.getLogger(__name__)

LOGIN_PATH = "/v2/auth/master/login"
ALL_DEVICES_PATH = "/v2/master/all-devices"
DEVICE_INFO_PATH = "/v2/master/imei/device-info-legacy/{imei}"

STATION_PAGE_SIZE = 500


class PhonecheckClient:
    """
    Async client for the Phonecheck master API.

    Features:
    - Token authentication via the master login endpoint
    - Station/date device listing with offset pagination
    - Device detail lookup by IMEI with a TTL cache
    - Retry logic with exponential backoff
    - Circuit breaker pattern
    - Concurrency limit shared by every call made through this client

    Attributes:
        max_retries: Maximum number of attempts per call (default: 3)
        retry_delay: Initial retry delay in seconds (default: 1.0)
        timeout: Per-call timeout in seconds (default: 30.0)
        cache_ttl: Seconds a device detail stays cached (default: 300)
        cache_max_size: Most device details held at once (default: 10000)
        circuit_breaker_threshold: Failures before circuit opens (default: 5)
        circuit_breaker_timeout: Seconds before circuit reset (default: 60)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        cache_ttl: Optional[float] = None,
        cache_max_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.PHONECHECK_BASE_URL).rstrip("/")
        self.username = username or settings.PHONECHECK_USERNAME
        self.password = password or settings.PHONECHECK_PASSWORD
        self.max_retries = max_retries or settings.PHONECHECK_RETRY_ATTEMPTS
        self.retry_delay = settings.PHONECHECK_RETRY_DELAY if retry_delay is None else retry_delay
        self.timeout = timeout or settings.PHONECHECK_TIMEOUT
        self.cache_ttl = settings.PHONECHECK_CACHE_TTL if cache_ttl is None else cache_ttl
        self.cache_max_size = cache_max_size or settings.PHONECHECK_CACHE_MAX_SIZE

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
        )
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.PHONECHECK_MAX_CONCURRENCY)
        self._token: Optional[str] = None
        self._token_lock = asyncio.Lock()

        self._cache: TTLCache = TTLCache(maxsize=self.cache_max_size, ttl=self.cache_ttl)

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_open_until: Optional[float] = None
        self._circuit_breaker_timeout = 60  # seconds

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _is_circuit_open(self) -> bool:
        if self._circuit_breaker_open_until is None:
            return False

        if time.monotonic() >= self._circuit_breaker_open_until:
            logger.info("Circuit breaker reset for Phonecheck")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = time.monotonic() + self._circuit_breaker_timeout
            logger.warning(
                f"Circuit breaker opened for Phonecheck. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self, force: bool = False) -> str:
        """Return a master token, logging in when there is none (or ``force``)."""
        async with self._token_lock:
            if self._token and not force:
                return self._token

            if not self.username or not self.password:
                raise AuthenticationError(
                    "Phonecheck credentials are not configured",
                    context={"base_url": self.base_url}
                )

            response = await self._request(
                "POST",
                LOGIN_PATH,
                json={"username": self.username, "password": self.password},
                authenticated=False,
            )
            token = self._json(response, LOGIN_PATH).get("token")
            if not token:
                raise AuthenticationError(
                    "No authentication token received",
                    context={"url": LOGIN_PATH}
                )

            self._token = token
            logger.info("Authenticated with Phonecheck")
            return token

    # ------------------------------------------------------------------
    # Transport with retries
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        """
        Make an HTTP request with retry logic and exponential backoff.

        Raises:
            AuthenticationError: 401/403 (after one token refresh)
            ResourceNotFoundError: 404
            RateLimitError: 429 after max retries
            NetworkError: timeouts, connection errors or 5xx after max retries
            DiagnosticsAPIError: circuit open or any other failure
        """
        if self._is_circuit_open():
            raise DiagnosticsAPIError(
                "Circuit breaker is open for Phonecheck",
                context={"url": path}
            )

        refreshed = False
        attempt = 0

        while attempt < self.max_retries:
            headers = {"Content-Type": "application/json"}
            if authenticated:
                headers["token_master"] = await self.authenticate()

            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {path}")
                async with self._semaphore:
                    response = await self._client.request(
                        method, path, json=json, params=params, headers=headers
                    )
            except httpx.TimeoutException as e:
                attempt += 1
                if attempt < self.max_retries:
                    await self._backoff(attempt, "Request timeout")
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Request timeout after {self.max_retries} attempts",
                    context={"url": path, "timeout": self.timeout, "attempt": attempt},
                    original_exception=e,
                    retry_delay=self.retry_delay
                )
            except httpx.TransportError as e:
                attempt += 1
                if attempt < self.max_retries:
                    await self._backoff(attempt, "Network error")
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Network error after {self.max_retries} attempts",
                    context={"url": path, "attempt": attempt},
                    original_exception=e,
                    retry_delay=self.retry_delay
                )

            status = response.status_code

            if status in (401, 403):
                if authenticated and not refreshed:
                    # token expired; log in again once without spending an attempt
                    refreshed = True
                    await self.authenticate(force=True)
                    continue
                self._record_failure()
                raise AuthenticationError(
                    f"Authentication failed ({status})",
                    context={"url": path, "status_code": status, "response_body": response.text[:200]}
                )

            if status == 404:
                raise ResourceNotFoundError(
                    "Resource not found",
                    context={"url": path, "status_code": 404}
                )

            if status == 429:
                attempt += 1
                retry_after = self._retry_after(response, attempt)
                if attempt < self.max_retries:
                    logger.warning(f"Rate limited. Retrying after {retry_after} seconds")
                    await asyncio.sleep(retry_after)
                    continue
                self._record_failure()
                raise RateLimitError(
                    f"Rate limit exceeded for {path}",
                    context={"url": path, "status_code": 429, "attempt": attempt},
                    retry_after=retry_after
                )

            if status >= 500:
                attempt += 1
                if attempt < self.max_retries:
                    await self._backoff(attempt, f"Server error {status}")
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Server error after {self.max_retries} attempts",
                    context={
                        "url": path,
                        "status_code": status,
                        "attempt": attempt,
                        "response_body": response.text[:500],
                    },
                    retry_delay=self.retry_delay
                )

            if status >= 400:
                raise DiagnosticsAPIError(
                    f"Request failed ({status})",
                    context={"url": path, "status_code": status, "response_body": response.text[:500]}
                )

            self._record_success()
            return response

        raise DiagnosticsAPIError(
            "Max retries exceeded",
            context={"url": path, "attempt": attempt}
        )

    async def _backoff(self, attempt: int, what: str):
        delay = self.retry_delay * (2 ** (attempt - 1))
        logger.warning(f"{what}. Retrying in {delay} seconds (attempt {attempt}/{self.max_retries})")
        await asyncio.sleep(delay)

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        header = response.headers.get("Retry-After")
        try:
            return float(header)
        except (TypeError, ValueError):
            return self.retry_delay * (2 ** (attempt - 1))

    @staticmethod
    def _json(response: httpx.Response, path: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DiagnosticsAPIError(
                "Failed to parse JSON response",
                context={"url": path, "response_body": response.text[:500]},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_station_devices(
        self,
        station: Optional[str],
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        page_size: int = STATION_PAGE_SIZE,
    ) -> List[Dict[str, Any]]:
        """
        All devices tested at a station on a date (or date range).

        Dates are ``YYYY-MM-DD``; an empty date means today on the provider side.
        """
        payload: Dict[str, Any] = {"limit": page_size, "offset": 0}
        if end_date and end_date != start_date:
            payload["startDate"] = start_date
            payload["endDate"] = end_date
        else:
            payload["date"] = start_date or ""
        if station:
            payload["station"] = station

        devices: List[Dict[str, Any]] = []
        while True:
            response = await self._request("POST", ALL_DEVICES_PATH, json=payload)
            page = self._extract_devices(self._json(response, ALL_DEVICES_PATH))
            devices.extend(page)
            logger.debug(f"Fetched {len(page)} devices at offset {payload['offset']}")
            if len(page) < page_size:
                break
            payload["offset"] += page_size

        logger.info(f"Fetched {len(devices)} devices from station {station or 'all'} ({start_date or 'today'})")
        return devices

    @staticmethod
    def _extract_devices(data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ("devices", "data", "results"):
                if isinstance(data.get(key), list):
                    return data[key]
        return []

    async def get_device_details(self, imei: str) -> Dict[str, Any]:
        """
        Detailed device record by IMEI, served from cache when fresh.

        Raises:
            ResourceNotFoundError: the provider has no device with this IMEI
        """
        cached = self._cache.get(imei)
        if cached is not None:
            logger.debug(f"Device {imei} served from cache")
            return cached

        path = DEVICE_INFO_PATH.format(imei=imei)
        try:
            response = await self._request("GET", path, params={"detailed": "true"})
        except ResourceNotFoundError as e:
            raise ResourceNotFoundError(
                "Device not found in Phonecheck database",
                context={"imei": imei},
                original_exception=e
            )

        data = self._json(response, path)
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            raise DiagnosticsAPIError(
                "Unexpected device detail response",
                context={"imei": imei, "response_type": type(data).__name__}
            )

        self._cache[imei] = data
        return data

    async def get_many_details(self, imeis: Iterable[str]) -> Dict[str, Any]:
        """
        Look up several IMEIs concurrently (bounded by the client's semaphore).

        Returns a mapping of IMEI to detail dict, or to the exception raised
        for that IMEI.
        """
        imeis = list(dict.fromkeys(imeis))
        results = await asyncio.gather(
            *(self.get_device_details(imei) for imei in imeis),
            return_exceptions=True
        )
        return dict(zip(imeis, results))

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> int:
        self._cache.expire()
        size = len(self._cache)
        self._cache.clear()
        logger.info(f"Device cache cleared ({size} entries)")
        return size

    def cache_stats(self) -> Dict[str, Any]:
        self._cache.expire()
        return {
            "size": len(self._cache),
            "max_size": self._cache.maxsize,
            "ttl_seconds": self._cache.ttl,
            "imeis": list(self._cache.keys()),
        }
