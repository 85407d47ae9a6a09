"""HTTP client for the remote catalog API."""

import hashlib
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
import orjson
import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from catalog_sync.config import Settings
from catalog_sync.exceptions import RemoteErrorKind, RemoteUnavailable
from catalog_sync.infrastructure.redis import CacheService
from catalog_sync.schemas import CategoryPayload, ProductListEntry, ProductPayload

logger = structlog.get_logger()

T = TypeVar("T")

CACHE_PREFIX = "api:"

CATEGORY_ENDPOINTS = {
    1: "/getProduct1stCategoryList",
    2: "/getProduct2ndCategoryList",
    3: "/getProduct3rdCategoryList",
}


def _log_retry_attempt(retry_state: RetryCallState) -> None:
    """Log retry attempt before sleeping."""
    if retry_state.outcome is not None:
        exception = retry_state.outcome.exception()
        logger.warning(
            "Retrying remote API request",
            attempt=retry_state.attempt_number,
            error=str(exception),
            kind=getattr(getattr(exception, "kind", None), "value", None),
        )


class RemoteCatalogClient:
    """Read-only client for the remote catalog API.

    Responses are cached for a short TTL keyed by endpoint and parameters.
    Transport errors, non-200 responses and malformed bodies are retried a
    fixed number of times; once exhausted the call raises RemoteUnavailable.
    No other exception type leaves this class.
    """

    def __init__(
        self,
        settings: Settings,
        cache: CacheService,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.cache = cache
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=settings.remote_api_timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def fetch_category_list(self, level: int = 1) -> list[CategoryPayload]:
        """Fetch the category list for a level (1, 2 or 3)."""
        if level not in CATEGORY_ENDPOINTS:
            raise ValueError(f"Unsupported category level: {level}")
        endpoint = CATEGORY_ENDPOINTS[level]

        def parse(data: Any) -> list[CategoryPayload]:
            if not isinstance(data, list):
                raise self._malformed(endpoint, "category list is not an array")
            categories = [CategoryPayload.from_api(item) for item in data if isinstance(item, dict)]
            return [category for category in categories if category.name]

        return await self._request(endpoint, parse)

    async def fetch_product_list(self) -> list[ProductListEntry]:
        """Fetch the full remote product list."""
        endpoint = "/getProductList"

        def parse(data: Any) -> list[ProductListEntry]:
            if not isinstance(data, list):
                raise self._malformed(endpoint, "product list is not an array")
            return [ProductListEntry.from_api(item) for item in data]

        return await self._request(endpoint, parse)

    async def fetch_product_detail(self, slug: str) -> ProductPayload:
        """Fetch one product's full detail payload."""
        endpoint = "/getProductBySlug"

        def parse(data: Any) -> ProductPayload:
            try:
                return ProductPayload.from_api(data, slug)
            except (ValueError, ValidationError) as e:
                raise self._malformed(endpoint, f"invalid product payload for {slug}: {e}") from e

        return await self._request(endpoint, parse, {"slug": slug})

    async def test_connection(self) -> dict[str, Any]:
        """Check the API key and endpoint by fetching top-level categories."""
        try:
            categories = await self.fetch_category_list(1)
        except RemoteUnavailable as e:
            return {"success": False, "message": str(e), "categories_count": 0}
        return {
            "success": True,
            "message": "Connection successful",
            "categories_count": len(categories),
        }

    async def clear_cache(self) -> int:
        """Drop every cached API response."""
        deleted = await self.cache.delete_prefix(CACHE_PREFIX)
        logger.info("Remote API cache cleared", deleted=deleted)
        return deleted

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def cache_key(endpoint: str, params: dict[str, Any] | None = None) -> str:
        encoded = orjson.dumps(params or {}, option=orjson.OPT_SORT_KEYS)
        digest = hashlib.md5(endpoint.encode() + encoded).hexdigest()
        return f"{CACHE_PREFIX}{digest}"

    async def _request(
        self,
        endpoint: str,
        parse: Callable[[Any], T],
        params: dict[str, Any] | None = None,
    ) -> T:
        """GET an endpoint and parse the body. Only bodies that parse are cached."""
        key = self.cache_key(endpoint, params)
        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug("Remote API cache hit", endpoint=endpoint)
            return parse(cached)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.remote_api_max_retries)),
            wait=wait_fixed(self.settings.remote_api_retry_delay_seconds),
            retry=retry_if_exception_type(RemoteUnavailable),
            before_sleep=_log_retry_attempt,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    data = await self._fetch_once(endpoint, params)
                    result = parse(data)
        except RemoteUnavailable as e:
            logger.error(
                "Remote API request failed",
                endpoint=endpoint,
                params=params,
                kind=e.kind.value,
                status_code=e.status_code,
                error=str(e),
            )
            raise

        await self.cache.set(key, data, ttl_seconds=self.settings.remote_api_cache_ttl_seconds)
        return result

    async def _fetch_once(self, endpoint: str, params: dict[str, Any] | None) -> Any:
        url = self.settings.remote_api_base_url.rstrip("/") + endpoint
        try:
            response = await self._client.get(
                url,
                params=params,
                headers={"APIKey": self.settings.remote_api_key, "Accept": "application/json"},
                timeout=self.settings.remote_api_timeout,
            )
        except httpx.HTTPError as e:
            raise RemoteUnavailable(RemoteErrorKind.UNREACHABLE, endpoint, str(e)) from e

        if response.status_code != 200:
            raise RemoteUnavailable(
                RemoteErrorKind.BAD_STATUS,
                endpoint,
                f"HTTP {response.status_code} from {endpoint}",
                status_code=response.status_code,
            )

        try:
            body = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise self._malformed(endpoint, f"invalid JSON: {e}") from e

        if isinstance(body, dict) and "data" in body:
            body = body["data"]
        if body is None:
            raise self._malformed(endpoint, "empty response body")
        return body

    @staticmethod
    def _malformed(endpoint: str, message: str) -> RemoteUnavailable:
        return RemoteUnavailable(RemoteErrorKind.MALFORMED_RESPONSE, endpoint, message)
