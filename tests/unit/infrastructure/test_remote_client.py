"""Unit tests for the remote catalog API client."""

from collections.abc import Callable

import httpx
import orjson
import pytest

from catalog_sync.config import Settings
from catalog_sync.exceptions import RemoteErrorKind, RemoteUnavailable
from catalog_sync.infrastructure.redis import CacheService
from catalog_sync.infrastructure.remote import RemoteCatalogClient

Handler = Callable[[httpx.Request], httpx.Response]


def _json(data: object, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=orjson.dumps(data))


class Recorder:
    """MockTransport handler that replays responses and records requests."""

    def __init__(self, *responses: httpx.Response | Exception):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def _client(settings: Settings, cache: CacheService, handler: Handler) -> RemoteCatalogClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteCatalogClient(settings, cache, http_client=http)


class TestRemoteCatalogClientRequests:
    @pytest.mark.asyncio
    async def test_product_list_unwraps_data_and_sends_api_key(
        self, test_settings: Settings, cache: CacheService
    ) -> None:
        recorder = Recorder(_json({"data": [{"slug": "a"}, "b", {"id": 3}]}))
        client = _client(test_settings, cache, recorder)

        entries = await client.fetch_product_list()

        assert [e.slug for e in entries] == ["a", "b", ""]
        request = recorder.requests[0]
        assert request.headers["APIKey"] == "test-key"
        assert str(request.url) == "https://remote.test/api/getProductList"

    @pytest.mark.asyncio
    async def test_product_detail_passes_slug(self, test_settings: Settings, cache: CacheService) -> None:
        recorder = Recorder(_json({"data": {"id": 1, "slug": "gs-1900", "desc": "Switch"}}))
        client = _client(test_settings, cache, recorder)

        payload = await client.fetch_product_detail("gs-1900")

        assert payload.desc == "Switch"
        assert recorder.requests[0].url.params["slug"] == "gs-1900"

    @pytest.mark.asyncio
    async def test_category_list_drops_nameless_entries(
        self, test_settings: Settings, cache: CacheService
    ) -> None:
        recorder = Recorder(_json([{"id": 1, "name": "Switches"}, {"id": 2, "name": ""}]))
        client = _client(test_settings, cache, recorder)

        categories = await client.fetch_category_list(1)

        assert [c.name for c in categories] == ["Switches"]
        assert recorder.requests[0].url.path == "/api/getProduct1stCategoryList"

    @pytest.mark.asyncio
    async def test_unknown_category_level(self, test_settings: Settings, cache: CacheService) -> None:
        client = _client(test_settings, cache, Recorder(_json([])))
        with pytest.raises(ValueError):
            await client.fetch_category_list(4)


class TestRemoteCatalogClientFailures:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, test_settings: Settings, cache: CacheService) -> None:
        recorder = Recorder(_json({}, status_code=503), _json({"data": []}))
        client = _client(test_settings, cache, recorder)

        assert await client.fetch_product_list() == []
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_bad_status_after_retries(self, test_settings: Settings, cache: CacheService) -> None:
        recorder = Recorder(_json({}, status_code=500))
        client = _client(test_settings, cache, recorder)

        with pytest.raises(RemoteUnavailable) as exc_info:
            await client.fetch_product_list()

        assert exc_info.value.kind is RemoteErrorKind.BAD_STATUS
        assert exc_info.value.status_code == 500
        assert len(recorder.requests) == test_settings.remote_api_max_retries

    @pytest.mark.asyncio
    async def test_transport_error_is_unreachable(self, test_settings: Settings, cache: CacheService) -> None:
        recorder = Recorder(httpx.ConnectError("connection refused"))
        client = _client(test_settings, cache, recorder)

        with pytest.raises(RemoteUnavailable) as exc_info:
            await client.fetch_product_detail("a")

        assert exc_info.value.kind is RemoteErrorKind.UNREACHABLE

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self, test_settings: Settings, cache: CacheService) -> None:
        recorder = Recorder(httpx.Response(200, content=b"<html>oops</html>"))
        client = _client(test_settings, cache, recorder)

        with pytest.raises(RemoteUnavailable) as exc_info:
            await client.fetch_product_list()

        assert exc_info.value.kind is RemoteErrorKind.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_null_detail_is_malformed(self, test_settings: Settings, cache: CacheService) -> None:
        client = _client(test_settings, cache, Recorder(_json({"data": None})))

        with pytest.raises(RemoteUnavailable) as exc_info:
            await client.fetch_product_detail("a")

        assert exc_info.value.kind is RemoteErrorKind.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_list_that_is_not_an_array(self, test_settings: Settings, cache: CacheService) -> None:
        client = _client(test_settings, cache, Recorder(_json({"data": {"slug": "a"}})))

        with pytest.raises(RemoteUnavailable) as exc_info:
            await client.fetch_product_list()

        assert exc_info.value.kind is RemoteErrorKind.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_connection_reports_failure(self, test_settings: Settings, cache: CacheService) -> None:
        client = _client(test_settings, cache, Recorder(_json({}, status_code=401)))

        result = await client.test_connection()

        assert result["success"] is False
        assert result["categories_count"] == 0


class TestRemoteCatalogClientCache:
    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, test_settings: Settings, cache: CacheService) -> None:
        recorder = Recorder(_json({"data": [{"slug": "a"}]}))
        client = _client(test_settings, cache, recorder)

        await client.fetch_product_list()
        await client.fetch_product_list()

        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, test_settings: Settings, cache: CacheService) -> None:
        recorder = Recorder(_json({}, status_code=500), _json({}, status_code=500), _json({}, status_code=500), _json([]))
        client = _client(test_settings, cache, recorder)

        with pytest.raises(RemoteUnavailable):
            await client.fetch_product_list()
        assert await client.fetch_product_list() == []

    @pytest.mark.asyncio
    async def test_malformed_list_is_retried_before_caching(
        self, test_settings: Settings, cache: CacheService
    ) -> None:
        recorder = Recorder(_json({"data": {"oops": 1}}), _json([{"slug": "a"}]))
        client = _client(test_settings, cache, recorder)

        first = await client.fetch_product_list()
        second = await client.fetch_product_list()

        assert [entry.slug for entry in first] == ["a"]
        assert [entry.slug for entry in second] == ["a"]
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_malformed_bodies_are_not_cached(self, test_settings: Settings, cache: CacheService) -> None:
        recorder = Recorder(_json({"data": {"oops": 1}}))
        client = _client(test_settings, cache, recorder)

        with pytest.raises(RemoteUnavailable) as exc_info:
            await client.fetch_category_list()
        assert exc_info.value.kind is RemoteErrorKind.MALFORMED_RESPONSE

        with pytest.raises(RemoteUnavailable):
            await client.fetch_category_list()
        assert len(recorder.requests) == 2 * test_settings.remote_api_max_retries

    @pytest.mark.asyncio
    async def test_clear_cache_forces_refetch(self, test_settings: Settings, cache: CacheService) -> None:
        recorder = Recorder(_json([{"slug": "a"}]))
        client = _client(test_settings, cache, recorder)

        await client.fetch_product_list()
        assert await client.clear_cache() == 1
        await client.fetch_product_list()

        assert len(recorder.requests) == 2

    def test_cache_key_ignores_param_order(self) -> None:
        first = RemoteCatalogClient.cache_key("/getProductBySlug", {"slug": "a", "lang": "en"})
        second = RemoteCatalogClient.cache_key("/getProductBySlug", {"lang": "en", "slug": "a"})
        assert first == second
        assert first.startswith("api:")
