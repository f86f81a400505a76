"""Tests for the retrying caller and the paginated extractor."""

from __future__ import annotations

import httpx
import pytest

from congresso_etl.client import call_with_retry
from congresso_etl.config import ApiConfig, RetryPolicy
from congresso_etl.endpoints import fill_path
from congresso_etl.errors import ClientRequestError, TransientRequestError


class Scripted:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        r = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(r.status_code, headers=r.headers, content=r.content)


class TestRetry:
    """Client errors fail fast, everything else is retried up to the limit."""

    @pytest.mark.asyncio
    async def test_not_found_is_attempted_once(self, make_api):
        handler = Scripted([httpx.Response(404)])
        async with make_api(handler) as api:
            with pytest.raises(ClientRequestError) as exc:
                await api.get_json("/deputados/1", context="deputy 1")
        assert handler.calls == 1
        assert exc.value.status_code == 404
        assert "deputy 1" in str(exc.value)

    @pytest.mark.asyncio
    async def test_bad_request_is_attempted_once(self, make_api):
        handler = Scripted([httpx.Response(400)])
        async with make_api(handler) as api:
            with pytest.raises(ClientRequestError):
                await api.get_json("/deputados")
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_server_error_uses_every_attempt(self, make_api):
        handler = Scripted([httpx.Response(503)])
        async with make_api(handler) as api:
            with pytest.raises(TransientRequestError) as exc:
                await api.get_json("/deputados")
        assert handler.calls == 3
        assert exc.value.status_code == 503

    @pytest.mark.asyncio
    async def test_rate_limited_then_ok(self, make_api):
        handler = Scripted([httpx.Response(429), httpx.Response(200, json={"dados": []})])
        async with make_api(handler) as api:
            payload = await api.get_json("/deputados")
        assert payload == {"dados": []}
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_empty_body_is_transient(self, make_api):
        handler = Scripted([httpx.Response(200, content=b""), httpx.Response(200, json={"ok": 1})])
        async with make_api(handler) as api:
            assert await api.get_json("/x") == {"ok": 1}
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self, make_api):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"dados": [1]})

        async with make_api(handler) as api:
            assert await api.get_json("/x") == {"dados": [1]}
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_fetch_returns_not_found_as_value(self, make_api):
        async with make_api(Scripted([httpx.Response(404)])) as api:
            res = await api.fetch("/deputados/999")
        assert not res.ok
        assert res.status_code == 404

    @pytest.mark.asyncio
    async def test_generic_failure_is_wrapped_with_context(self):
        calls = []

        async def op():
            calls.append(1)
            raise ValueError("boom")

        with pytest.raises(TransientRequestError) as exc:
            await call_with_retry(op, max_attempts=4, base_delay=0, context="despesas 204554")
        assert len(calls) == 4
        assert exc.value.context == "despesas 204554"
        assert isinstance(exc.value.__cause__, ValueError)


class TestRetryPolicy:
    def test_fixed_delay(self):
        assert RetryPolicy(base_delay=2.0).delay_for(5) == 2.0

    def test_linear_delay_is_capped(self):
        policy = RetryPolicy(base_delay=5.0, backoff="linear", cap=12.0)
        assert policy.delay_for(0) == 5.0
        assert policy.delay_for(3) == 12.0

    def test_exponential_delay_stays_within_jitter(self):
        policy = RetryPolicy(base_delay=1.0, backoff="exponential", cap=12.0)
        assert 0.6 * 4 <= policy.delay_for(2) <= 1.4 * 4


class TestPagination:
    """Stops at the first empty page or at ``max_pages``."""

    @staticmethod
    def paged(total_items: int, size: int):
        rows = [{"id": i} for i in range(total_items)]
        seen = []

        def handler(request):
            page = int(request.url.params["pagina"])
            seen.append(page)
            assert request.url.params["itens"] == str(size)
            return httpx.Response(200, json={"dados": rows[(page - 1) * size : page * size]})

        return handler, seen

    @pytest.mark.asyncio
    async def test_full_pages_then_empty(self, make_api):
        handler, seen = self.paged(total_items=6, size=2)
        cfg = ApiConfig(http2=False, items_per_page=2, retry=RetryPolicy(base_delay=0))
        async with make_api(handler, cfg) as api:
            items, pages = await api.get_all_pages("/deputados", {"idLegislatura": 57})
        assert len(items) == 6
        assert pages == 3
        assert seen == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_max_pages_truncates(self, make_api):
        handler, seen = self.paged(total_items=10, size=2)
        cfg = ApiConfig(http2=False, items_per_page=2, retry=RetryPolicy(base_delay=0))
        async with make_api(handler, cfg) as api:
            items, pages = await api.get_all_pages("/deputados", max_pages=3)
        assert len(items) == 6
        assert pages == 3
        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_missing_item_array_ends_listing(self, make_api):
        async with make_api(Scripted([httpx.Response(200, json={"erro": "x"})])) as api:
            assert await api.get_all_pages("/deputados") == ([], 0)

    @pytest.mark.asyncio
    async def test_page_error_propagates(self, make_api):
        def handler(request):
            if request.url.params["pagina"] == "2":
                return httpx.Response(502)
            return httpx.Response(200, json={"dados": [{"id": 1}]})

        async with make_api(handler) as api:
            with pytest.raises(TransientRequestError):
                await api.get_all_pages("/deputados")


def test_fill_path_encodes_values():
    assert fill_path("/deputados/{codigo}/despesas", codigo="12 3") == "/deputados/12%203/despesas"
    with pytest.raises(KeyError):
        fill_path("/deputados/{codigo}")
