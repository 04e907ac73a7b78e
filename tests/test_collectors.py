import json
import unittest
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from collectors.base import ApiError, RequestBudget, request_json
from collectors.stocks import StockFeed, country_code, country_name, normalize_export
from collectors.torn import TornFetcher
from persistence import JsonDocumentStore

EXPORT = {
    "stocks": {
        "jap": {"update": 1700000000, "stocks": [
            {"id": 206, "name": "Xanax", "quantity": 12, "cost": 830000},
            {"id": 197, "name": "Cherry Blossom", "quantity": "0", "cost": 500},
        ]},
        "mex": {"update": 1700000000, "stocks": []},
    }
}


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class ApiErrorTests(unittest.TestCase):
    def test_classification(self):
        self.assertTrue(ApiError("Too many requests", 5).is_rate_limit)
        self.assertTrue(ApiError("HTTP 429", 429).is_rate_limit)
        self.assertTrue(ApiError("timeout").is_timeout)
        self.assertFalse(ApiError("Incorrect key", 2).is_rate_limit)


class RequestBudgetTests(unittest.TestCase):
    def test_budget_per_key_and_window(self):
        now = [0.0]
        budget = RequestBudget(max_calls=2, window_seconds=60, clock=lambda: now[0])
        budget.record_call("a")
        budget.record_call("a")
        self.assertFalse(budget.can_call("a"))
        self.assertTrue(budget.can_call("b"))
        now[0] = 61
        self.assertTrue(budget.can_call("a"))


class StockExportTests(unittest.TestCase):
    def test_normalize_export(self):
        countries = normalize_export(EXPORT)
        self.assertEqual(countries["jap"][0], {"itemId": 206, "name": "Xanax", "quantity": 12, "cost": 830000})
        self.assertEqual(countries["jap"][1]["quantity"], 0)
        self.assertEqual(countries["mex"], [])
        self.assertEqual(normalize_export({"nope": 1}), {})

    def test_country_lookup(self):
        self.assertEqual(country_code("Japan"), "jap")
        self.assertEqual(country_code("uk"), "uni")
        self.assertEqual(country_code("Cayman Islands"), "cay")
        self.assertIsNone(country_code("Torn"))
        self.assertEqual(country_name("sou"), "South Africa")


@pytest.mark.asyncio
async def test_request_json_retries_server_errors():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"ok": True})

    async with _client(handler) as client:
        with patch("collectors.base.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await request_json(client, "https://example.test/x") == {"ok": True}
    assert len(calls) == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_request_json_does_not_retry_client_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(403)

    async with _client(handler) as client:
        with pytest.raises(ApiError) as err:
            await request_json(client, "https://example.test/x")
    assert err.value.code == 403
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_request_json_network_error_is_timeout_code():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        with patch("collectors.base.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ApiError) as err:
                await request_json(client, "https://example.test/x")
    assert err.value.is_timeout


@pytest.mark.asyncio
async def test_torn_fetch_sends_selection_and_key():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        return httpx.Response(200, json={"energy": {"current": 10, "maximum": 100}})

    async with _client(handler) as client:
        data = await TornFetcher(client).fetch("abc", "bars,cooldowns")
    assert data["energy"]["current"] == 10
    assert seen["url"].path == "/user/"
    assert seen["url"].params["selections"] == "bars,cooldowns"
    assert seen["url"].params["key"] == "abc"


@pytest.mark.asyncio
async def test_torn_error_body_raises_with_code():
    def handler(request):
        return httpx.Response(200, json={"error": {"code": 2, "error": "Incorrect key"}})

    async with _client(handler) as client:
        with pytest.raises(ApiError) as err:
            await TornFetcher(client).fetch("bad", "money")
    assert err.value.code == 2
    assert str(err.value) == "Incorrect key"


@pytest.mark.asyncio
@pytest.mark.parametrize("body, message", [
    ({"error": {"code": "n/a", "error": "Backend error"}}, "Backend error"),
    ({"error": "Key disabled"}, "Key disabled"),
    ({"error": None}, "API error"),
])
async def test_torn_malformed_error_body_still_raises_api_error(body, message):
    async with _client(lambda request: httpx.Response(200, json=body)) as client:
        with pytest.raises(ApiError) as err:
            await TornFetcher(client).fetch("abc", "money")
    assert err.value.code == 0
    assert str(err.value) == message


@pytest.mark.asyncio
async def test_torn_budget_and_empty_key():
    def handler(request):
        return httpx.Response(200, json={"travel": {"destination": "Japan", "time_left": 0}})

    async with _client(handler) as client:
        fetcher = TornFetcher(client, budget=RequestBudget(max_calls=1, window_seconds=60))
        assert await fetcher.travel_status("abc") == {"destination": "Japan", "time_left": 0}
        with pytest.raises(ApiError) as err:
            await fetcher.fetch("abc", "travel")
        assert err.value.code == 5 and err.value.is_rate_limit
        with pytest.raises(ApiError) as err:
            await fetcher.fetch("", "travel")
        assert err.value.code == 1


@pytest.mark.asyncio
async def test_stock_feed_refresh_snapshot_and_stale(tmp_path):
    now = [1000.0]
    status = [200]

    def handler(request):
        if status[0] != 200:
            return httpx.Response(status[0])
        return httpx.Response(200, json=EXPORT)

    async with _client(handler) as client:
        feed = StockFeed(client, JsonDocumentStore(str(tmp_path)), refresh_seconds=30,
                         hard_ttl_seconds=600, clock=lambda: now[0])
        assert not feed.has_data()
        assert await feed.refresh()
        assert feed.snapshot("Japan")[0]["quantity"] == 12
        assert feed.snapshot("Mexico") == []
        assert feed.snapshot("Canada") is None
        assert not feed.is_stale

        # throttled inside the refresh period
        assert not await feed.refresh()

        status[0] = 404
        now[0] += 31
        assert not await feed.refresh()
        assert feed.is_stale
        # last good data keeps being served
        assert feed.snapshot("Japan")[0]["quantity"] == 12

    saved = json.loads((tmp_path / "stock_cache.json").read_text())
    assert saved["countries"]["jap"][0]["itemId"] == 206

    async with _client(handler) as client:
        reloaded = StockFeed(client, JsonDocumentStore(str(tmp_path)), clock=lambda: now[0])
        assert reloaded.has_data()
        assert reloaded.snapshot("jap")[0]["name"] == "Xanax"


@pytest.mark.asyncio
async def test_stock_feed_becomes_stale_after_hard_ttl():
    now = [1000.0]

    async with _client(lambda request: httpx.Response(200, json=EXPORT)) as client:
        feed = StockFeed(client, clock=lambda: now[0], hard_ttl_seconds=600)
        await feed.refresh(force=True)
        now[0] += 601
        assert feed.is_stale
