"""Tests for the mention source client."""

from __future__ import annotations

import httpx
import pytest

from app.services.twitter_client import MentionSourceError, TwitterClient


def _client(handler, **kwargs) -> TwitterClient:
    return TwitterClient(api_key="test-key", transport=httpx.MockTransport(handler), **kwargs)


class TestConstruction:
    def test_missing_key_raises(self, monkeypatch) -> None:
        monkeypatch.setattr("app.services.twitter_client.settings.twitter_api_key", None)
        with pytest.raises(MentionSourceError):
            TwitterClient()


class TestSearchMentions:
    @pytest.mark.asyncio
    async def test_follows_cursor_across_pages(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.params.get("cursor") == "page-2":
                return httpx.Response(200, json={"tweets": [{"id": "2"}], "has_next_page": False})
            return httpx.Response(
                200,
                json={"tweets": [{"id": "1"}], "has_next_page": True, "next_cursor": "page-2"},
            )

        async with _client(handler) as client:
            mentions = await client.search_mentions("@trogdorcult", since_time=1733814030)

        assert [m["id"] for m in mentions] == ["1", "2"]
        assert seen[0].headers["x-api-key"] == "test-key"
        assert seen[0].url.params["userName"] == "trogdorcult"
        assert seen[0].url.params["sinceTime"] == "1733814030"

    @pytest.mark.asyncio
    async def test_omits_since_time_without_watermark(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [{"id": "9"}]})

        async with _client(handler) as client:
            mentions = await client.search_mentions("trogdorcult")

        assert mentions == [{"id": "9"}]
        assert "sinceTime" not in seen[0].url.params

    @pytest.mark.asyncio
    async def test_stops_at_page_limit(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(
                200,
                json={"tweets": [{"id": str(calls["n"])}], "has_next_page": True, "next_cursor": "more"},
            )

        async with _client(handler, max_pages=3) as client:
            mentions = await client.search_mentions("trogdorcult")

        assert calls["n"] == 3
        assert len(mentions) == 3

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        async with _client(lambda request: httpx.Response(500, json={})) as client:
            with pytest.raises(MentionSourceError):
                await client.search_mentions("trogdorcult")

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as client:
            with pytest.raises(MentionSourceError, match="timed out"):
                await client.search_mentions("trogdorcult")

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self) -> None:
        async with _client(lambda request: httpx.Response(200, content=b"<html>")) as client:
            with pytest.raises(MentionSourceError):
                await client.search_mentions("trogdorcult")


class TestUserLookup:
    @pytest.mark.asyncio
    async def test_found(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/twitter/user/info"
            return httpx.Response(200, json={"data": {"id": "42", "userName": "StrongBad"}})

        async with _client(handler) as client:
            user = await client.get_user_by_username("@StrongBad")

        assert user == {"id": "42", "userName": "StrongBad"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [httpx.Response(404, json={}), httpx.Response(200, json={"data": None})],
    )
    async def test_unknown_returns_none(self, response: httpx.Response) -> None:
        async with _client(lambda request: response) as client:
            assert await client.get_user_by_username("nobody") is None
