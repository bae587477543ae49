"""Async client for the TwitterAPI.io-compatible mention source."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


class MentionSourceError(RuntimeError):
    """The mention source could not be reached or answered with an error."""


class TwitterClient:
    """Thin wrapper over ``httpx.AsyncClient``; use as an async context manager."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_pages: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        api_key = api_key or settings.twitter_api_key
        if not api_key:
            raise MentionSourceError("TWITTER_API_KEY is not configured")
        self.max_pages = max_pages or settings.twitter_max_pages
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.twitter_api_base_url,
            headers={"x-api-key": api_key, "Content-Type": "application/json"},
            timeout=timeout or settings.twitter_request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "TwitterClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: dict[str, Any]) -> httpx.Response:
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("mention_source_timeout", extra={"path": path})
            raise MentionSourceError(f"Request to {path} timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("mention_source_unreachable", extra={"path": path, "error": str(exc)})
            raise MentionSourceError(f"Request to {path} failed: {exc}") from exc
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "mention_source_error_status",
                extra={"path": response.request.url.path, "status_code": response.status_code},
            )
            raise MentionSourceError(
                f"Mention source returned {response.status_code}"
            ) from exc
        except ValueError as exc:
            raise MentionSourceError("Mention source returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise MentionSourceError("Mention source returned an unexpected body")
        return body

    async def search_mentions(
        self, handle: str, since_time: int | None = None
    ) -> list[dict[str, Any]]:
        """Return every mention of *handle* since the unix timestamp, across pages."""
        params: dict[str, Any] = {"userName": handle.lstrip("@")}
        if since_time:
            params["sinceTime"] = since_time

        mentions: list[dict[str, Any]] = []
        for _ in range(self.max_pages):
            body = self._json(await self._get("/twitter/user/mentions", params))
            batch = body.get("tweets") or body.get("data") or []
            mentions.extend(item for item in batch if isinstance(item, dict))

            cursor = body.get("next_cursor")
            if not body.get("has_next_page") or not cursor:
                break
            params["cursor"] = cursor
        else:
            logger.info(
                "mention_source_page_limit_reached",
                extra={"handle": handle, "max_pages": self.max_pages},
            )

        logger.info(
            "mention_source_fetched",
            extra={"handle": handle, "since_time": since_time, "count": len(mentions)},
        )
        return mentions

    async def get_user_by_username(self, handle: str) -> dict[str, Any] | None:
        """Look up a user profile; None when the source does not know the handle."""
        response = await self._get("/twitter/user/info", {"userName": handle.lstrip("@")})
        if response.status_code == 404:
            return None
        body = self._json(response)
        user = body.get("data")
        if not isinstance(user, dict) or not user.get("id"):
            return None
        return user
