"""Tests for signed-in account endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.db.accounts import Account
from app.db.mentions import Mention
from app.routers.users import get_link_client
from app.services.auth_tokens import create_access_token
from app.services.twitter_client import TwitterClient


def _auth(account: Account) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(account.id, account.wallet_address)}"}


@pytest.fixture
def lookup():
    """Install a user-lookup source backed by ``httpx.MockTransport``."""
    from api.main import app

    state: dict = {"status": 200, "body": {}}

    def handler(request: httpx.Request) -> httpx.Response:
        state["handle"] = request.url.params.get("userName")
        return httpx.Response(state["status"], json=state["body"])

    app.dependency_overrides[get_link_client] = lambda: TwitterClient(
        api_key="test-key", transport=httpx.MockTransport(handler)
    )
    return state


class TestProfile:
    @pytest.mark.asyncio
    async def test_requires_token(self, client) -> None:
        response = await client.get("/api/users/me")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_profile_with_stats(self, client, session_factory, make_account) -> None:
        account = await make_account(total_points=120)
        await make_account(total_points=500)
        base = datetime(2024, 12, 1, tzinfo=timezone.utc)
        async with session_factory() as session:
            session.add_all(
                [
                    Mention(
                        tweet_id=str(i),
                        account_id=account.id,
                        tweet_url=f"https://twitter.com/i/web/status/{i}",
                        content=f"mention {i}",
                        quality_score=score,
                        points_awarded=score,
                        created_at=base + timedelta(hours=i),
                    )
                    for i, score in enumerate([10, 20, 30, 25, 15, 20])
                ]
            )
            await session.commit()

        response = await client.get("/api/users/me", headers=_auth(account))

        body = response.json()
        assert response.status_code == 200
        assert body["total_points"] == 120
        assert body["total_mentions"] == 6
        assert body["average_score"] == 20
        assert body["rank"] == 2
        assert len(body["recent_mentions"]) == 5
        assert body["recent_mentions"][0]["tweet_id"] == "5"
        assert body["recent_mentions"][0]["reward_tier"] == "peasant"

    @pytest.mark.asyncio
    async def test_update_username(self, client, make_account) -> None:
        account = await make_account(total_points=42)

        response = await client.patch(
            "/api/users/me", json={"username": "Trogdor"}, headers=_auth(account)
        )

        assert response.status_code == 200
        assert response.json()["username"] == "Trogdor"
        assert response.json()["total_points"] == 42

    @pytest.mark.asyncio
    @pytest.mark.parametrize("username", ["a", "x" * 51])
    async def test_username_length_validated(self, client, make_account, username: str) -> None:
        account = await make_account()
        response = await client.patch(
            "/api/users/me", json={"username": username}, headers=_auth(account)
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_mention_history_paged(self, client, session_factory, make_account) -> None:
        account = await make_account()
        base = datetime(2024, 12, 1, tzinfo=timezone.utc)
        async with session_factory() as session:
            session.add_all(
                [
                    Mention(
                        tweet_id=f"h{i}",
                        account_id=account.id,
                        tweet_url="https://twitter.com/i/web/status/1",
                        content="m",
                        quality_score=95,
                        points_awarded=95,
                        created_at=base + timedelta(days=i),
                    )
                    for i in range(3)
                ]
            )
            await session.commit()

        response = await client.get(
            "/api/users/me/mentions", params={"page": 2, "limit": 2}, headers=_auth(account)
        )

        body = response.json()
        assert body["total"] == 3
        assert [m["tweet_id"] for m in body["mentions"]] == ["h0"]
        assert body["mentions"][0]["reward_tier"] == "legendary"


class TestTwitterLink:
    @pytest.mark.asyncio
    async def test_link_resolves_platform_id(self, client, session_factory, make_account, lookup) -> None:
        account = await make_account(total_points=10)
        lookup["body"] = {
            "data": {"id": "tw-55", "userName": "StrongBad", "profilePicture": "https://img/sb.png"}
        }

        response = await client.post(
            "/api/users/me/twitter", json={"twitterUsername": "@StrongBad"}, headers=_auth(account)
        )

        assert response.status_code == 200
        assert lookup["handle"] == "StrongBad"
        body = response.json()
        assert body["twitter_handle"] == "StrongBad"
        assert body["profile_image"] == "https://img/sb.png"
        assert body["total_points"] == 10
        async with session_factory() as session:
            assert (await session.get(Account, account.id)).twitter_id == "tw-55"

    @pytest.mark.asyncio
    async def test_unknown_user(self, client, make_account, lookup) -> None:
        account = await make_account()
        lookup["status"] = 404

        response = await client.post(
            "/api/users/me/twitter", json={"twitterUsername": "nobody"}, headers=_auth(account)
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Twitter user not found"

    @pytest.mark.asyncio
    async def test_handle_claimed_by_other_wallet(self, client, make_account, lookup) -> None:
        await make_account(twitter_handle="strongbad", twitter_id="tw-55")
        account = await make_account()

        response = await client.post(
            "/api/users/me/twitter", json={"twitterUsername": "strongbad"}, headers=_auth(account)
        )

        assert response.status_code == 409
        assert response.json()["detail"] == (
            "This Twitter username is already linked to another wallet"
        )

    @pytest.mark.asyncio
    async def test_platform_id_claimed_by_other_wallet(self, client, make_account, lookup) -> None:
        await make_account(twitter_handle="oldname", twitter_id="tw-55")
        account = await make_account()
        lookup["body"] = {"data": {"id": "tw-55", "userName": "newname"}}

        response = await client.post(
            "/api/users/me/twitter", json={"twitterUsername": "newname"}, headers=_auth(account)
        )

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_source_failure(self, client, make_account, lookup) -> None:
        account = await make_account()
        lookup["status"] = 500

        response = await client.post(
            "/api/users/me/twitter", json={"twitterUsername": "strongbad"}, headers=_auth(account)
        )

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to link Twitter account"

    @pytest.mark.asyncio
    async def test_invalid_handle_format(self, client, make_account, lookup) -> None:
        account = await make_account()
        response = await client.post(
            "/api/users/me/twitter", json={"twitterUsername": "not a handle!"}, headers=_auth(account)
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unlink(self, client, session_factory, make_account) -> None:
        account = await make_account(twitter_handle="strongbad", twitter_id="tw-55", total_points=7)

        response = await client.delete("/api/users/me/twitter", headers=_auth(account))

        assert response.status_code == 200
        assert response.json()["twitter_handle"] is None
        async with session_factory() as session:
            stored = await session.get(Account, account.id)
            assert stored.twitter_id is None
            assert stored.total_points == 7
