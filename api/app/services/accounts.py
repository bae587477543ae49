"""Account identity changes: linking and unlinking a Twitter handle.

Point totals are never touched here; only the ingestion pipeline writes them.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.accounts import Account
from .twitter_client import MentionSourceError, TwitterClient

logger = logging.getLogger(__name__)

HANDLE_PATTERN = re.compile(r"^@?[a-zA-Z0-9_]+$")
MAX_HANDLE_LENGTH = 16

NOT_FOUND = "not_found"
ALREADY_LINKED = "already_linked"
FAILED = "failed"

ALREADY_LINKED_MESSAGE = "This Twitter username is already linked to another wallet"


class AccountLinkError(Exception):
    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


def clean_handle(handle: str) -> str:
    return handle.strip().removeprefix("@")


async def _linked_elsewhere(session: AsyncSession, account_id: int, *conditions) -> bool:
    result = await session.execute(
        select(Account.id).where(Account.id != account_id, *conditions).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def link_twitter(
    session: AsyncSession,
    account: Account,
    handle: str,
    client: TwitterClient,
) -> Account:
    """Resolve *handle* to its platform id and attach both to *account*.

    Raises:
        AccountLinkError: ``not_found`` if the source does not know the
            handle, ``already_linked`` if another account holds it, and
            ``failed`` if the source cannot be reached.
    """
    handle = clean_handle(handle)
    if await _linked_elsewhere(session, account.id, Account.twitter_handle == handle):
        raise AccountLinkError(ALREADY_LINKED, ALREADY_LINKED_MESSAGE)

    try:
        user = await client.get_user_by_username(handle)
    except MentionSourceError as exc:
        logger.error(
            "twitter_link_lookup_failed",
            extra={"account_id": account.id, "handle": handle, "error": str(exc)},
        )
        raise AccountLinkError(FAILED, "Failed to link Twitter account") from exc
    if user is None:
        raise AccountLinkError(NOT_FOUND, "Twitter user not found")

    twitter_id = str(user["id"])
    if await _linked_elsewhere(session, account.id, Account.twitter_id == twitter_id):
        raise AccountLinkError(ALREADY_LINKED, ALREADY_LINKED_MESSAGE)

    account.twitter_handle = user.get("userName") or user.get("username") or handle
    account.twitter_id = twitter_id
    account.username = account.username or account.twitter_handle
    account.profile_image = (
        user.get("profilePicture") or user.get("profile_image_url") or account.profile_image
    )
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise AccountLinkError(ALREADY_LINKED, ALREADY_LINKED_MESSAGE) from exc

    logger.info(
        "twitter_linked",
        extra={"account_id": account.id, "handle": account.twitter_handle, "twitter_id": twitter_id},
    )
    return account


async def unlink_twitter(session: AsyncSession, account: Account) -> Account:
    account.twitter_handle = None
    account.twitter_id = None
    await session.flush()
    logger.info("twitter_unlinked", extra={"account_id": account.id})
    return account
