"""Normalize mention payloads from the mention source.

The source has shipped two field layouts over time: the current camelCase
one (``createdAt``, ``likeCount``, ``author.id``) and the legacy v2 one
(``created_at``, ``public_metrics``, ``author_id``). Everything downstream
of ``normalize_mention`` works on ``NormalizedMention`` only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from ..utils.datetime_utils import parse_source_timestamp
from .scoring import MentionMetrics

TWEET_URL_TEMPLATE = "https://twitter.com/i/web/status/{tweet_id}"

IMAGE_MEDIA_TYPES = {"photo"}
VIDEO_MEDIA_TYPES = {"video", "animated_gif"}

# (current name, legacy public_metrics name)
_COUNTER_FIELDS = {
    "likes": ("likeCount", "like_count"),
    "retweets": ("retweetCount", "retweet_count"),
    "replies": ("replyCount", "reply_count"),
    "quotes": ("quoteCount", "quote_count"),
    "impressions": ("viewCount", "impression_count"),
}


class MentionPayloadError(ValueError):
    """Payload is missing an id or carries an unusable timestamp."""


@dataclass(frozen=True)
class NormalizedMention:
    tweet_id: str
    author_id: str | None
    author_handle: str | None
    created_at: datetime
    text: str
    likes: int = 0
    retweets: int = 0
    replies: int = 0
    quotes: int = 0
    impressions: int = 0
    has_image: bool = False
    has_video: bool = False
    has_hashtags: bool = False

    @property
    def tweet_url(self) -> str:
        return TWEET_URL_TEMPLATE.format(tweet_id=self.tweet_id)

    def metrics(self) -> MentionMetrics:
        return MentionMetrics(
            text=self.text,
            likes=self.likes,
            retweets=self.retweets,
            replies=self.replies,
            quotes=self.quotes,
            has_image=self.has_image,
            has_video=self.has_video,
            has_hashtags=self.has_hashtags,
        )


def _as_count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _counter(payload: Mapping[str, Any], current: str, legacy: str) -> int:
    value = payload.get(current)
    if value is None:
        public_metrics = payload.get("public_metrics") or {}
        value = public_metrics.get(legacy)
    return _as_count(value)


def _media_items(payload: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    items: list[Mapping[str, Any]] = []
    for key in ("extendedEntities", "extended_entities", "entities", "includes"):
        container = payload.get(key)
        if isinstance(container, Mapping):
            media = container.get("media")
            if isinstance(media, list):
                items.extend(item for item in media if isinstance(item, Mapping))
    return items


def _has_hashtags(payload: Mapping[str, Any], text: str) -> bool:
    entities = payload.get("entities")
    if isinstance(entities, Mapping) and entities.get("hashtags"):
        return True
    return "#" in text


def _author(payload: Mapping[str, Any]) -> tuple[str | None, str | None]:
    author = payload.get("author")
    author_id = None
    handle = None
    if isinstance(author, Mapping):
        author_id = author.get("id")
        handle = author.get("userName") or author.get("username")
    if not author_id:
        author_id = payload.get("author_id")
    return (str(author_id) if author_id else None), handle


def normalize_mention(payload: Mapping[str, Any]) -> NormalizedMention:
    """Map either source layout into a ``NormalizedMention``.

    Raises:
        MentionPayloadError: when the id is missing or the timestamp is
            absent or unparseable.
    """
    if not isinstance(payload, Mapping):
        raise MentionPayloadError("Mention payload must be an object")

    tweet_id = payload.get("id")
    if not tweet_id:
        raise MentionPayloadError("Mention payload has no id")

    raw_created = payload.get("createdAt") or payload.get("created_at")
    created_at = parse_source_timestamp(raw_created if isinstance(raw_created, str) else None)
    if created_at is None:
        raise MentionPayloadError(f"Mention {tweet_id} has an invalid timestamp: {raw_created!r}")

    text = payload.get("text") or ""
    author_id, author_handle = _author(payload)
    media_types = {str(item.get("type", "")).lower() for item in _media_items(payload)}

    counters = {
        name: _counter(payload, current, legacy)
        for name, (current, legacy) in _COUNTER_FIELDS.items()
    }

    return NormalizedMention(
        tweet_id=str(tweet_id),
        author_id=author_id,
        author_handle=author_handle,
        created_at=created_at,
        text=text,
        has_image=bool(media_types & IMAGE_MEDIA_TYPES),
        has_video=bool(media_types & VIDEO_MEDIA_TYPES),
        has_hashtags=_has_hashtags(payload, text),
        **counters,
    )
