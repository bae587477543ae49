"""Quality scoring for ingested mentions.

Scores are deterministic: the same metrics always produce the same total and
breakdown, which is what lets a mention's score stay fixed after insert.

Three components add up to a 0-100 total:

- Engagement (0-40): ``likes + 3*retweets + 2*replies + 5*quotes``,
  compressed as ``min(40, log10(raw + 1) * 10)`` so viral outliers cannot
  dominate.
- Content (0-30): text length in UTF-16 code units (15 for 50-280, 10 for
  20+, else 5), +10 image, +15 video, +5 for one or two hashtags, -5 for
  more than five.
- Virality (0-30): share of retweets in likes+retweets+replies, bucketed.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any

MAX_ENGAGEMENT_SCORE = 40
MAX_CONTENT_SCORE = 30
MAX_TOTAL_SCORE = 100

LIKE_WEIGHT = 1
RETWEET_WEIGHT = 3
REPLY_WEIGHT = 2
QUOTE_WEIGHT = 5

OPTIMAL_TEXT_MIN = 50
OPTIMAL_TEXT_MAX = 280
GOOD_TEXT_MIN = 20

# (ratio must exceed, points), checked in order.
VIRALITY_THRESHOLDS = (
    (0.30, 30),
    (0.20, 25),
    (0.10, 20),
    (0.05, 15),
)
ENGAGED_VIRALITY_SCORE = 10


@dataclass(frozen=True)
class MentionMetrics:
    text: str
    likes: int = 0
    retweets: int = 0
    replies: int = 0
    quotes: int = 0
    has_image: bool = False
    has_video: bool = False
    has_hashtags: bool = False


@dataclass(frozen=True)
class ScoreBreakdown:
    engagement_score: int
    content_score: int
    virality_score: int
    total_score: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QualityScore:
    total: int
    breakdown: ScoreBreakdown


@dataclass(frozen=True)
class RewardTier:
    tier: str
    description: str


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def engagement_score(metrics: MentionMetrics) -> float:
    raw = (
        metrics.likes * LIKE_WEIGHT
        + metrics.retweets * RETWEET_WEIGHT
        + metrics.replies * REPLY_WEIGHT
        + metrics.quotes * QUOTE_WEIGHT
    )
    return min(MAX_ENGAGEMENT_SCORE, math.log10(max(raw, 0) + 1) * 10)


def text_length(text: str) -> int:
    """Length in UTF-16 code units, the unit the source platform counts in."""
    return len(text.encode("utf-16-le")) // 2


def content_score(metrics: MentionMetrics) -> int:
    length = text_length(metrics.text)
    if OPTIMAL_TEXT_MIN <= length <= OPTIMAL_TEXT_MAX:
        score = 15
    elif length >= GOOD_TEXT_MIN:
        score = 10
    else:
        score = 5

    if metrics.has_image:
        score += 10
    if metrics.has_video:
        score += 15

    if metrics.has_hashtags:
        hashtag_count = metrics.text.count("#")
        if hashtag_count in (1, 2):
            score += 5
        elif hashtag_count > 5:
            score -= 5

    return max(0, min(MAX_CONTENT_SCORE, score))


def virality_score(metrics: MentionMetrics) -> int:
    total_engagement = metrics.likes + metrics.retweets + metrics.replies
    if total_engagement <= 0:
        return 0
    ratio = metrics.retweets / total_engagement
    for threshold, points in VIRALITY_THRESHOLDS:
        if ratio > threshold:
            return points
    return ENGAGED_VIRALITY_SCORE


def calculate_quality_score(metrics: MentionMetrics) -> QualityScore:
    engagement = engagement_score(metrics)
    content = content_score(metrics)
    virality = virality_score(metrics)

    total = max(0, min(MAX_TOTAL_SCORE, round_half_up(engagement + content + virality)))
    breakdown = ScoreBreakdown(
        engagement_score=round_half_up(engagement),
        content_score=content,
        virality_score=virality,
        total_score=total,
    )
    return QualityScore(total=total, breakdown=breakdown)


def reward_tier(score: int) -> RewardTier:
    if score >= 90:
        return RewardTier("legendary", "Legendary Burninator")
    if score >= 75:
        return RewardTier("epic", "Epic Burnination")
    if score >= 50:
        return RewardTier("rare", "Rare Dragon")
    if score >= 25:
        return RewardTier("common", "Common Cultist")
    return RewardTier("peasant", "Humble Peasant")
