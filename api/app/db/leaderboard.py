"""Persisted leaderboard snapshots.

Snapshots are an archive of past rankings; the live leaderboard is always
recomputed from accounts and mentions.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..utils.datetime_utils import now_utc
from .accounts import Account
from .base import Base


class LeaderboardSnapshot(Base):
    __tablename__ = "leaderboard_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    period: Mapped[str] = mapped_column(String(20), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False)
    total_mentions: Mapped[int] = mapped_column(Integer, nullable=False)
    average_quality: Mapped[int] = mapped_column(Integer, nullable=False)
    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    snapshot_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, server_default=func.now(), nullable=False
    )

    account: Mapped[Account] = relationship("Account")

    __table_args__ = (
        Index("idx_leaderboard_snapshots_account_period", "account_id", "period"),
        Index("idx_leaderboard_snapshots_period_rank", "period", "rank"),
    )
