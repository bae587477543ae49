"""Participant accounts ("cultists")."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import text

from ..utils.datetime_utils import now_utc
from .base import Base

if TYPE_CHECKING:
    from .mentions import Mention


class Account(Base):
    """A wallet-authenticated participant.

    ``total_points`` is written only by the ingestion pipeline's atomic
    increment and always equals the sum of ``points_awarded`` over the
    account's mentions.
    """

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    username: Mapped[str | None] = mapped_column(String(50), nullable=True)
    twitter_handle: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    twitter_id: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    profile_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_points: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    is_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, server_default=func.now(), nullable=False
    )
    last_active_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=now_utc, nullable=True
    )

    mentions: Mapped[list["Mention"]] = relationship(
        "Mention", back_populates="account", lazy="noload"
    )

    __table_args__ = (
        Index("idx_accounts_total_points", "total_points"),
    )
