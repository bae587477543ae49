"""Push-mode ingestion: the mention source's webhook."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from ..config import settings
from ..db import AsyncSession, get_db
from ..services.cache import CacheBackend, get_cache
from ..services.ingestion import SOURCE_WEBHOOK, MentionIngestor, MentionProcessingError
from ..services.mention_payload import MentionPayloadError, normalize_mention
from ..services.webhook_signature import crc_response_token, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "x-twitter-signature"
TIMESTAMP_HEADER = "x-twitter-timestamp"


class CrcResponse(BaseModel):
    response_token: str


class WebhookResponse(BaseModel):
    success: bool = True
    status: str
    tweet_id: str
    points_awarded: int | None = None


def _webhook_secret() -> str:
    if not settings.twitter_webhook_secret:
        logger.error("TWITTER_WEBHOOK_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        )
    return settings.twitter_webhook_secret


def _extract_mention_payload(body: Any) -> dict[str, Any]:
    """Accept a bare mention object or one wrapped in ``tweet``/``data``."""
    if isinstance(body, dict):
        for key in ("tweet", "data"):
            inner = body.get(key)
            if isinstance(inner, dict):
                return inner
        return body
    raise MentionPayloadError("Webhook body must be a JSON object")


@router.get("/twitter", response_model=CrcResponse)
async def twitter_crc_challenge(crc_token: str | None = Query(None)) -> CrcResponse:
    """Answer the source's challenge-response check."""
    if not crc_token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing crc_token")
    return CrcResponse(response_token=crc_response_token(_webhook_secret(), crc_token))


@router.post("/twitter", response_model=WebhookResponse)
async def receive_twitter_event(
    request: Request,
    session: AsyncSession = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
) -> WebhookResponse:
    """Verify, normalize and ingest one delivered mention.

    The HMAC is checked against the raw body before anything is parsed or
    written.
    """
    secret = _webhook_secret()
    signature = request.headers.get(SIGNATURE_HEADER)
    timestamp = request.headers.get(TIMESTAMP_HEADER)
    if not signature or not timestamp:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing signature")

    body = await request.body()
    if not verify_webhook_signature(secret, timestamp, body, signature):
        logger.warning(
            "webhook_signature_mismatch",
            extra={"client_ip": request.client.host if request.client else "unknown"},
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = _extract_mention_payload(json.loads(body))
        mention = normalize_mention(payload)
    except (ValueError, MentionPayloadError) as exc:
        logger.warning("webhook_payload_rejected", extra={"error": str(exc)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        result = await MentionIngestor(session, cache).ingest(
            mention, source=SOURCE_WEBHOOK, payload=payload
        )
    except MentionProcessingError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process mention",
        ) from exc

    return WebhookResponse(
        status=result.status,
        tweet_id=result.tweet_id,
        points_awarded=result.score,
    )
