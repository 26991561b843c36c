"""eBay marketplace webhook adapter — account deletion notifications.

Handles:
- GET  /api/ebay/deletion-notification?challenge_code=...  → endpoint ownership handshake
- POST /api/ebay/deletion-notification                     → challenge or deletion event

The platform retries anything but a 200, so POST always answers 200 with a
small status body; internal failures are logged and recorded, never surfaced.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from src.config import settings
from src.security.verification import (
    ChallengeStrategy,
    VerificationConfigError,
    compute_challenge_response,
)

logger = logging.getLogger(__name__)

marketplace_router = APIRouter(prefix="/api/ebay", tags=["marketplace"])

DELETION_ENDPOINT = "/deletion-notification"


# ── Helpers ──────────────────────────────────────────────────────────


def _challenge_response(challenge: str) -> str:
    """Compute the handshake answer from the configured token and endpoint URL."""
    mp = settings.marketplace
    return compute_challenge_response(
        challenge,
        mp.ebay_verification_token,
        mp.ebay_endpoint_url,
        ChallengeStrategy(mp.marketplace_challenge_strategy),
    )


def _parse_body(body: bytes) -> Any:
    """Decode a JSON body; anything undecodable becomes None."""
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        logger.warning("Notification body is not valid JSON (%d bytes)", len(body))
        return None


# ── Endpoints ────────────────────────────────────────────────────────


@marketplace_router.get("", response_class=PlainTextResponse)
async def api_root() -> str:
    return "eBay Deletion Handler API"


@marketplace_router.get("/health")
async def api_health() -> dict[str, str]:
    return {"status": "OK"}


@marketplace_router.get(DELETION_ENDPOINT)
async def verify_endpoint(challenge_code: str | None = Query(None)) -> Response:
    """eBay endpoint verification handshake (GET)."""
    if not challenge_code:
        return PlainTextResponse("Missing challenge_code parameter", status_code=400)

    logger.info("Received challenge code: %s", challenge_code)
    try:
        response_hash = _challenge_response(challenge_code)
    except VerificationConfigError:
        logger.error("Cannot answer challenge: verification token or endpoint URL not configured")
        return PlainTextResponse("Verification not configured", status_code=503)

    return JSONResponse({"challengeResponse": response_hash})


@marketplace_router.post(DELETION_ENDPOINT)
async def receive_notification(request: Request) -> dict[str, str]:
    """Receive a challenge or an account deletion notification (POST)."""
    try:
        payload = _parse_body(await request.body())

        if isinstance(payload, dict) and payload.get("challenge"):
            challenge = str(payload["challenge"])
            logger.info("Received challenge in POST: %s", challenge)
            try:
                return {"challengeResponse": _challenge_response(challenge)}
            except VerificationConfigError:
                logger.error("Cannot answer challenge: verification token or endpoint URL not configured")
                return {"status": "not_configured"}

        handler = request.app.state.services.handler
        result = await handler.accept(payload, request.headers)
        return {"status": result.status.value}
    except Exception:
        logger.exception("Error processing notification")
        return {"status": "error"}
