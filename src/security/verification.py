"""Webhook authenticity checks and the endpoint-ownership handshake.

The presented token may arrive in several headers; the first one present,
in TOKEN_HEADERS order, is compared exactly (in constant time) with the
shared secret.

The handshake answers eBay's challenge_code with
SHA-256(challenge + verification token + endpoint URL) in lowercase hex.
Echoing the challenge back is kept only as a degraded mode for platform
handshake revisions that require it.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping
from enum import Enum

logger = logging.getLogger(__name__)

# Checked in order; the first header present wins.
TOKEN_HEADERS: tuple[str, ...] = (
    "x-ebay-signature-key",
    "x-ebay-signature",
    "ebay-signature-key",
    "ebay-signature",
    "authorization",
)

BEARER_PREFIX = "Bearer "


class VerificationConfigError(Exception):
    """The shared secret (or callback URL) needed for verification is not configured."""


class ChallengeStrategy(str, Enum):
    HASH = "hash"
    ECHO = "echo"


def extract_presented_token(headers: Mapping[str, str]) -> str | None:
    """Pick the presented token from the first populated header.

    Header lookup is case-insensitive when given Starlette headers; plain
    dicts are normalized to lowercase keys first.
    """
    if isinstance(headers, dict):
        headers = {k.lower(): v for k, v in headers.items()}

    for name in TOKEN_HEADERS:
        value = headers.get(name)
        if value:
            if value.startswith(BEARER_PREFIX):
                return value[len(BEARER_PREFIX):]
            return value
    return None


def verify(presented: str | None, expected: str | None) -> bool:
    """Exact comparison of the presented token with the shared secret.

    Raises:
        VerificationConfigError: no shared secret is configured.
    """
    if not expected:
        raise VerificationConfigError("Verification token is not configured")
    if presented is None:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


def compute_challenge_response(
    challenge: str,
    secret: str | None,
    endpoint_url: str | None,
    strategy: ChallengeStrategy = ChallengeStrategy.HASH,
) -> str:
    """Answer a handshake challenge.

    Raises:
        VerificationConfigError: HASH strategy without a secret or endpoint URL.
    """
    if strategy is ChallengeStrategy.ECHO:
        logger.warning("Answering challenge in echo mode — endpoint ownership is not proven")
        return challenge

    if not secret or not endpoint_url:
        raise VerificationConfigError("Verification token and endpoint URL are required for the challenge hash")

    digest = hashlib.sha256()
    digest.update(challenge.encode())
    digest.update(secret.encode())
    digest.update(endpoint_url.encode())
    return digest.hexdigest()
