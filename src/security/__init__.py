"""Security module — webhook verification and handshake."""

from src.security.verification import (
    ChallengeStrategy,
    VerificationConfigError,
    compute_challenge_response,
    extract_presented_token,
    verify,
)

__all__ = [
    "ChallengeStrategy",
    "VerificationConfigError",
    "compute_challenge_response",
    "extract_presented_token",
    "verify",
]
