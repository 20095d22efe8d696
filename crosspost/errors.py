"""
Error taxonomy for the publishing pipeline.

Every error raised on the publish path carries an ``ErrorKind`` and a
``retryable`` flag.  The worker turns them into a ``JobOutcome``; the
queue decides redelivery from that outcome alone.

  kind            retryable   typical source
  ──────────────  ─────────   ───────────────────────────────────────
  validation      no          submission checks, platform 400/422
  not_found       no          credential resolver
  inactive        no          credential resolver
  token_expired   no          credential resolver (no refresh path)
  decryption      no          token cipher
  rate_limited    yes         platform 429
  auth            no          platform 401/403, failed refresh
  transient       yes         platform 5xx, timeouts, connection errors
  unknown         yes         anything else (capped by max attempts)
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    TOKEN_EXPIRED = "token_expired"
    DECRYPTION = "decryption"
    RATE_LIMITED = "rate_limited"
    AUTH = "auth"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class CrosspostError(Exception):
    """Base class for all pipeline errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    retryable: bool = False


class ConfigurationError(CrosspostError):
    kind = ErrorKind.CONFIGURATION


class ValidationError(CrosspostError):
    """Bad request shape; raised before anything is persisted or enqueued."""

    kind = ErrorKind.VALIDATION


# ---------------------------------------------------------------------------
# Credential errors
# ---------------------------------------------------------------------------


class AccountNotFound(CrosspostError):
    kind = ErrorKind.NOT_FOUND


class AccountInactive(CrosspostError):
    kind = ErrorKind.INACTIVE


class TokenExpiredNoRefresh(CrosspostError):
    kind = ErrorKind.TOKEN_EXPIRED


class TokenDecryptionError(CrosspostError):
    kind = ErrorKind.DECRYPTION


# ---------------------------------------------------------------------------
# Platform errors
# ---------------------------------------------------------------------------


class PublishError(CrosspostError):
    """Raised by a publisher adapter.  The raw platform message is kept as-is."""

    kind = ErrorKind.UNKNOWN
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        platform: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.platform = platform
        self.status_code = status_code


class RateLimited(PublishError):
    kind = ErrorKind.RATE_LIMITED
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        platform: str = "",
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, platform=platform, status_code=status_code)
        self.retry_after = retry_after


class AuthFailed(PublishError):
    kind = ErrorKind.AUTH
    retryable = False


class MediaRejected(PublishError):
    """The platform (or the adapter on its behalf) refused the content shape."""

    kind = ErrorKind.VALIDATION
    retryable = False


class PlatformTransient(PublishError):
    kind = ErrorKind.TRANSIENT
    retryable = True


class UnknownPublishError(PublishError):
    kind = ErrorKind.UNKNOWN
    retryable = True


def error_for_status(
    status_code: int,
    message: str,
    *,
    platform: str = "",
    retry_after: Optional[float] = None,
) -> PublishError:
    """Build the typed error for a failed platform HTTP response."""
    if status_code == 429:
        return RateLimited(
            message, platform=platform, status_code=status_code, retry_after=retry_after
        )
    if status_code in (401, 403):
        return AuthFailed(message, platform=platform, status_code=status_code)
    if status_code in (400, 422):
        return MediaRejected(message, platform=platform, status_code=status_code)
    if status_code >= 500:
        return PlatformTransient(message, platform=platform, status_code=status_code)
    return UnknownPublishError(message, platform=platform, status_code=status_code)


# ---------------------------------------------------------------------------
# Classification (user-facing boundary)
# ---------------------------------------------------------------------------


def classify_message(message: str) -> ErrorKind:
    lowered = message.lower()
    if "429" in lowered or "rate limit" in lowered:
        return ErrorKind.RATE_LIMITED
    if "401" in lowered or "403" in lowered or "authentication failed" in lowered:
        return ErrorKind.AUTH
    return ErrorKind.UNKNOWN


def classify_error(exc: BaseException) -> ErrorKind:
    """Typed pipeline errors keep their kind; anything else is read from its message."""
    if isinstance(exc, CrosspostError):
        return exc.kind
    return classify_message(str(exc))


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, CrosspostError):
        return exc.retryable
    return True


@dataclass
class FailureNotice:
    """What a user is shown for a failed target."""

    kind: ErrorKind
    title: str
    detail: str
    retry_after: Optional[dt.timedelta] = None


def describe_failure(message: str, cooldown_minutes: int = 15) -> FailureNotice:
    kind = classify_message(message)
    if kind is ErrorKind.RATE_LIMITED:
        return FailureNotice(
            kind=kind,
            title="Rate limit reached",
            detail=f"The platform is throttling requests. Try again in {cooldown_minutes} minutes.",
            retry_after=dt.timedelta(minutes=cooldown_minutes),
        )
    if kind is ErrorKind.AUTH:
        return FailureNotice(
            kind=kind,
            title="Reconnect required",
            detail="Authentication failed. Reconnect the account and try again.",
        )
    return FailureNotice(kind=kind, title="Publishing failed", detail=message)
