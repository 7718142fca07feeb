"""
Error taxonomy for outbound model requests.

Every failure raised by an executable call is classified here before the
cascade decides whether to retry, escalate, or give up.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


_STATUS_PATTERN = re.compile(r"failed:\s*(\d{3})\b")
_PREFIX_PATTERN = re.compile(r"^[\w\s]*failed:\s*\d*\s*")
_RATE_LIMIT_PATTERN = re.compile(r"\b429\b")

RATE_LIMIT_STATUS = 429


class RequestGuardError(Exception):
    """Base class for all errors raised by the request guard."""


class ApiRequestError(RequestGuardError):
    """A single network exchange failed.

    The status code is taken from ``status_code`` when given, otherwise it is
    parsed from messages shaped like ``"API request failed: 503 ..."``.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code if status_code is not None else parse_status_code(message)


class StreamTransportError(ApiRequestError):
    """The HTTP exchange backing a stream failed before or during transfer."""


class RequestCancelled(RequestGuardError):
    """The logical request was cancelled at a suspension point."""


class ExhaustedError(RequestGuardError):
    """All retries on every configured target were consumed."""

    def __init__(
        self,
        last_error_message: str,
        max_retries: int,
        fallback_tiers: int,
        attempts: int,
    ):
        if fallback_tiers:
            message = (
                f"All fallback options exhausted after {max_retries} retry attempts "
                f"on the primary model and {fallback_tiers} fallback tiers. "
                f"Last error: {last_error_message}"
            )
        else:
            message = (
                f"Failed after {max_retries} retry attempts: {last_error_message}"
            )
        super().__init__(message)
        self.last_error_message = last_error_message
        self.max_retries = max_retries
        self.fallback_tiers = fallback_tiers
        self.attempts = attempts


class FailureKind(Enum):
    """How the cascade treats a failed attempt."""
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class FailureInfo:
    """Classification of one failed attempt."""
    kind: FailureKind
    status_code: Optional[int]
    message: str


def parse_status_code(message: str) -> Optional[int]:
    """Extract the HTTP status from a ``"... failed: <code> ..."`` message."""
    if not message:
        return None
    match = _STATUS_PATTERN.search(message)
    if match is None:
        return None
    return int(match.group(1))


def strip_failure_prefix(message: str) -> str:
    """Drop the ``"API request failed: 500"`` prefix, keeping the detail."""
    stripped = _PREFIX_PATTERN.sub("", message, count=1).lstrip(" -")
    return stripped or message


def classify_failure(exc: BaseException) -> FailureInfo:
    """Classify an exception raised by an executable call.

    Args:
        exc: The exception raised by the attempt

    Returns:
        FailureInfo with the failure kind and any status code found
    """
    message = str(exc)
    status_code = getattr(exc, "status_code", None)
    if not isinstance(status_code, int):
        status_code = parse_status_code(message)

    rate_limited = status_code == RATE_LIMIT_STATUS or (
        status_code is None and _RATE_LIMIT_PATTERN.search(message) is not None
    )
    if rate_limited:
        kind = FailureKind.RATE_LIMITED
    else:
        kind = FailureKind.TRANSIENT

    return FailureInfo(kind=kind, status_code=status_code, message=message)
