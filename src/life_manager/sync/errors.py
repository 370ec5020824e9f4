# src/life_manager/sync/errors.py

"""
Error taxonomy for the sync engine.

classify_error() drives every retry decision:
- FATAL         -> never retried, never queued
- RATE_LIMITED  -> retried (optionally honoring Retry-After)
- NETWORK       -> retried, then queued
- OTHER         -> treated as retryable
"""

from __future__ import annotations

import errno
import socket
from enum import StrEnum

import httpx

FATAL_STATUS_CODES = frozenset({400, 401, 403, 404})
RATE_LIMIT_STATUS = 429

_NETWORK_ERRNOS = frozenset({errno.ECONNREFUSED, errno.ECONNRESET, errno.ETIMEDOUT})
_NETWORK_ERROR_CODES = frozenset({"ECONNREFUSED", "ENOTFOUND", "ETIMEDOUT", "ECONNRESET"})
_NETWORK_KEYWORDS = ("network", "timeout", "timed out", "connection")


class ErrorKind(StrEnum):
    FATAL = "fatal"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    OTHER = "other"

    @property
    def retryable(self) -> bool:
        return self is not ErrorKind.FATAL


class SyncEngineError(Exception):
    """Base class for sync engine errors."""


class PermanentSyncError(SyncEngineError):
    """A failure that must not be retried (bad request, auth, not found)."""


class ExportError(SyncEngineError):
    """An export touching several remote resources failed on at least one of them."""

    def __init__(self, message: str, errors: list[tuple[str, Exception]] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class CredentialError(SyncEngineError):
    """No usable credentials for the user ("no tokens" / "refresh failed")."""

    def __init__(self, message: str, *, user_id: int | None = None) -> None:
        super().__init__(message)
        self.user_id = user_id


def status_code_of(exc: BaseException) -> int | None:
    """Best-effort HTTP status extraction from provider/transport errors."""
    for candidate in (
        getattr(exc, "status_code", None),
        getattr(getattr(exc, "response", None), "status_code", None),
        getattr(getattr(exc, "response", None), "status", None),
        getattr(exc, "code", None),
    ):
        if isinstance(candidate, int) and not isinstance(candidate, bool) and 100 <= candidate <= 599:
            return candidate
    return None


def _is_network_error(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError, socket.gaierror)):
        return True
    if isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS:
        return True

    code = getattr(exc, "code", None)
    if isinstance(code, str) and code.upper() in _NETWORK_ERROR_CODES:
        return True

    message = str(exc).lower()
    return any(word in message for word in _NETWORK_KEYWORDS)


def classify_error(exc: BaseException) -> ErrorKind:
    """Classify a failed remote call. Total: never raises."""
    try:
        if isinstance(exc, PermanentSyncError):
            return ErrorKind.FATAL

        status = status_code_of(exc)
        if status in FATAL_STATUS_CODES:
            return ErrorKind.FATAL
        if status == RATE_LIMIT_STATUS:
            return ErrorKind.RATE_LIMITED

        if _is_network_error(exc):
            return ErrorKind.NETWORK
    except Exception:
        return ErrorKind.OTHER
    return ErrorKind.OTHER


def describe_error(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or exc.__class__.__name__
