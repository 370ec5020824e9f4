# src/life_manager/google/errors.py

from __future__ import annotations

import httpx


class GoogleApiError(RuntimeError):
    """Raised when a Google REST API returns a non-success status."""

    def __init__(self, status_code: int, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(f"Google API error ({status_code}): {message}")
        self.status_code = status_code
        self.message = message
        self.retry_after = retry_after


def _safe_error_message(response: httpx.Response) -> str:
    """Extract Google's error.message without echoing the whole body."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
        if isinstance(error, str) and error.strip():
            description = payload.get("error_description")
            if isinstance(description, str) and description.strip():
                return f"{error}: {description.strip()}"
            return error.strip()
    return response.reason_phrase or "request failed"


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        # HTTP-date form is not used by Google APIs.
        return None


def raise_for_google_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    raise GoogleApiError(
        response.status_code,
        _safe_error_message(response),
        retry_after=_retry_after_seconds(response),
    )
