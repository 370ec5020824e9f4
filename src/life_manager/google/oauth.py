# src/life_manager/google/oauth.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path

import httpx

from ..sync.errors import CredentialError
from ..sync.sync_models import CredentialHandle

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
PROVIDER_GOOGLE = "google"

# Refresh a little before the provider would start rejecting the token.
EXPIRY_MARGIN_SECONDS = 5 * 60


@dataclass(slots=True)
class OAuthTokens:
    user_id: int
    provider: str
    access_token: str
    refresh_token: str | None
    expires_at: float
    scope: str | None
    updated_at: float

    def is_expired(self, *, now_ts: float | None = None, margin: float = EXPIRY_MARGIN_SECONDS) -> bool:
        now = time.time() if now_ts is None else now_ts
        return self.expires_at <= now + margin


class TokenManager:
    """
    Stores OAuth tokens per (user, provider) in SQLite and hands out live credential handles.

    Handles are refreshed transparently when the access token expires within five
    minutes; refreshed tokens are persisted. Redirect/consent handling is out of
    scope: tokens arrive through store_tokens().
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        client_id: str | None,
        client_secret: str | None,
        token_url: str = GOOGLE_TOKEN_URL,
        provider: str = PROVIDER_GOOGLE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._provider = provider
        self._timeout = timeout
        self._transport = transport
        self._ensure_schema()
        logger.info("TokenManager ready db=%s provider=%s", self._db_path, self._provider)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS oauth_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    provider TEXT NOT NULL,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT,
                    expires_at REAL NOT NULL,
                    scope TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    UNIQUE(user_id, provider)
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    # ---- storage ----

    def store_tokens(
        self,
        user_id: int,
        *,
        access_token: str,
        refresh_token: str | None,
        expires_at: float,
        scope: str | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("access_token is required")

        now = time.time()
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO oauth_tokens(
                    user_id, provider, access_token, refresh_token, expires_at, scope, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, provider) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(excluded.refresh_token, oauth_tokens.refresh_token),
                    expires_at = excluded.expires_at,
                    scope = COALESCE(excluded.scope, oauth_tokens.scope),
                    updated_at = excluded.updated_at
                """,
                (int(user_id), self._provider, access_token, refresh_token, float(expires_at), scope, now, now),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Stored %s tokens for user_id=%s", self._provider, user_id)

    def get_tokens(self, user_id: int) -> OAuthTokens | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM oauth_tokens WHERE user_id = ? AND provider = ?",
                (int(user_id), self._provider),
            )
            row = cur.fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return OAuthTokens(
            user_id=int(row["user_id"]),
            provider=str(row["provider"]),
            access_token=str(row["access_token"]),
            refresh_token=row["refresh_token"],
            expires_at=float(row["expires_at"]),
            scope=row["scope"],
            updated_at=float(row["updated_at"]),
        )

    def has_tokens(self, user_id: int) -> bool:
        return self.get_tokens(user_id) is not None

    def delete_tokens(self, user_id: int) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "DELETE FROM oauth_tokens WHERE user_id = ? AND provider = ?",
                (int(user_id), self._provider),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Deleted %s tokens for user_id=%s", self._provider, user_id)

    # ---- refresh ----

    async def refresh_access_token(self, user_id: int) -> OAuthTokens:
        tokens = self.get_tokens(user_id)
        if tokens is None:
            raise CredentialError("no tokens: No OAuth tokens found for user", user_id=user_id)
        if not tokens.refresh_token:
            raise CredentialError("refresh failed: no refresh token stored", user_id=user_id)
        if not (self._client_id and self._client_secret):
            raise CredentialError("refresh failed: Google OAuth client is not configured", user_id=user_id)

        data = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": tokens.refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._token_url, data=data)
        except httpx.HTTPError as exc:
            raise CredentialError(f"refresh failed: {exc}", user_id=user_id) from exc

        if not response.is_success:
            logger.warning("Token refresh rejected user_id=%s status=%s", user_id, response.status_code)
            raise CredentialError(
                f"refresh failed: token endpoint returned {response.status_code}", user_id=user_id
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise CredentialError("refresh failed: invalid token response", user_id=user_id) from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise CredentialError("refresh failed: token response has no access_token", user_id=user_id)

        try:
            expires_in = float(payload.get("expires_in", 3600))
        except (TypeError, ValueError):
            expires_in = 3600.0

        self.store_tokens(
            user_id,
            access_token=str(access_token),
            refresh_token=payload.get("refresh_token"),
            expires_at=time.time() + expires_in,
            scope=payload.get("scope"),
        )
        logger.info("Refreshed access token user_id=%s expires_in=%.0fs", user_id, expires_in)

        refreshed = self.get_tokens(user_id)
        if refreshed is None:
            raise CredentialError("refresh failed: tokens vanished after refresh", user_id=user_id)
        return refreshed

    async def get_credential_handle(self, user_id: int) -> CredentialHandle:
        tokens = self.get_tokens(user_id)
        if tokens is None:
            raise CredentialError("no tokens: No OAuth tokens found for user", user_id=user_id)
        if tokens.is_expired():
            tokens = await self.refresh_access_token(user_id)
        return CredentialHandle(user_id=tokens.user_id, access_token=tokens.access_token, expires_at=tokens.expires_at)
