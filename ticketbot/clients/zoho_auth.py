"""Zoho OAuth refresh-token authenticator with .env write-back."""

import logging
import os
import threading
from datetime import datetime, timedelta
from pathlib import Path

from dotenv import set_key

from ticketbot.clients.http import request_json
from ticketbot.common.timestamps import parse_timestamp, utc_now
from ticketbot.config import required_env
from ticketbot.errors import BotError

logger = logging.getLogger(__name__)

EXPIRY_BUFFER = timedelta(seconds=60)


def token_url(top_level_domain: str = "com") -> str:
    return f"https://accounts.zoho.{top_level_domain}/oauth/v2/token"


class ZohoAuthenticator:
    """Hands out a valid Zoho access token, refreshing it when close to expiry."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        access_token: str | None = None,
        expires_at: datetime | None = None,
        top_level_domain: str = "com",
        env_file: str | None = ".env",
        timeout: float = 30,
    ) -> None:
        if not (client_id and client_secret and refresh_token):
            raise RuntimeError("Missing Zoho OAuth credentials.")
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._access_token = access_token
        self._expires_at = expires_at or (utc_now() - timedelta(seconds=10))
        self._token_url = token_url(top_level_domain)
        self._env_file = env_file
        self._timeout = timeout
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, *, top_level_domain: str = "com", env_file: str | None = ".env") -> "ZohoAuthenticator":
        """Build from ZOHO_* env vars; a missing or invalid expiry forces a refresh."""
        expiry_raw = os.getenv("ZOHO_TOKEN_EXPIRY", "").strip()
        expires_at = None
        if expiry_raw:
            try:
                expires_at = parse_timestamp(expiry_raw)
            except ValueError:
                logger.warning("Ignoring unparsable ZOHO_TOKEN_EXPIRY=%r.", expiry_raw)
        return cls(
            client_id=required_env("ZOHO_CLIENT_ID"),
            client_secret=required_env("ZOHO_CLIENT_SECRET"),
            refresh_token=required_env("ZOHO_REFRESH_TOKEN"),
            access_token=os.getenv("ZOHO_ACCESS_TOKEN", "").strip() or None,
            expires_at=expires_at,
            top_level_domain=top_level_domain,
            env_file=env_file,
        )

    def _expired(self) -> bool:
        return not self._access_token or utc_now() >= self._expires_at - EXPIRY_BUFFER

    def access_token(self) -> str:
        """Return the cached token, refreshing first when expired or missing."""
        with self._lock:
            if self._expired():
                logger.info("Zoho token expired (or missing). Refreshing.")
                self._refresh_locked()
            return self._access_token or ""

    def force_refresh(self) -> str:
        """Refresh unconditionally (used after the API rejected the current token)."""
        with self._lock:
            self._refresh_locked()
            return self._access_token or ""

    def _refresh_locked(self) -> None:
        data = request_json(
            "POST",
            self._token_url,
            form={
                "refresh_token": self._refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "refresh_token",
            },
            timeout=self._timeout,
        )
        if not isinstance(data, dict) or data.get("error") or not data.get("access_token"):
            error = data.get("error") if isinstance(data, dict) else "empty response"
            logger.error("Zoho OAuth refresh failed: %s", error)
            raise BotError.permanent(f"Zoho OAuth refresh failed: {error}")
        expires_in = int(data.get("expires_in") or 3600)
        self._access_token = str(data["access_token"])
        self._expires_at = utc_now() + timedelta(seconds=expires_in)
        logger.info("Zoho token refreshed. Expires in %ss.", expires_in)
        self._persist()

    def _persist(self) -> None:
        if not self._env_file:
            return
        try:
            Path(self._env_file).touch(exist_ok=True)
            set_key(self._env_file, "ZOHO_ACCESS_TOKEN", self._access_token or "", quote_mode="never")
            set_key(self._env_file, "ZOHO_TOKEN_EXPIRY", self._expires_at.isoformat(), quote_mode="never")
        except OSError:
            logger.exception("Failed to persist refreshed Zoho token to %s.", self._env_file)
