"""OAuth token acquisition, caching and refresh."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from mailbox_backup.auth.providers import OAuthEndpoints
from mailbox_backup.errors import AuthError

logger = logging.getLogger(__name__)

EXPIRY_SKEW = timedelta(seconds=60)

FlowRunner = Callable[[InstalledAppFlow], Credentials]


@dataclass(frozen=True)
class Token:
    """An access token and its expiry (None when the server did not say)."""

    access_token: str
    expiry: datetime | None = None

    @property
    def expired(self) -> bool:
        """Return True when the token is expired or about to expire."""
        if self.expiry is None:
            return False
        return datetime.now(tz=UTC) >= self.expiry - EXPIRY_SKEW


class TokenProvider(Protocol):
    """Issues access tokens for remote mailbox calls."""

    def authorize(self) -> Token:
        """Obtain a token, interactively if needed. Raises AuthError."""
        ...

    def refresh(self) -> Token:
        """Force a refresh of the current token. Raises AuthError."""
        ...

    def fresh_token(self) -> Token:
        """Return a token valid for the next call batch, refreshing if needed."""
        ...


def _token_from_credentials(creds: Credentials) -> Token:
    """Convert google-auth credentials to a Token.

    google-auth stores `expiry` as a naive UTC datetime.
    """
    if not creds.token:
        raise AuthError("Authorization server returned no access token")
    expiry = creds.expiry.replace(tzinfo=UTC) if creds.expiry is not None else None
    return Token(access_token=creds.token, expiry=expiry)


def _run_local_server(open_browser: bool) -> FlowRunner:
    """Return a flow runner using the loopback redirect flow."""

    def _run(flow: InstalledAppFlow) -> Credentials:
        return flow.run_local_server(port=0, open_browser=open_browser)

    return _run


class OAuthTokenProvider:
    """Token provider backed by google-auth credentials and an installed-app flow.

    Works with any OAuth2 server that supports the authorization-code grant
    with a loopback redirect (Google and Microsoft identity platform).
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        endpoints: OAuthEndpoints,
        token_file: Path | None = None,
        open_browser: bool = True,
        flow_runner: FlowRunner | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            client_id: OAuth client id of the registered application.
            client_secret: OAuth client secret.
            endpoints: Authorization/token endpoints and scopes.
            token_file: Optional JSON file to cache credentials in.
            open_browser: Whether the interactive flow opens a browser.
            flow_runner: Replaces the interactive flow (tests, headless setups).
        """
        self._client_id = client_id
        self._client_secret = client_secret
        self._endpoints = endpoints
        self._token_file = token_file
        self._run_flow = flow_runner or _run_local_server(open_browser)
        self._creds: Credentials | None = None
        self._lock = threading.Lock()

    @property
    def credentials(self) -> Credentials:
        """Return the authorized credentials.

        Raises:
            AuthError: If `authorize()` has not succeeded yet.
        """
        if self._creds is None:
            raise AuthError("Token provider has not been authorized")
        return self._creds

    def authorize(self) -> Token:
        """Load cached credentials, refresh them, or run the interactive flow.

        Returns:
            A valid token.

        Raises:
            AuthError: If no valid token could be obtained.
        """
        with self._lock:
            creds = self._load_cached()
            if creds is not None and creds.valid:
                self._creds = creds
                return _token_from_credentials(creds)

            if creds is not None and creds.expired and creds.refresh_token:
                try:
                    self._refresh_locked(creds)
                    return _token_from_credentials(creds)
                except AuthError as exc:
                    logger.warning("Cached token could not be refreshed; re-authorizing: %s", exc)

            creds = self._interactive()
            self._creds = creds
            self._save(creds)
            return _token_from_credentials(creds)

    def refresh(self) -> Token:
        """Refresh the current credentials.

        Returns:
            The refreshed token.

        Raises:
            AuthError: If there is nothing to refresh or the server refuses.
        """
        with self._lock:
            creds = self.credentials
            self._refresh_locked(creds)
            return _token_from_credentials(creds)

    def fresh_token(self) -> Token:
        """Return a token that is valid now, refreshing an expiring one."""
        with self._lock:
            creds = self.credentials
            token = _token_from_credentials(creds)
            if not token.expired:
                return token
            self._refresh_locked(creds)
            return _token_from_credentials(creds)

    def _refresh_locked(self, creds: Credentials) -> None:
        """Refresh credentials in place; caller holds the lock."""
        if not creds.refresh_token:
            raise AuthError("Access token expired and no refresh token is available")
        try:
            creds.refresh(Request())  # type: ignore[no-untyped-call]
        except GoogleAuthError as exc:
            raise AuthError(f"Token refresh failed: {exc}") from exc
        self._creds = creds
        self._save(creds)

    def _interactive(self) -> Credentials:
        """Run the authorization-code flow against the provider."""
        if self._endpoints.relax_token_scope:
            os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")
        client_config = {
            "installed": {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "auth_uri": self._endpoints.auth_uri,
                "token_uri": self._endpoints.token_uri,
                "redirect_uris": ["http://localhost"],
            },
        }
        try:
            flow = InstalledAppFlow.from_client_config(
                client_config,
                scopes=list(self._endpoints.scopes),
            )
            return self._run_flow(flow)
        except (OAuth2Error, GoogleAuthError, ValueError, OSError) as exc:
            raise AuthError(f"Authorization flow failed: {exc}") from exc

    def _load_cached(self) -> Credentials | None:
        """Load cached credentials for this client, or None."""
        token_file = self._token_file
        if token_file is None or not token_file.exists():
            return None
        if not token_file.is_file():
            raise AuthError(f"token file is not a file: {token_file}")

        try:
            if token_file.stat().st_size == 0:
                logger.warning("Token file exists but is empty; will re-auth (token_file=%s)", token_file)
                return None
            creds = Credentials.from_authorized_user_file(  # type: ignore[no-untyped-call]
                str(token_file),
                scopes=list(self._endpoints.scopes),
            )
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load token file; will re-auth (token_file=%s, error=%r)", token_file, exc)
            return None

        if creds.client_id != self._client_id:
            logger.info("Cached token belongs to another client id; ignoring %s", token_file)
            return None
        return creds

    def _save(self, creds: Credentials) -> None:
        """Persist credentials to the token file if caching is enabled."""
        if self._token_file is None:
            return
        try:
            self._token_file.parent.mkdir(parents=True, exist_ok=True)
            self._token_file.write_text(creds.to_json(), encoding="utf-8")  # type: ignore[no-untyped-call]
            self._token_file.chmod(0o600)
        except OSError as exc:
            logger.warning("Could not write token file %s: %r", self._token_file, exc)
