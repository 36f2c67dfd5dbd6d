"""Gmail API adapter: message listing and raw message download."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Callable
from typing import Any

import google_auth_httplib2
import httplib2
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailbox_backup.errors import AuthError, PermanentRemoteError, TransientRemoteError
from mailbox_backup.models.messages import FilterSpec, MessageRef
from mailbox_backup.remote.base import MessagePage, day_after

logger = logging.getLogger(__name__)

_TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
_RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded", "backendError")


def build_gmail_query(spec: FilterSpec) -> str:
    """Combine the user query with Gmail date operators.

    `before:` is exclusive, so the inclusive end date becomes the next day.

    Args:
        spec: Filter spec.

    Returns:
        Gmail search query (may be empty).
    """
    parts: list[str] = []
    if spec.query:
        parts.append(spec.query)
    if spec.start_date is not None:
        parts.append(f"after:{spec.start_date:%Y/%m/%d}")
    if spec.end_date is not None:
        parts.append(f"before:{day_after(spec.end_date):%Y/%m/%d}")
    return " ".join(parts)


def _decode_raw(value: str) -> bytes:
    """Decode Gmail's unpadded base64url `raw` field."""
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded)


class GmailMailbox:
    """RemoteMailbox implementation over the Gmail REST API."""

    def __init__(
        self,
        *,
        credentials: Callable[[], Credentials],
        user_id: str = "me",
        page_size: int = 100,
        timeout_s: float = 60.0,
        service: Any | None = None,
        http_factory: Callable[[], Any] | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            credentials: Returns authorized credentials (resolved lazily, after authorization).
            user_id: Gmail user id, "me" for the authorized account.
            page_size: Messages per list page (Gmail caps this at 500).
            timeout_s: Socket timeout for each request.
            service: Prebuilt Gmail service object (tests).
            http_factory: Builds the HTTP object for one request (tests).
        """
        self._credentials = credentials
        self._user_id = user_id
        self._page_size = page_size
        self._timeout_s = timeout_s
        self._service = service
        self._http_factory = http_factory or self._authorized_http

    def _authorized_http(self) -> google_auth_httplib2.AuthorizedHttp:
        """Return a fresh HTTP object; httplib2 connections are not thread-safe."""
        return google_auth_httplib2.AuthorizedHttp(
            self._credentials(),
            http=httplib2.Http(timeout=self._timeout_s),
        )

    @property
    def service(self) -> Any:
        """Return the Gmail API service, building it on first use."""
        if self._service is None:
            self._service = build(
                "gmail",
                "v1",
                credentials=self._credentials(),
                cache_discovery=False,
            )
        return self._service

    def list_page(self, spec: FilterSpec, page_token: str | None) -> MessagePage:
        """Return one page of message ids matching the filter.

        `messages.list` only returns `id` and `threadId`, so refs carry empty
        metadata; filling it would cost one `messages.get` per message.
        """
        kwargs: dict[str, Any] = {"userId": self._user_id, "maxResults": self._page_size}
        query = build_gmail_query(spec)
        if query:
            kwargs["q"] = query
        if page_token:
            kwargs["pageToken"] = page_token

        resp = self._execute(self.service.users().messages().list(**kwargs), operation="list")
        if not isinstance(resp, dict):
            raise PermanentRemoteError(f"Unexpected Gmail list response: {resp!r}")

        refs = [MessageRef(id=str(item["id"])) for item in resp.get("messages") or [] if item.get("id")]
        return MessagePage(refs=refs, next_page_token=resp.get("nextPageToken") or None)

    def fetch_message(self, ref: MessageRef) -> bytes:
        """Download the raw RFC822 bytes of one message."""
        req = self.service.users().messages().get(userId=self._user_id, id=ref.id, format="raw")
        resp = self._execute(req, operation="get")
        raw = resp.get("raw") if isinstance(resp, dict) else None
        if not raw:
            raise PermanentRemoteError(f"Gmail returned no raw content for message {ref.id}")
        try:
            return _decode_raw(raw)
        except (binascii.Error, ValueError) as exc:
            raise PermanentRemoteError(f"Gmail raw content for {ref.id} is not base64url: {exc}") from exc

    def _execute(self, request: Any, *, operation: str) -> Any:
        """Execute a request and translate errors into the engine's taxonomy.

        Raises:
            TransientRemoteError: Throttling, server errors, timeouts, connection errors.
            PermanentRemoteError: Other HTTP errors.
            AuthError: Credentials could not be refreshed.
        """
        try:
            return request.execute(http=self._http_factory(), num_retries=0)
        except HttpError as exc:
            status = int(exc.resp.status)
            detail = str(exc)
            if status in _TRANSIENT_STATUSES or status == 401:
                raise TransientRemoteError(f"Gmail {operation} failed: {detail}", code=status) from exc
            body = exc.content.decode("utf-8", "replace") if isinstance(exc.content, bytes) else str(exc.content)
            if status == 403 and any(reason in body for reason in _RATE_LIMIT_REASONS):
                raise TransientRemoteError(f"Gmail {operation} throttled: {detail}", code=status) from exc
            raise PermanentRemoteError(f"Gmail {operation} failed: {detail}", code=status) from exc
        except RefreshError as exc:
            raise AuthError(f"Gmail token refresh failed: {exc}") from exc
        except (TimeoutError, ConnectionError, httplib2.HttpLib2Error, OSError) as exc:
            raise TransientRemoteError(f"Gmail {operation} network error: {exc!r}") from exc
