"""Microsoft Graph adapter for Office 365 mailboxes."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter

from mailbox_backup.auth.tokens import Token
from mailbox_backup.errors import PermanentRemoteError, TransientRemoteError
from mailbox_backup.models.messages import FilterSpec, MessageRef, RemoteMetadata
from mailbox_backup.remote.base import MessagePage, day_after

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

_TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
_SELECT_FIELDS = "id,receivedDateTime,parentFolderId"


def build_graph_filter(spec: FilterSpec) -> str:
    """Combine the user `$filter` with receivedDateTime bounds.

    Args:
        spec: Filter spec.

    Returns:
        OData filter expression (may be empty).
    """
    parts: list[str] = []
    if spec.query:
        parts.append(f"({spec.query})")
    if spec.start_date is not None:
        parts.append(f"receivedDateTime ge {spec.start_date.isoformat()}T00:00:00Z")
    if spec.end_date is not None:
        parts.append(f"receivedDateTime lt {day_after(spec.end_date).isoformat()}T00:00:00Z")
    return " and ".join(parts)


def _parse_datetime(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.debug("Unparseable receivedDateTime: %r", value)
        return None


def _error_message(resp: requests.Response) -> str:
    """Pull the OData error message out of a response, falling back to the body text."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        err = body["error"]
        return f"{err.get('code', '')}: {err.get('message', '')}".strip(": ")
    return resp.text[:200]


class GraphMailbox:
    """RemoteMailbox implementation over Microsoft Graph `/messages`."""

    def __init__(
        self,
        *,
        token: Callable[[], Token],
        on_unauthorized: Callable[[], object] | None = None,
        user: str = "me",
        page_size: int = 100,
        timeout_s: float = 60.0,
        pool_size: int = 10,
        session: requests.Session | None = None,
        base_url: str = GRAPH_BASE_URL,
    ) -> None:
        """Initialize the adapter.

        Args:
            token: Returns a currently valid access token.
            on_unauthorized: Called after a 401 so the next attempt uses a new token.
            user: "me" or a user principal name / id.
            page_size: Messages per list page ($top).
            timeout_s: Connect/read timeout per request.
            pool_size: HTTP connection pool size (match the worker count).
            session: Preconfigured requests session (tests).
            base_url: Graph API root.
        """
        self._token = token
        self._on_unauthorized = on_unauthorized
        self._user_path = "me" if user == "me" else f"users/{quote(user, safe='@')}"
        self._page_size = page_size
        self._timeout_s = timeout_s
        self._base_url = base_url.rstrip("/")
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=1, pool_maxsize=max(pool_size, 1))
            session.mount("https://", adapter)
        self._session = session

    def list_page(self, spec: FilterSpec, page_token: str | None) -> MessagePage:
        """Return one page of messages; the page token is Graph's `@odata.nextLink`."""
        if page_token:
            data = self._get_json(page_token, params=None, operation="list")
        else:
            params: dict[str, Any] = {"$select": _SELECT_FIELDS, "$top": self._page_size}
            odata_filter = build_graph_filter(spec)
            if odata_filter:
                params["$filter"] = odata_filter
            data = self._get_json(
                f"{self._base_url}/{self._user_path}/messages",
                params=params,
                operation="list",
            )

        refs: list[MessageRef] = []
        for item in data.get("value") or []:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            refs.append(
                MessageRef(
                    id=str(item["id"]),
                    metadata=RemoteMetadata(
                        received_at=_parse_datetime(item.get("receivedDateTime")),
                        folder=item.get("parentFolderId"),
                    ),
                ),
            )
        return MessagePage(refs=refs, next_page_token=data.get("@odata.nextLink") or None)

    def fetch_message(self, ref: MessageRef) -> bytes:
        """Download the MIME content of one message."""
        url = f"{self._base_url}/{self._user_path}/messages/{quote(ref.id, safe='')}/$value"
        resp = self._get(url, params=None, operation="get")
        if not resp.content:
            raise PermanentRemoteError(f"Graph returned empty MIME content for message {ref.id}")
        return resp.content

    def _get_json(self, url: str, *, params: dict[str, Any] | None, operation: str) -> dict[str, Any]:
        resp = self._get(url, params=params, operation=operation)
        try:
            data = resp.json()
        except ValueError as exc:
            raise PermanentRemoteError(f"Graph {operation} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise PermanentRemoteError(f"Unexpected Graph {operation} response: {data!r}")
        return data

    def _get(self, url: str, *, params: dict[str, Any] | None, operation: str) -> requests.Response:
        """Issue an authorized GET and classify failures.

        Raises:
            TransientRemoteError: Timeouts, connection errors, 401, 408, 429, 5xx.
            PermanentRemoteError: Any other non-2xx status.
        """
        headers = {"Authorization": f"Bearer {self._token().access_token}"}
        try:
            resp = self._session.get(url, params=params, headers=headers, timeout=self._timeout_s)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientRemoteError(f"Graph {operation} network error: {exc!r}") from exc
        except requests.RequestException as exc:
            raise PermanentRemoteError(f"Graph {operation} request failed: {exc!r}") from exc

        status = resp.status_code
        if 200 <= status < 300:
            return resp

        message = f"Graph {operation} failed ({status}): {_error_message(resp)}"
        if status == 401:
            if self._on_unauthorized is not None:
                self._on_unauthorized()
            raise TransientRemoteError(message, code=status)
        if status in _TRANSIENT_STATUSES:
            retry_after = resp.headers.get("Retry-After")
            if retry_after:
                logger.info("Graph asked to retry after %ss", retry_after)
            raise TransientRemoteError(message, code=status)
        raise PermanentRemoteError(message, code=status)
