"""Shared fakes for backup engine tests."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from mailbox_backup.auth.tokens import Token
from mailbox_backup.errors import AuthError, PermanentRemoteError, TransientRemoteError
from mailbox_backup.events import EventBus
from mailbox_backup.models.messages import FilterSpec, MessageRef, SessionConfig
from mailbox_backup.pipeline.session import BackupSession
from mailbox_backup.remote.base import MessagePage
from mailbox_backup.storage.local_store import LocalStore
from mailbox_backup.sync.retry import RetryPolicy

NO_WAIT = RetryPolicy(max_retries=5, base_delay_s=0.0, max_delay_s=0.0, jitter_s=0.0)


def raw_message(message_id: str) -> bytes:
    """Return a small RFC822 message for an id."""
    return (
        f"Message-ID: <{message_id}@example.com>\r\n"
        f"Subject: message {message_id}\r\n"
        "\r\n"
        f"Body of {message_id}\r\n"
    ).encode()


class FakeMailbox:
    """In-memory RemoteMailbox with failure injection and concurrency instrumentation."""

    def __init__(
        self,
        ids: Iterable[str],
        *,
        page_size: int = 2,
        fetch_delay_s: float = 0.0,
        transient_failures: dict[str, int] | None = None,
        always_fail: Iterable[str] = (),
        permanent_fail: Iterable[str] = (),
        list_failures: int = 0,
        list_permanent: bool = False,
    ) -> None:
        self.ids = list(ids)
        self.page_size = page_size
        self.fetch_delay_s = fetch_delay_s
        self.transient_failures = dict(transient_failures or {})
        self.always_fail = set(always_fail)
        self.permanent_fail = set(permanent_fail)
        self.list_failures = list_failures
        self.list_permanent = list_permanent

        self.list_calls: list[str | None] = []
        self.fetch_calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def list_page(self, spec: FilterSpec, page_token: str | None) -> MessagePage:
        self.list_calls.append(page_token)
        if self.list_permanent:
            raise PermanentRemoteError("listing forbidden", code=403)
        if self.list_failures > 0:
            self.list_failures -= 1
            raise TransientRemoteError("listing throttled", code=429)

        start = int(page_token or 0)
        chunk = self.ids[start : start + self.page_size]
        nxt = start + self.page_size
        return MessagePage(
            refs=[MessageRef(id=message_id) for message_id in chunk],
            next_page_token=str(nxt) if nxt < len(self.ids) else None,
        )

    def fetch_message(self, ref: MessageRef) -> bytes:
        with self._lock:
            self.fetch_calls.append(ref.id)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.fetch_delay_s:
                time.sleep(self.fetch_delay_s)
            if ref.id in self.permanent_fail:
                raise PermanentRemoteError(f"{ref.id} not found", code=404)
            if ref.id in self.always_fail:
                raise TransientRemoteError(f"{ref.id} server busy", code=503)
            with self._lock:
                remaining = self.transient_failures.get(ref.id, 0)
                if remaining > 0:
                    self.transient_failures[ref.id] = remaining - 1
                    raise TransientRemoteError(f"{ref.id} server busy", code=503)
            return raw_message(ref.id)
        finally:
            with self._lock:
                self.in_flight -= 1


class FakeTokenProvider:
    """TokenProvider that never touches the network."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.authorize_calls = 0
        self.fresh_calls = 0

    def authorize(self) -> Token:
        self.authorize_calls += 1
        if self.fail:
            raise AuthError("user denied consent")
        return self._token()

    def refresh(self) -> Token:
        return self._token()

    def fresh_token(self) -> Token:
        self.fresh_calls += 1
        return self._token()

    @staticmethod
    def _token() -> Token:
        return Token(access_token="test-token", expiry=datetime.now(tz=UTC) + timedelta(hours=1))


class EventRecorder:
    """Collects every event emitted on a bus."""

    def __init__(self, events: EventBus) -> None:
        self.events: list[Any] = []
        events.subscribe_all(self.events.append)

    def of_type(self, event_type: type) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


def make_session(
    data_folder: Path,
    mailbox: FakeMailbox,
    *,
    max_connections: int = 1,
    sync_deletes: bool = False,
    tokens: FakeTokenProvider | None = None,
    retry: RetryPolicy = NO_WAIT,
    timeout_s: float = 5.0,
) -> tuple[BackupSession, EventRecorder]:
    """Build a session over fakes plus a recorder attached to its bus."""
    config = SessionConfig(
        data_folder=data_folder,
        max_connections=max_connections,
        sync_deletes=sync_deletes,
        client_id="client",
        client_secret="secret",
    )
    session = BackupSession(
        config=config,
        token_provider=tokens or FakeTokenProvider(),
        mailbox=mailbox,
        retry=retry,
        timeout_s=timeout_s,
    )
    return session, EventRecorder(session.events)


def seed_local(data_folder: Path, *ids: str) -> None:
    """Pre-populate the data folder with backups for ids."""
    store = LocalStore(data_folder=data_folder)
    store.ensure_root()
    for message_id in ids:
        store.write_atomic(message_id, raw_message(message_id))


@pytest.fixture
def data_folder(tmp_path: Path) -> Path:
    """Return a not-yet-existing data folder under tmp_path."""
    return tmp_path / "backup"
