"""Backup session: authorize, list, diff, download, delete, report."""

from __future__ import annotations

import asyncio
import logging
import threading

from mailbox_backup.auth.tokens import TokenProvider
from mailbox_backup.errors import AuthError, DataFolderError, RemoteListingError
from mailbox_backup.events import BeforeMessageBackup, EndBackup, EventBus, Log
from mailbox_backup.models.messages import MessageRef, SessionConfig
from mailbox_backup.models.types import SessionState
from mailbox_backup.remote.base import RemoteMailbox, iter_remote_refs
from mailbox_backup.storage.local_store import LocalStore
from mailbox_backup.sync.diff import compute_diff
from mailbox_backup.sync.retry import RetryPolicy
from mailbox_backup.sync.scheduler import DownloadScheduler, SessionCounters

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.idle: frozenset({SessionState.authorizing, SessionState.failed}),
    SessionState.authorizing: frozenset({SessionState.listing, SessionState.failed}),
    SessionState.listing: frozenset({SessionState.syncing, SessionState.failed}),
    SessionState.syncing: frozenset({SessionState.completed, SessionState.failed}),
    SessionState.completed: frozenset(),
    SessionState.failed: frozenset(),
}


class BackupSession:
    """One backup run against one mailbox. Not reusable."""

    def __init__(
        self,
        *,
        config: SessionConfig,
        token_provider: TokenProvider,
        mailbox: RemoteMailbox,
        events: EventBus | None = None,
        retry: RetryPolicy | None = None,
        timeout_s: float = 60.0,
        store: LocalStore | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Session inputs (data folder, filter, concurrency, delete sync).
            token_provider: Issues and refreshes OAuth tokens.
            mailbox: Provider adapter.
            events: Event bus; a private one is created when omitted.
            retry: Retry policy for listing pages and message fetches.
            timeout_s: Timeout for each remote call.
            store: Local store; defaults to one rooted at `config.data_folder`.
        """
        if timeout_s <= 0:
            raise ValueError(f"timeout_s must be > 0, got {timeout_s}")
        self._config = config
        self._tokens = token_provider
        self._mailbox = mailbox
        self._events = events or EventBus()
        self._retry = retry or RetryPolicy()
        self._timeout_s = timeout_s
        self._store = store or LocalStore(data_folder=config.data_folder)
        self._counters = SessionCounters()
        self._state = SessionState.idle
        self._stop = threading.Event()

    @property
    def state(self) -> SessionState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def events(self) -> EventBus:
        """Return the event bus collaborators subscribe to."""
        return self._events

    @property
    def message_count(self) -> int:
        """Number of remote messages matching the filter (0 until listing is done)."""
        return self._counters.snapshot().total

    @property
    def config(self) -> SessionConfig:
        """Return the inputs of this run."""
        return self._config

    def stop(self) -> None:
        """Request a cooperative stop; in-flight messages finish first. Thread-safe."""
        if not self._stop.is_set():
            logger.info("Stop requested")
        self._stop.set()

    def stop_requested(self) -> bool:
        """Return whether a stop has been requested."""
        return self._stop.is_set()

    async def run(self) -> EndBackup:
        """Run the session to completion.

        Returns:
            The EndBackup event that was emitted.

        Raises:
            AuthError: Authorization failed.
            DataFolderError: The data folder is unusable.
            RemoteListingError: The remote listing could not be completed.
        """
        if self._state != SessionState.idle:
            raise RuntimeError(f"BackupSession already ran (state={self._state})")

        try:
            await self._run_phases()
        except (AuthError, DataFolderError, RemoteListingError) as exc:
            self._transition(SessionState.failed)
            self._log(f"Backup failed: {exc}", level=logging.ERROR)
            raise
        except Exception:
            self._transition(SessionState.failed)
            logger.exception("Backup aborted by an unexpected error")
            raise

        self._transition(SessionState.completed)
        snap = self._counters.snapshot()
        end = EndBackup(
            backed_up=snap.backed_up,
            skipped=snap.total - snap.backed_up,
            deleted=snap.deleted,
            stopped=self.stop_requested(),
        )
        logger.info(
            "Backup completed",
            extra={"backed_up": end.backed_up, "skipped": end.skipped, "deleted": end.deleted},
        )
        self._events.emit(end)
        return end

    async def _run_phases(self) -> None:
        config = self._config
        await asyncio.to_thread(self._store.ensure_root)

        self._transition(SessionState.authorizing)
        await asyncio.to_thread(self._tokens.authorize)
        self._log("Authorization successful")

        self._transition(SessionState.listing)
        self._log("Retrieving message list (this operation may take some time)")
        refs: list[MessageRef] = [
            ref
            async for ref in iter_remote_refs(
                self._mailbox,
                config.filter,
                policy=self._retry,
                timeout_s=self._timeout_s,
                before_page=self._tokens.fresh_token,
                should_stop=self.stop_requested,
            )
        ]
        listing_complete = not self.stop_requested()
        local = await asyncio.to_thread(self._store.scan)

        # An interrupted listing must not be used to decide deletions.
        plan = compute_diff(
            refs,
            local.keys(),
            sync_deletes=config.sync_deletes and listing_complete,
        )
        self._counters.set_total(plan.total)
        self._log(
            f"{plan.total} remote messages, {len(plan.already_present)} already backed up, "
            f"{len(plan.to_fetch)} to download, {len(plan.to_delete)} to delete",
        )

        self._transition(SessionState.syncing)
        for ref in plan.already_present:
            self._events.emit(
                BeforeMessageBackup(id=ref.id, skip=True, backup_file=self._store.path_for(ref.id)),
            )

        scheduler = DownloadScheduler(
            mailbox=self._mailbox,
            store=self._store,
            events=self._events,
            counters=self._counters,
            max_connections=config.max_connections,
            policy=self._retry,
            timeout_s=self._timeout_s,
            before_fetch=self._tokens.fresh_token,
            should_stop=self.stop_requested,
        )
        await scheduler.run(plan.to_fetch)

        if plan.to_delete and not self.stop_requested():
            await scheduler.delete_orphans(plan.to_delete)

        if self.stop_requested():
            self._log("Backup stopped before completion", level=logging.WARNING)

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid session transition {self._state} -> {new_state}")
        logger.debug("Session state %s -> %s", self._state, new_state)
        self._state = new_state

    def _log(self, message: str, *, level: int = logging.INFO) -> None:
        logger.log(level, message)
        self._events.emit(Log(message=message, level=level))
