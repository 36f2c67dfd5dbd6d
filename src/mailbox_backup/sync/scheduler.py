"""Bounded-concurrency download of missing messages and deletion of orphans."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from mailbox_backup.errors import AuthError, DataFolderError, RemoteError, TransientRemoteError
from mailbox_backup.events import (
    AfterMessageBackup,
    BeforeMessageBackup,
    EventBus,
    Log,
    MessageDelete,
    MessageError,
)
from mailbox_backup.models.messages import MessageRef
from mailbox_backup.remote.base import RemoteMailbox
from mailbox_backup.storage.local_store import LocalStore
from mailbox_backup.sync.retry import RetryPolicy, retry_async
from mailbox_backup.sync.threads import BoundedThreadRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CounterSnapshot:
    """Point-in-time copy of the session counters."""

    total: int
    backed_up: int
    deleted: int
    failed: int


class SessionCounters:
    """Counters shared by the workers of one session; every update takes the lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._backed_up = 0
        self._deleted = 0
        self._failed = 0

    def set_total(self, total: int) -> None:
        """Record the number of remote messages in scope."""
        with self._lock:
            self._total = total

    def mark_backed_up(self) -> int:
        """Count a written message and return the new total."""
        with self._lock:
            self._backed_up += 1
            return self._backed_up

    def mark_deleted(self) -> int:
        """Count a removed local file and return the new total."""
        with self._lock:
            self._deleted += 1
            return self._deleted

    def mark_failed(self) -> int:
        """Count a skipped message and return the new total."""
        with self._lock:
            self._failed += 1
            return self._failed

    def snapshot(self) -> CounterSnapshot:
        """Return a consistent copy of all counters."""
        with self._lock:
            return CounterSnapshot(
                total=self._total,
                backed_up=self._backed_up,
                deleted=self._deleted,
                failed=self._failed,
            )


class DownloadScheduler:
    """Runs `max_connections` workers that fetch, persist and report messages."""

    def __init__(
        self,
        *,
        mailbox: RemoteMailbox,
        store: LocalStore,
        events: EventBus,
        counters: SessionCounters,
        max_connections: int,
        policy: RetryPolicy,
        timeout_s: float,
        before_fetch: Callable[[], object] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            mailbox: Provider adapter.
            store: Local store for the data folder.
            events: Event bus to report progress on.
            counters: Session counters.
            max_connections: Upper bound on concurrent fetches.
            policy: Retry policy for transient fetch failures.
            timeout_s: Timeout for one fetch.
            before_fetch: Called in a worker thread before each fetch (token refresh).
            should_stop: Cooperative stop signal.
        """
        if max_connections < 1:
            raise ValueError(f"max_connections must be >= 1, got {max_connections}")
        self._mailbox = mailbox
        self._store = store
        self._events = events
        self._counters = counters
        self._max_connections = max_connections
        self._policy = policy
        self._timeout_s = timeout_s
        self._before_fetch = before_fetch
        self._should_stop = should_stop
        self._fatal: BaseException | None = None
        self._fetches: BoundedThreadRunner | None = None

    def _stopping(self) -> bool:
        if self._fatal is not None:
            return True
        return self._should_stop is not None and self._should_stop()

    async def run(self, refs: Sequence[MessageRef]) -> None:
        """Back up every ref, at most `max_connections` at a time.

        In-flight messages always finish before this returns, also after a
        stop request or a fatal error. Fetches abandoned by their timeout keep
        holding a connection slot until their thread returns.

        Raises:
            AuthError: Token refresh failed during a fetch.
            DataFolderError: The data folder disappeared.
        """
        if not refs:
            return

        queue: asyncio.Queue[MessageRef] = asyncio.Queue()
        for ref in refs:
            queue.put_nowait(ref)

        self._fetches = BoundedThreadRunner(self._max_connections, name="fetch")
        try:
            n_workers = min(self._max_connections, len(refs))
            workers = [asyncio.create_task(self._worker(queue, idx)) for idx in range(n_workers)]
            await asyncio.gather(*workers)
        finally:
            await self._fetches.close()

        if self._fatal is not None:
            raise self._fatal

    async def _worker(self, queue: asyncio.Queue[MessageRef], worker_idx: int) -> None:
        while not self._stopping():
            try:
                ref = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await self._backup_one(ref)
            except (AuthError, DataFolderError) as exc:
                logger.error("Worker %d stopping on fatal error: %s", worker_idx, exc)
                if self._fatal is None:
                    self._fatal = exc
                return
            finally:
                queue.task_done()

    async def _backup_one(self, ref: MessageRef) -> None:
        target = self._store.path_for(ref.id)

        if self._store.exists(ref.id):
            self._events.emit(BeforeMessageBackup(id=ref.id, skip=True, backup_file=target))
            return
        self._events.emit(BeforeMessageBackup(id=ref.id, skip=False, backup_file=target))

        fetches = self._fetches
        if fetches is None:
            raise RuntimeError("DownloadScheduler.run() owns the fetch threads")

        async def _fetch() -> bytes:
            """Fetch one message in a bounded thread, limited by the timeout."""
            if self._before_fetch is not None:
                await asyncio.to_thread(self._before_fetch)
            try:
                return await fetches.call(self._mailbox.fetch_message, ref, timeout_s=self._timeout_s)
            except TimeoutError as exc:
                raise TransientRemoteError(f"fetch timed out after {self._timeout_s}s") from exc

        def _on_retry(_retry_number: int, exc: BaseException) -> None:
            self._events.emit(
                MessageError(
                    id=ref.id,
                    code=getattr(exc, "code", 0),
                    message=str(exc),
                    retryable=True,
                ),
            )

        try:
            raw = await retry_async(
                _fetch,
                policy=self._policy,
                retry_on=(TransientRemoteError,),
                on_retry=_on_retry,
                should_stop=self._stopping,
            )
        except RemoteError as exc:
            self._counters.mark_failed()
            logger.warning("Giving up on message %s: %s", ref.id, exc)
            self._events.emit(MessageError(id=ref.id, code=exc.code, message=str(exc), retryable=False))
            return

        try:
            record = await asyncio.to_thread(self._store.write_atomic, ref.id, raw)
        except OSError as exc:
            if not self._store.root_available():
                raise DataFolderError(
                    f"Data folder {self._store.root} vanished while writing {target.name}: {exc}",
                ) from exc
            self._counters.mark_failed()
            logger.warning("Could not write %s: %r", target, exc)
            self._events.emit(
                MessageError(
                    id=ref.id,
                    code=exc.errno or 0,
                    message=f"write failed: {exc}",
                    retryable=False,
                ),
            )
            return

        self._counters.mark_backed_up()
        self._events.emit(AfterMessageBackup(id=ref.id, backup_file=record.file_path))

    async def delete_orphans(self, message_ids: Sequence[str]) -> None:
        """Remove local files whose message is no longer on the server.

        Raises:
            DataFolderError: The data folder disappeared.
        """
        for message_id in message_ids:
            if self._stopping():
                logger.info("Delete pass stopped early")
                return
            try:
                path = await asyncio.to_thread(self._store.delete, message_id)
            except FileNotFoundError:
                logger.info("Local file for %s already gone", message_id)
                continue
            except OSError as exc:
                if not self._store.root_available():
                    raise DataFolderError(f"Data folder {self._store.root} vanished during delete: {exc}") from exc
                self._events.emit(
                    Log(message=f"Could not delete local file for {message_id}: {exc}", level=logging.WARNING),
                )
                continue

            self._counters.mark_deleted()
            self._events.emit(MessageDelete(id=message_id, backup_file=path))
