"""Provider-neutral remote mailbox contract and paging helper."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Protocol

from mailbox_backup.errors import PermanentRemoteError, RemoteListingError, TransientRemoteError
from mailbox_backup.models.messages import FilterSpec, MessageRef
from mailbox_backup.sync.retry import RetryPolicy, retry_async
from mailbox_backup.sync.threads import BoundedThreadRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessagePage:
    """One page of a remote listing."""

    refs: list[MessageRef] = field(default_factory=list)
    next_page_token: str | None = None


class RemoteMailbox(Protocol):
    """Blocking provider adapter; the engine calls it from worker threads."""

    def list_page(self, spec: FilterSpec, page_token: str | None) -> MessagePage:
        """Return one page of messages matching the filter.

        Raises:
            TransientRemoteError, PermanentRemoteError, AuthError.
        """
        ...

    def fetch_message(self, ref: MessageRef) -> bytes:
        """Return the raw RFC822 bytes of a message.

        Raises:
            TransientRemoteError, PermanentRemoteError, AuthError.
        """
        ...


def day_after(value: date) -> date:
    """Return the next calendar day (exclusive upper bound of an inclusive range)."""
    return value + timedelta(days=1)


async def iter_remote_refs(
    mailbox: RemoteMailbox,
    spec: FilterSpec,
    *,
    policy: RetryPolicy,
    timeout_s: float,
    before_page: Callable[[], object] | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> AsyncIterator[MessageRef]:
    """Yield every remote message matching the filter, each id once.

    Args:
        mailbox: Provider adapter.
        spec: Filter and date range.
        policy: Retry policy for transient page failures.
        timeout_s: Timeout for one page request.
        before_page: Called in a worker thread before each page (token refresh).
        should_stop: Stops paging early when it returns True, also while a page
            is being retried; the listing then ends without an error.

    Yields:
        MessageRef items in provider order.

    Raises:
        RemoteListingError: If a page keeps failing or fails permanently.
        AuthError: If the token cannot be refreshed.
    """
    seen: set[str] = set()
    page_token: str | None = None
    page_no = 0
    # Pages are requested one at a time; a timed-out request keeps its slot.
    pages = BoundedThreadRunner(1, name="list")

    try:
        while True:
            if should_stop is not None and should_stop():
                logger.info("Listing stopped after %d pages", page_no)
                return

            async def _fetch_page(token: str | None = page_token) -> MessagePage:
                """Fetch one page in a bounded thread, limited by the timeout."""
                if before_page is not None:
                    await asyncio.to_thread(before_page)
                try:
                    return await pages.call(mailbox.list_page, spec, token, timeout_s=timeout_s)
                except TimeoutError as exc:
                    raise TransientRemoteError(f"listing page timed out after {timeout_s}s") from exc

            attempts = 0

            def _log_retry(retry_number: int, exc: BaseException) -> None:
                nonlocal attempts
                attempts = retry_number
                logger.warning("Listing page %d failed (retry %d): %s", page_no + 1, retry_number, exc)

            try:
                page = await retry_async(
                    _fetch_page,
                    policy=policy,
                    retry_on=(TransientRemoteError,),
                    on_retry=_log_retry,
                    should_stop=should_stop,
                )
            except TransientRemoteError as exc:
                if should_stop is not None and should_stop():
                    logger.info("Listing stopped while page %d was failing: %s", page_no + 1, exc)
                    return
                raise RemoteListingError(
                    f"Listing remote messages failed after {attempts + 1} attempts: {exc}",
                ) from exc
            except PermanentRemoteError as exc:
                raise RemoteListingError(f"Listing remote messages failed: {exc}") from exc

            page_no += 1
            for ref in page.refs:
                if ref.id in seen:
                    continue
                seen.add(ref.id)
                yield ref

            if not page.next_page_token:
                logger.info("Listing finished: %d messages in %d pages", len(seen), page_no)
                return
            page_token = page.next_page_token
    finally:
        await pages.close()
