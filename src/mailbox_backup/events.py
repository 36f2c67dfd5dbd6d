"""Backup events and the callback registry collaborators subscribe to."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BeforeMessageBackup:
    """Fired before a message is downloaded, or with skip=True when it is already local."""

    id: str
    skip: bool
    backup_file: Path


@dataclass(frozen=True)
class AfterMessageBackup:
    """Fired once a message has been written under its final name."""

    id: str
    backup_file: Path


@dataclass(frozen=True)
class MessageError:
    """Fired for every failed attempt; retryable=False means the message is skipped."""

    id: str
    code: int
    message: str
    retryable: bool


@dataclass(frozen=True)
class MessageDelete:
    """Fired after a local file was removed because the remote message is gone."""

    id: str
    backup_file: Path


@dataclass(frozen=True)
class Log:
    """Free-form progress message."""

    message: str
    level: int = logging.INFO


@dataclass(frozen=True)
class EndBackup:
    """Final counts of a session. Fired exactly once."""

    backed_up: int
    skipped: int
    deleted: int
    stopped: bool = False


BackupEvent = BeforeMessageBackup | AfterMessageBackup | MessageError | MessageDelete | Log | EndBackup

Handler = Callable[[Any], None]


class EventBus:
    """Dispatches backup events to registered handlers in registration order."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self._catch_all: list[Handler] = []

    def on(self, event_type: type, handler: Handler) -> EventBus:
        """Register a handler for one event type.

        Args:
            event_type: Event class, e.g. `AfterMessageBackup`.
            handler: Callable receiving the event instance.

        Returns:
            The bus, so registrations can be chained.
        """
        self._handlers[event_type].append(handler)
        return self

    def subscribe_all(self, handler: Handler) -> EventBus:
        """Register a handler that receives every event."""
        self._catch_all.append(handler)
        return self

    def emit(self, event: BackupEvent) -> None:
        """Deliver an event to its handlers.

        A handler that raises is logged; remaining handlers still run.
        """
        for handler in [*self._handlers.get(type(event), ()), *self._catch_all]:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed on %s", handler, type(event).__name__)
