"""Shared enums."""

from __future__ import annotations

from enum import StrEnum


class Provider(StrEnum):
    """Supported mailbox providers."""

    gmail = "gmail"
    office365 = "office365"


class SessionState(StrEnum):
    """Lifecycle states of a backup session."""

    idle = "idle"
    authorizing = "authorizing"
    listing = "listing"
    syncing = "syncing"
    completed = "completed"
    failed = "failed"


class BackoffPolicy(StrEnum):
    """Delay growth between retry attempts."""

    exponential = "exponential"
    fixed = "fixed"
