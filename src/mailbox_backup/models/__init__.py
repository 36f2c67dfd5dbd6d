"""Validated domain models (Pydantic)."""

from __future__ import annotations

from mailbox_backup.models.messages import (
    FilterSpec,
    LocalRecord,
    MessageRef,
    RemoteMetadata,
    SessionConfig,
)
from mailbox_backup.models.types import BackoffPolicy, Provider, SessionState

__all__ = [
    "BackoffPolicy",
    "FilterSpec",
    "LocalRecord",
    "MessageRef",
    "Provider",
    "RemoteMetadata",
    "SessionConfig",
    "SessionState",
]
