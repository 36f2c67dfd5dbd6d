"""Tests for the console progress reporter."""

from __future__ import annotations

import io
import logging
from pathlib import Path

from rich.console import Console

from mailbox_backup.cli.reporter import ConsoleReporter
from mailbox_backup.events import (
    AfterMessageBackup,
    BeforeMessageBackup,
    EndBackup,
    EventBus,
    Log,
    MessageDelete,
    MessageError,
)


def _reporter(*, show_deleted: bool = False) -> tuple[EventBus, io.StringIO]:
    out = io.StringIO()
    console = Console(file=out, width=200, color_system=None, force_terminal=False)
    bus = EventBus()
    ConsoleReporter(console=console, message_count=lambda: 3, show_deleted=show_deleted).attach(bus)
    return bus, out


def test_progress_lines() -> None:
    """Skips, successes and errors each print one line."""
    bus, out = _reporter()

    bus.emit(BeforeMessageBackup(id="B", skip=True, backup_file=Path("/data/B.eml")))
    bus.emit(BeforeMessageBackup(id="A", skip=False, backup_file=Path("/data/A.eml")))
    bus.emit(MessageError(id="A", code=503, message="busy [now]", retryable=True))
    bus.emit(AfterMessageBackup(id="A", backup_file=Path("/data/A.eml")))
    bus.emit(MessageError(id="C", code=404, message="gone", retryable=False))

    lines = out.getvalue().splitlines()
    assert lines == [
        "Message exists locally, skipping: /data/B.eml",
        "Error backing up message, retrying: 503: busy [now]",
        "✔ Message backed up successfully. Progress: 1/3",
        "Error backing up message, skipping: 404: gone",
    ]


def test_delete_and_log_lines() -> None:
    """Deletes and free-form logs are printed."""
    bus, out = _reporter()

    bus.emit(MessageDelete(id="Z", backup_file=Path("/data/Z.eml")))
    bus.emit(Log(message="Authorization successful"))
    bus.emit(Log(message="careful", level=logging.WARNING))

    assert out.getvalue().splitlines() == [
        "Message not present remotely, deleting local file: /data/Z.eml",
        "Authorization successful",
        "careful",
    ]


def test_summary_includes_deleted_only_when_syncing_deletes() -> None:
    """The summary lists the deleted count only when deletes were requested."""
    bus, out = _reporter()
    bus.emit(EndBackup(backed_up=2, skipped=1, deleted=0))
    text = out.getvalue()
    assert "Backup Completed" in text
    assert "Messages backed up: 2" in text
    assert "Messages skipped: 1" in text
    assert "deleted" not in text

    bus, out = _reporter(show_deleted=True)
    bus.emit(EndBackup(backed_up=0, skipped=1, deleted=4, stopped=True))
    text = out.getvalue()
    assert "Backup stopped" in text
    assert "Messages deleted: 4" in text
