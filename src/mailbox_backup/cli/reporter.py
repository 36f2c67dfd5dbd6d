"""Console progress output for backup events."""

from __future__ import annotations

import logging
from collections.abc import Callable

from rich.console import Console
from rich.markup import escape

from mailbox_backup.events import (
    AfterMessageBackup,
    BeforeMessageBackup,
    EndBackup,
    EventBus,
    Log,
    MessageDelete,
    MessageError,
)


class ConsoleReporter:
    """Prints one line per backup event, plus the final summary."""

    def __init__(
        self,
        *,
        console: Console,
        message_count: Callable[[], int],
        show_deleted: bool,
    ) -> None:
        """Initialize the reporter.

        Args:
            console: Rich console to print to.
            message_count: Returns the number of remote messages in scope.
            show_deleted: Whether the summary includes the deleted count.
        """
        self._console = console
        self._message_count = message_count
        self._show_deleted = show_deleted
        self._finished = 0

    def attach(self, events: EventBus) -> ConsoleReporter:
        """Subscribe to every event this reporter prints."""
        (
            events.on(BeforeMessageBackup, self.on_before)
            .on(AfterMessageBackup, self.on_after)
            .on(MessageError, self.on_error)
            .on(MessageDelete, self.on_delete)
            .on(Log, self.on_log)
            .on(EndBackup, self.on_end)
        )
        return self

    def on_before(self, event: BeforeMessageBackup) -> None:
        """Print a line for messages that are already backed up."""
        if event.skip:
            self._console.print(f"[dim]Message exists locally, skipping:[/dim] {escape(str(event.backup_file))}")

    def on_after(self, event: AfterMessageBackup) -> None:
        """Print progress after a message was written."""
        self._finished += 1
        self._console.print(
            f"[green]✔[/green] Message backed up successfully. "
            f"Progress: {self._finished}/{self._message_count()}",
        )

    def on_error(self, event: MessageError) -> None:
        """Print a failed attempt and whether it will be retried."""
        action = "retrying" if event.retryable else "skipping"
        color = "yellow" if event.retryable else "red"
        self._console.print(
            f"[{color}]Error backing up message, {action}:[/{color}] "
            f"{event.code}: {escape(event.message)}",
        )

    def on_delete(self, event: MessageDelete) -> None:
        """Print a local file removed because the remote message is gone."""
        self._console.print(
            f"[yellow]Message not present remotely, deleting local file:[/yellow] "
            f"{escape(str(event.backup_file))}",
        )

    def on_log(self, event: Log) -> None:
        """Print a free-form message, colored by level."""
        style = "red" if event.level >= logging.ERROR else "yellow" if event.level >= logging.WARNING else "blue"
        self._console.print(f"[{style}]{escape(event.message)}[/{style}]")

    def on_end(self, event: EndBackup) -> None:
        """Print the final summary."""
        title = "Backup stopped" if event.stopped else "Backup Completed"
        self._console.print(f"\n[bold green]{title}[/bold green]")
        self._console.print(f"  [dim]Messages backed up:[/dim] [bold]{event.backed_up}[/bold]")
        self._console.print(f"  [dim]Messages skipped:[/dim] [bold]{event.skipped}[/bold]")
        if self._show_deleted:
            self._console.print(f"  [dim]Messages deleted:[/dim] [bold]{event.deleted}[/bold]")
