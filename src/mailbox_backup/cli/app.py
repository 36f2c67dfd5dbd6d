"""Typer CLI for the mailbox backup tool."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from datetime import datetime
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console

from mailbox_backup.auth.providers import endpoints_for
from mailbox_backup.auth.tokens import OAuthTokenProvider
from mailbox_backup.cli.reporter import ConsoleReporter
from mailbox_backup.config.settings import AppSettings, load_settings
from mailbox_backup.errors import AuthError, DataFolderError, RemoteListingError
from mailbox_backup.events import EndBackup
from mailbox_backup.models.messages import FilterSpec, SessionConfig
from mailbox_backup.models.types import Provider
from mailbox_backup.pipeline.session import BackupSession
from mailbox_backup.remote.factory import build_mailbox
from mailbox_backup.sync.retry import RetryPolicy
from mailbox_backup.utils.logging import configure_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BAD_ARGS = 1
EXIT_AUTH = 2
EXIT_DATA_FOLDER = 3
EXIT_LISTING = 4
EXIT_INTERRUPTED = 130

DATE_FORMATS = ["%Y/%m/%d", "%Y-%m-%d"]

app = typer.Typer(
    add_completion=False,
    help="Back up a Gmail or Office 365 mailbox to a folder of .eml files.",
)


def load_app_settings(*, env_file: Path | None) -> AppSettings:
    """Load application settings, exiting with the bad-arguments code if invalid.

    Args:
        env_file: Optional path to a .env file to load in addition to environment variables.

    Returns:
        Validated application settings.
    """
    try:
        return load_settings(env_file=env_file)
    except ValidationError as exc:
        typer.echo(f"Invalid configuration:\n{exc}", err=True)
        raise typer.Exit(code=EXIT_BAD_ARGS) from None


async def run_session(session: BackupSession) -> EndBackup:
    """Run a session; the first SIGINT requests a cooperative stop.

    Args:
        session: Session to run.

    Returns:
        The final EndBackup event.
    """
    loop = asyncio.get_running_loop()

    def _on_sigint() -> None:
        session.stop()
        # A second Ctrl-C falls back to the default KeyboardInterrupt.
        loop.remove_signal_handler(signal.SIGINT)

    installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, _on_sigint)
        installed = True
    try:
        return await session.run()
    finally:
        if installed:
            with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                loop.remove_signal_handler(signal.SIGINT)


@app.command("backup")
def backup_cmd(
    *,
    client_id: str = typer.Option(
        ...,
        "--client-id",
        help="OAuth client id of the registered application.",
    ),
    client_secret: str = typer.Option(
        ...,
        "--client-secret",
        help="OAuth client secret of the registered application.",
    ),
    path: Path = typer.Option(
        ...,
        "--path",
        help="Directory to save messages to (created if missing).",
    ),
    provider: Provider | None = typer.Option(
        default=None,
        case_sensitive=False,
        help="Mailbox provider (default from MBK_BACKUP__PROVIDER, else gmail).",
    ),
    filter_: str = typer.Option(
        "",
        "--filter",
        help="Provider filter, e.g. 'in:sent' (Gmail) or \"parentFolderId eq 'Inbox'\" (Office 365).",
    ),
    start: datetime | None = typer.Option(
        default=None,
        formats=DATE_FORMATS,
        help="First day of the date range, YYYY/MM/DD (inclusive).",
    ),
    end: datetime | None = typer.Option(
        default=None,
        formats=DATE_FORMATS,
        help="Last day of the date range, YYYY/MM/DD (inclusive).",
    ),
    connections: int | None = typer.Option(
        default=None,
        min=1,
        help="Number of simultaneous downloads (default 1).",
    ),
    sync_deletes: bool | None = typer.Option(
        None,
        "--sync-deletes/--no-sync-deletes",
        help="Delete local files whose message no longer exists remotely.",
    ),
    env_file: Path | None = typer.Option(
        default=None,
        exists=True,
        dir_okay=False,
        help="Optional path to a .env file (in addition to environment variables).",
    ),
) -> None:
    """Back up a mailbox into PATH, one .eml file per message.

    Exit codes: 0 done, 1 bad arguments, 2 authorization failure,
    3 data folder failure, 4 remote listing failure.
    """
    settings = load_app_settings(env_file=env_file)
    configure_logging(settings=settings.logging)

    chosen_provider = provider or settings.backup.provider
    try:
        config = SessionConfig(
            data_folder=path.expanduser(),
            filter=FilterSpec(
                query=filter_,
                start_date=start.date() if start else None,
                end_date=end.date() if end else None,
            ),
            max_connections=connections or settings.backup.max_connections,
            sync_deletes=settings.backup.sync_deletes if sync_deletes is None else sync_deletes,
            client_id=client_id,
            client_secret=client_secret,
        )
    except ValidationError as exc:
        typer.echo(f"Invalid arguments:\n{exc}", err=True)
        raise typer.Exit(code=EXIT_BAD_ARGS) from None

    tokens = OAuthTokenProvider(
        client_id=config.client_id,
        client_secret=config.client_secret,
        endpoints=endpoints_for(chosen_provider),
        token_file=settings.oauth.token_file(chosen_provider),
        open_browser=settings.oauth.open_browser,
    )
    mailbox = build_mailbox(
        provider=chosen_provider,
        tokens=tokens,
        network=settings.network,
        max_connections=config.max_connections,
    )
    session = BackupSession(
        config=config,
        token_provider=tokens,
        mailbox=mailbox,
        retry=RetryPolicy.from_settings(settings.retry),
        timeout_s=settings.network.timeout_seconds,
    )

    console = Console()
    ConsoleReporter(
        console=console,
        message_count=lambda: session.message_count,
        show_deleted=config.sync_deletes,
    ).attach(session.events)

    console.print(f"[bold blue]Backing up {chosen_provider.value} mailbox[/bold blue]")
    console.print(f"  [dim]Data folder:[/dim] {config.data_folder}")
    console.print(f"  [dim]Connections:[/dim] {config.max_connections}")
    console.print("To begin, please authorize the application in your browser.")
    logger.info(
        "Starting backup",
        extra={"provider": chosen_provider.value, "data_folder": str(config.data_folder)},
    )

    try:
        asyncio.run(run_session(session))
    except AuthError as exc:
        typer.echo(f"Authorization failed: {exc}", err=True)
        raise typer.Exit(code=EXIT_AUTH) from None
    except DataFolderError as exc:
        typer.echo(f"Data folder error: {exc}", err=True)
        raise typer.Exit(code=EXIT_DATA_FOLDER) from None
    except RemoteListingError as exc:
        typer.echo(f"Remote listing failed: {exc}", err=True)
        raise typer.Exit(code=EXIT_LISTING) from None
    except KeyboardInterrupt:
        raise typer.Exit(code=EXIT_INTERRUPTED) from None
