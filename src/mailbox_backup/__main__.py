"""Console entrypoint for `mailbox-backup`."""

from __future__ import annotations

import click

from mailbox_backup.cli.app import EXIT_BAD_ARGS, EXIT_INTERRUPTED, app


def main(argv: list[str] | None = None) -> int:
    """Run the Typer CLI application.

    Click reports usage errors with exit code 2, which this tool reserves for
    authorization failures, so usage errors are mapped to 1 here.

    Args:
        argv: Arguments without the program name; sys.argv when None.

    Returns:
        Process exit code.
    """
    try:
        result = app(args=argv, prog_name="mailbox-backup", standalone_mode=False)
    except click.ClickException as exc:
        exc.show()
        return EXIT_BAD_ARGS
    except click.Abort:
        return EXIT_INTERRUPTED
    return result if isinstance(result, int) else 0


if __name__ == "__main__":
    raise SystemExit(main())
