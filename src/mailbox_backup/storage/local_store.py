"""Local `.eml` store: one file per message id under the data folder."""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import quote, unquote

from mailbox_backup.errors import DataFolderError
from mailbox_backup.models.messages import LocalRecord

logger = logging.getLogger(__name__)

EML_SUFFIX = ".eml"
TMP_SUFFIX = ".tmp"

_SAFE_CHARS = "-_."


def file_name_for(message_id: str) -> str:
    """Map a provider message id to its backup file name.

    The id is percent-encoded so that any id maps to exactly one
    filesystem-safe name. A leading dot is encoded too (no hidden files).

    Args:
        message_id: Provider message id.

    Returns:
        File name ending in `.eml`.
    """
    encoded = quote(message_id, safe=_SAFE_CHARS)
    if encoded.startswith("."):
        encoded = "%2E" + encoded[1:]
    return encoded + EML_SUFFIX


def message_id_for(file_name: str) -> str | None:
    """Invert `file_name_for`; return None for names it could not have produced.

    Args:
        file_name: Name of a file found in the data folder.

    Returns:
        The message id, or None.
    """
    if not file_name.endswith(EML_SUFFIX):
        return None
    stem = file_name[: -len(EML_SUFFIX)]
    if not stem:
        return None
    try:
        message_id = unquote(stem, errors="strict")
    except UnicodeDecodeError:
        return None
    if not message_id or file_name_for(message_id) != file_name:
        return None
    return message_id


class LocalStore:
    """Index and atomically write/delete backup files in `data_folder`."""

    def __init__(self, *, data_folder: Path) -> None:
        """Initialize the store.

        Args:
            data_folder: Directory holding the backup files.
        """
        self._root = data_folder

    @property
    def root(self) -> Path:
        """Return the data folder."""
        return self._root

    def path_for(self, message_id: str) -> Path:
        """Return the final backup path for a message id."""
        return self._root / file_name_for(message_id)

    def ensure_root(self) -> None:
        """Create the data folder if needed and check it is a writable directory.

        Raises:
            DataFolderError: If the folder cannot be created or used.
        """
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DataFolderError(f"Cannot create data folder {self._root}: {exc}") from exc
        if not self._root.is_dir():
            raise DataFolderError(f"Data folder is not a directory: {self._root}")
        if not os.access(self._root, os.W_OK | os.X_OK):
            raise DataFolderError(f"Data folder is not writable: {self._root}")

    def root_available(self) -> bool:
        """Return whether the data folder still exists as a directory."""
        return self._root.is_dir()

    def scan(self) -> dict[str, LocalRecord]:
        """Build the id → record index from the files in the data folder.

        Malformed names, empty files and leftover temp files are skipped.

        Returns:
            Mapping of message id to its local record.

        Raises:
            DataFolderError: If the data folder cannot be listed.
        """
        records: dict[str, LocalRecord] = {}
        try:
            entries = list(os.scandir(self._root))
        except OSError as exc:
            raise DataFolderError(f"Cannot list data folder {self._root}: {exc}") from exc

        for entry in entries:
            name = entry.name
            if name.endswith(TMP_SUFFIX):
                logger.warning("Skipping leftover temporary file: %s", entry.path)
                continue
            if not name.endswith(EML_SUFFIX):
                continue

            message_id = message_id_for(name)
            if message_id is None:
                logger.warning("Skipping file with unrecognized name: %s", entry.path)
                continue

            try:
                if not entry.is_file():
                    logger.warning("Skipping non-regular file: %s", entry.path)
                    continue
                stat = entry.stat()
            except OSError as exc:
                logger.warning("Skipping unreadable file %s: %r", entry.path, exc)
                continue

            if stat.st_size == 0:
                logger.warning("Skipping empty (partial) backup file: %s", entry.path)
                continue

            records[message_id] = LocalRecord(
                id=message_id,
                file_path=Path(entry.path),
                size_bytes=stat.st_size,
                written_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
            )

        logger.info("Indexed %d local messages in %s", len(records), self._root)
        return records

    def exists(self, message_id: str) -> bool:
        """Return whether a complete backup file exists for the id."""
        path = self.path_for(message_id)
        try:
            return path.is_file() and path.stat().st_size > 0
        except OSError:
            return False

    def write_atomic(self, message_id: str, raw_rfc822: bytes) -> LocalRecord:
        """Write message bytes so the final name never holds a partial file.

        Args:
            message_id: Provider message id.
            raw_rfc822: Raw RFC822 message bytes.

        Returns:
            Record of the written file.

        Raises:
            OSError: If writing or renaming fails; the temp file is removed.
        """
        target = self.path_for(message_id)

        fd, tmp_name = tempfile.mkstemp(
            prefix=target.name + ".",
            suffix=TMP_SUFFIX,
            dir=str(self._root),
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(raw_rfc822)
                handle.flush()
                os.fsync(handle.fileno())

            os.replace(tmp_path, target)
            _fsync_dir(self._root)
        finally:
            try:
                if tmp_path.exists():
                    tmp_path.unlink()
            except OSError as exc:
                logger.warning("Could not remove temporary file %s: %r", tmp_path, exc)

        return LocalRecord(
            id=message_id,
            file_path=target,
            size_bytes=len(raw_rfc822),
            written_at=datetime.now(tz=UTC),
        )

    def delete(self, message_id: str) -> Path:
        """Remove the backup file for an id.

        Args:
            message_id: Provider message id.

        Returns:
            The removed path.

        Raises:
            OSError: If removal fails (FileNotFoundError included).
        """
        path = self.path_for(message_id)
        path.unlink()
        return path


def _fsync_dir(path: Path) -> None:
    """Flush a directory entry update to disk where the platform allows it."""
    if not hasattr(os, "O_DIRECTORY"):
        return
    dir_fd = os.open(str(path), os.O_DIRECTORY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)
