"""Tests for the local .eml store."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from mailbox_backup.errors import DataFolderError
from mailbox_backup.storage.local_store import LocalStore, file_name_for, message_id_for


@pytest.mark.parametrize(
    "message_id",
    [
        "18c2f1a9b7d3e4f0",
        "AAMkAGI2TG93AAA=",
        "AAMkAD/with+slash==",
        ".hidden",
        "..",
        "spaces and ünïcode",
        "a%2Fb",
    ],
)
def test_file_name_is_safe_and_invertible(message_id: str) -> None:
    """Every id maps to one flat file name that maps back to the id."""
    name = file_name_for(message_id)

    assert name.endswith(".eml")
    assert "/" not in name
    assert not name.startswith(".")
    assert message_id_for(name) == message_id


def test_distinct_ids_get_distinct_names() -> None:
    """Ids that differ only in escaped characters stay distinct."""
    assert file_name_for("a/b") != file_name_for("a%2Fb")
    assert file_name_for(".x") != file_name_for("%2Ex")


@pytest.mark.parametrize("name", ["notes.txt", ".eml", "a%2fb.eml", "%ZZ.eml", "a/b.eml"])
def test_foreign_names_are_not_message_files(name: str) -> None:
    """Names the store could not have produced are ignored."""
    assert message_id_for(name) is None


def test_write_atomic_creates_final_file_only(tmp_path: Path) -> None:
    """A successful write leaves the final file and no temp files."""
    store = LocalStore(data_folder=tmp_path)

    record = store.write_atomic("abc", b"Subject: hi\r\n\r\nbody\r\n")

    assert record.file_path == tmp_path / "abc.eml"
    assert record.size_bytes == len(b"Subject: hi\r\n\r\nbody\r\n")
    assert record.file_path.read_bytes().startswith(b"Subject: hi")
    assert sorted(p.name for p in tmp_path.iterdir()) == ["abc.eml"]


def test_write_atomic_cleans_up_after_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A failed rename leaves neither a final file nor a temp file."""
    store = LocalStore(data_folder=tmp_path)

    def _boom(src: object, dst: object) -> None:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(os, "replace", _boom)

    with pytest.raises(OSError):
        store.write_atomic("abc", b"data")

    assert list(tmp_path.iterdir()) == []


def test_scan_indexes_complete_files_only(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    """Scan skips temp files, empty files, foreign files and directories."""
    store = LocalStore(data_folder=tmp_path)
    store.write_atomic("good", b"x")
    store.write_atomic("a/b", b"y")
    (tmp_path / "partial.eml").write_bytes(b"")
    (tmp_path / "half.eml.abc.tmp").write_bytes(b"zz")
    (tmp_path / "readme.txt").write_text("hello", encoding="utf-8")
    (tmp_path / "dir.eml").mkdir()

    with caplog.at_level("WARNING"):
        records = store.scan()

    assert sorted(records) == ["a/b", "good"]
    assert records["good"].size_bytes == 1
    assert any("temporary" in message for message in caplog.messages)
    assert any("empty" in message for message in caplog.messages)


def test_scan_of_missing_folder_is_a_data_folder_error(tmp_path: Path) -> None:
    """A folder that cannot be listed raises DataFolderError."""
    with pytest.raises(DataFolderError):
        LocalStore(data_folder=tmp_path / "missing").scan()


def test_ensure_root_creates_nested_folder(tmp_path: Path) -> None:
    """ensure_root creates missing parents."""
    store = LocalStore(data_folder=tmp_path / "a" / "b")

    store.ensure_root()

    assert store.root_available()


def test_ensure_root_rejects_file(tmp_path: Path) -> None:
    """ensure_root fails when the path is a regular file."""
    target = tmp_path / "file"
    target.write_text("x", encoding="utf-8")

    with pytest.raises(DataFolderError):
        LocalStore(data_folder=target).ensure_root()


def test_exists_ignores_empty_files(tmp_path: Path) -> None:
    """Only non-empty files count as backed up."""
    store = LocalStore(data_folder=tmp_path)
    store.path_for("e").write_bytes(b"")
    store.write_atomic("f", b"full")

    assert not store.exists("e")
    assert store.exists("f")
    assert not store.exists("missing")


def test_delete_returns_path_and_raises_when_missing(tmp_path: Path) -> None:
    """Delete removes the file; deleting again raises FileNotFoundError."""
    store = LocalStore(data_folder=tmp_path)
    store.write_atomic("gone", b"bye")

    removed = store.delete("gone")

    assert removed == tmp_path / "gone.eml"
    assert not removed.exists()
    with pytest.raises(FileNotFoundError):
        store.delete("gone")
