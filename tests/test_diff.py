"""Tests for the remote/local diff."""

from __future__ import annotations

from mailbox_backup.models.messages import MessageRef
from mailbox_backup.sync.diff import compute_diff


def _refs(*ids: str) -> list[MessageRef]:
    return [MessageRef(id=message_id) for message_id in ids]


def test_missing_and_present_split() -> None:
    """Remote-only ids are fetched; shared ids are already present."""
    plan = compute_diff(_refs("A", "B", "C"), {"B"}, sync_deletes=False)

    assert [ref.id for ref in plan.to_fetch] == ["A", "C"]
    assert [ref.id for ref in plan.already_present] == ["B"]
    assert plan.to_delete == []
    assert plan.total == 3


def test_orphans_only_with_sync_deletes() -> None:
    """Local-only ids are deleted only when sync_deletes is on."""
    remote = _refs("A")
    local = {"A", "Z", "B"}

    assert compute_diff(remote, local, sync_deletes=False).to_delete == []
    assert compute_diff(remote, local, sync_deletes=True).to_delete == ["B", "Z"]


def test_empty_remote_with_sync_deletes_deletes_everything() -> None:
    """An empty remote listing marks every local id as orphan."""
    plan = compute_diff([], ["x", "y"], sync_deletes=True)

    assert plan.to_fetch == []
    assert plan.to_delete == ["x", "y"]
    assert plan.total == 0


def test_listing_order_is_preserved() -> None:
    """to_fetch follows the remote listing order."""
    plan = compute_diff(_refs("c", "a", "b"), set(), sync_deletes=False)

    assert [ref.id for ref in plan.to_fetch] == ["c", "a", "b"]
