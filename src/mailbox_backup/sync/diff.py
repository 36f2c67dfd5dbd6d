"""Compare the remote listing with the local index."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from mailbox_backup.models.messages import MessageRef


@dataclass(frozen=True)
class SyncPlan:
    """What a session has to do to bring the data folder in line with the remote."""

    to_fetch: list[MessageRef] = field(default_factory=list)
    already_present: list[MessageRef] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Number of remote messages matching the filter."""
        return len(self.to_fetch) + len(self.already_present)


def compute_diff(
    remote_refs: Sequence[MessageRef],
    local_ids: Iterable[str],
    *,
    sync_deletes: bool,
) -> SyncPlan:
    """Split the remote listing into fetch/present and find local orphans.

    Args:
        remote_refs: Remote messages in listing order, unique by id.
        local_ids: Ids already backed up.
        sync_deletes: Whether local-only ids should be deleted.

    Returns:
        SyncPlan with to_fetch = R - L, to_delete = L - R (only when enabled).
    """
    local = set(local_ids)
    to_fetch: list[MessageRef] = []
    present: list[MessageRef] = []
    for ref in remote_refs:
        (present if ref.id in local else to_fetch).append(ref)

    to_delete: list[str] = []
    if sync_deletes:
        remote_ids = {ref.id for ref in remote_refs}
        to_delete = sorted(local - remote_ids)

    return SyncPlan(to_fetch=to_fetch, already_present=present, to_delete=to_delete)
