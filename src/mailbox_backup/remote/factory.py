"""Build the provider adapter for a configured provider."""

from __future__ import annotations

from mailbox_backup.auth.tokens import OAuthTokenProvider
from mailbox_backup.config.settings import NetworkSettings
from mailbox_backup.models.types import Provider
from mailbox_backup.remote.base import RemoteMailbox
from mailbox_backup.remote.gmail import GmailMailbox
from mailbox_backup.remote.graph import GraphMailbox


def build_mailbox(
    *,
    provider: Provider,
    tokens: OAuthTokenProvider,
    network: NetworkSettings,
    max_connections: int,
) -> RemoteMailbox:
    """Return the RemoteMailbox adapter for a provider.

    Args:
        provider: Gmail or Office 365.
        tokens: Token provider; adapters resolve credentials lazily from it.
        network: Timeout and page size.
        max_connections: Worker count, used to size HTTP pools.

    Returns:
        Provider adapter.
    """
    if provider == Provider.gmail:
        return GmailMailbox(
            credentials=lambda: tokens.credentials,
            page_size=network.page_size,
            timeout_s=network.timeout_seconds,
        )
    return GraphMailbox(
        token=tokens.fresh_token,
        on_unauthorized=tokens.refresh,
        page_size=network.page_size,
        timeout_s=network.timeout_seconds,
        pool_size=max_connections,
    )
