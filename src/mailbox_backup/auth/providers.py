"""OAuth endpoints and scopes of the supported providers."""

from __future__ import annotations

from dataclasses import dataclass

from mailbox_backup.models.types import Provider


@dataclass(frozen=True)
class OAuthEndpoints:
    """Authorization server details for one provider."""

    auth_uri: str
    token_uri: str
    scopes: tuple[str, ...]
    # Microsoft echoes scopes back in a different form than requested.
    relax_token_scope: bool = False


GMAIL_ENDPOINTS = OAuthEndpoints(
    auth_uri="https://accounts.google.com/o/oauth2/auth",
    token_uri="https://accounts.google.com/o/oauth2/token",
    scopes=("https://www.googleapis.com/auth/gmail.readonly",),
)

OFFICE365_ENDPOINTS = OAuthEndpoints(
    auth_uri="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
    token_uri="https://login.microsoftonline.com/common/oauth2/v2.0/token",
    scopes=("offline_access", "https://graph.microsoft.com/Mail.Read"),
    relax_token_scope=True,
)


def endpoints_for(provider: Provider) -> OAuthEndpoints:
    """Return the OAuth endpoints for a provider."""
    if provider == Provider.gmail:
        return GMAIL_ENDPOINTS
    return OFFICE365_ENDPOINTS
