"""Per-user OAuth credential resolution.

``CredentialResolver.resolve(user_id, provider)`` returns a usable access
token for the linked account, refreshing it first when it is expired and the
provider supports refresh.  Failures are typed:

* ``NoAccountError``   : the user never linked this provider.
* ``InvalidTokenError``: the token is unusable and could not be refreshed.

Both derive from ``CredentialError`` so tool adapters can turn either into
"connect" / "reconnect" guidance for the model.  ``StoreError`` from the
underlying database is *not* a credential error and propagates.

Concurrent turns for one user may refresh the same token at the same time;
both writes land and the last one wins.  Either token is valid.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials

from mnemo.config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_TOKEN_URI
from mnemo.services.store import Database, ProviderAccount

logger = logging.getLogger(__name__)

PROVIDER_LABELS: dict[str, str] = {
    "google": "Google",
    "github": "GitHub",
    "linkedin": "LinkedIn",
}


class CredentialError(Exception):
    """Base class for credential resolution failures."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(message)


class NoAccountError(CredentialError):
    """The user has no linked account for the provider."""


class InvalidTokenError(CredentialError):
    """The stored token is unusable and could not be refreshed."""


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    expires_at: datetime | None
    refresh_token: str | None = None


Refresher = Callable[[ProviderAccount], RefreshedToken]


def refresh_google_token(account: ProviderAccount) -> RefreshedToken:
    """Exchange the stored Google refresh token for a new access token.

    Blocking (google-auth uses ``requests``); call it from a worker thread.
    Raises ``google.auth.exceptions.RefreshError`` when Google rejects it.
    """
    creds = Credentials(
        token=None,
        refresh_token=account.refresh_token,
        token_uri=GOOGLE_TOKEN_URI,
        client_id=GOOGLE_CLIENT_ID,
        client_secret=GOOGLE_CLIENT_SECRET,
        scopes=account.scope.split() if account.scope else None,
    )
    creds.refresh(GoogleRequest())
    expiry = creds.expiry.replace(tzinfo=UTC) if creds.expiry else None
    return RefreshedToken(
        access_token=creds.token,
        expires_at=expiry,
        refresh_token=creds.refresh_token,
    )


DEFAULT_REFRESHERS: dict[str, Refresher] = {"google": refresh_google_token}


class CredentialResolver:
    """Turns a (user, provider) pair into a usable access token."""

    def __init__(
        self,
        db: Database,
        refreshers: Mapping[str, Refresher] | None = None,
    ):
        self._db = db
        self._refreshers = dict(DEFAULT_REFRESHERS if refreshers is None else refreshers)

    async def resolve(self, user_id: str, provider: str) -> str:
        account = await self._db.get_account(user_id, provider)
        if account is None:
            raise NoAccountError(provider, f"No {provider} account linked for user {user_id}")

        if not account.is_expired():
            return account.access_token

        return await self._refresh(account)

    async def _refresh(self, account: ProviderAccount) -> str:
        provider = account.provider_id
        refresher = self._refreshers.get(provider)
        if refresher is None or not account.refresh_token:
            raise InvalidTokenError(
                provider, f"{provider} token expired and cannot be refreshed",
            )

        logger.info("Refreshing %s token for user %s", provider, account.user_id)
        try:
            refreshed = await asyncio.to_thread(refresher, account)
        except (RefreshError, TransportError) as exc:
            logger.warning(
                "%s token refresh failed for user %s: %s", provider, account.user_id, exc,
            )
            raise InvalidTokenError(provider, f"{provider} token refresh failed") from exc

        if not refreshed.access_token:
            raise InvalidTokenError(provider, f"{provider} returned an empty token")

        await self._db.update_tokens(
            account.user_id,
            provider,
            access_token=refreshed.access_token,
            expires_at=refreshed.expires_at,
            refresh_token=refreshed.refresh_token,
        )
        return refreshed.access_token
