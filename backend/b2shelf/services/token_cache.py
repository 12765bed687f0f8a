"""Per-account B2 authorization cache."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from b2shelf.config import Account
from b2shelf.errors import UnknownAccountError, UpstreamAuthError
from b2shelf.services.b2_client import B2Client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    account: str
    account_id: str
    api_url: str
    download_url: str
    authorization_token: str
    issued_at: float = field(default_factory=time.time)


class TokenCache:
    """Holds one authorization context per account.

    Entries never expire on their own; a caller that gets a 401 back
    calls ``invalidate`` and asks again.
    """

    def __init__(self, client: B2Client, accounts: dict[str, Account]):
        self._client = client
        self._accounts = accounts
        self._tokens: dict[str, AuthContext] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def accounts(self) -> dict[str, Account]:
        return dict(self._accounts)

    def account(self, account: str) -> Account:
        try:
            return self._accounts[account]
        except KeyError:
            raise UnknownAccountError(account) from None

    def _lock(self, account: str) -> asyncio.Lock:
        lock = self._locks.get(account)
        if lock is None:
            lock = self._locks[account] = asyncio.Lock()
        return lock

    async def get_token(self, account: str) -> AuthContext:
        acct = self.account(account)

        cached = self._tokens.get(account)
        if cached is not None:
            return cached

        async with self._lock(account):
            # Another task may have authorized while we waited
            cached = self._tokens.get(account)
            if cached is not None:
                return cached

            if not (acct.key_id and acct.application_key):
                raise UpstreamAuthError(f"No B2 credentials configured for {account}")

            data = await self._client.authorize(acct.key_id, acct.application_key)
            try:
                ctx = AuthContext(
                    account=account,
                    account_id=data.get("accountId", ""),
                    api_url=data["apiUrl"],
                    download_url=data["downloadUrl"],
                    authorization_token=data["authorizationToken"],
                )
            except KeyError as e:
                raise UpstreamAuthError(f"Malformed B2 authorization response: missing {e}") from e

            self._tokens[account] = ctx
            logger.info("Authorized B2 account %s (api=%s)", account, ctx.api_url)
            return ctx

    def invalidate(self, account: str, stale: AuthContext | None = None) -> None:
        """Drop the cached context.

        With ``stale`` given, only drop it if it is still the cached one,
        so a token another task just refreshed survives.
        """
        current = self._tokens.get(account)
        if current is None:
            return
        if stale is not None and current is not stale:
            return
        del self._tokens[account]
        logger.info("Dropped B2 authorization for %s", account)

    def is_cached(self, account: str) -> bool:
        return account in self._tokens
