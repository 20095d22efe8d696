"""
Credential resolver: account id → plaintext credentials, or a typed failure.

  1. account missing            → AccountNotFound
  2. account inactive           → AccountInactive
  3. decrypt tokens             → TokenDecryptionError on tampered/corrupt data
  4. token expired:
       no refresh token / no refresher for the platform
                                → deactivate account, TokenExpiredNoRefresh
       refresher available      → refresh, re-encrypt and persist, continue
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from crosspost.accounts.cipher import TokenCipher
from crosspost.accounts.refresh import TokenRefresher
from crosspost.content.models import Platform, SocialAccount
from crosspost.content.storage import PipelineStore
from crosspost.errors import AccountInactive, AccountNotFound, TokenExpiredNoRefresh

logger = logging.getLogger(__name__)


@dataclass
class Credentials:
    """Decrypted credential set handed to a publisher.  Never logged."""

    account_id: str
    platform: Platform
    platform_user_id: str
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    oauth1_token: Optional[str] = field(default=None, repr=False)
    oauth1_token_secret: Optional[str] = field(default=None, repr=False)

    @property
    def has_oauth1(self) -> bool:
        return bool(self.oauth1_token and self.oauth1_token_secret)


class CredentialResolver:
    def __init__(
        self,
        store: PipelineStore,
        cipher: TokenCipher,
        refreshers: Optional[dict[Platform, TokenRefresher]] = None,
        clock: Optional[Callable[[], dt.datetime]] = None,
    ) -> None:
        self.store = store
        self.cipher = cipher
        self.refreshers = refreshers or {}
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))

    def resolve(self, account_id: str) -> Credentials:
        account = self.store.get_account(account_id)
        if account is None:
            raise AccountNotFound(f"Social account {account_id} not found")
        if not account.is_active:
            raise AccountInactive(f"Social account {account_id} is not active")

        access_token = self.cipher.decrypt(account.access_token)
        refresh_token = (
            self.cipher.decrypt(account.refresh_token) if account.refresh_token else None
        )

        if account.token_expired(self._clock()):
            access_token, refresh_token = self._refresh(account, refresh_token)

        return Credentials(
            account_id=account.id,
            platform=account.platform,
            platform_user_id=account.platform_user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            oauth1_token=self._maybe_decrypt(account.oauth1_access_token),
            oauth1_token_secret=self._maybe_decrypt(account.oauth1_access_token_secret),
        )

    def _maybe_decrypt(self, value: Optional[str]) -> Optional[str]:
        return self.cipher.decrypt(value) if value else None

    def _refresh(
        self, account: SocialAccount, refresh_token: Optional[str]
    ) -> tuple[str, Optional[str]]:
        refresher = self.refreshers.get(account.platform)
        if not refresh_token or refresher is None:
            self.store.deactivate_account(account.id)
            raise TokenExpiredNoRefresh(
                "Token expired and no refresh token available. User must reconnect."
            )

        tokens = refresher.refresh(refresh_token)
        new_refresh = tokens.refresh_token or refresh_token
        expires_at = (
            self._clock() + dt.timedelta(seconds=tokens.expires_in)
            if tokens.expires_in
            else None
        )
        self.store.update_tokens(
            account.id,
            self.cipher.encrypt(tokens.access_token),
            self.cipher.encrypt(new_refresh),
            expires_at,
        )
        logger.info("Refreshed expired token for account %s", account.id)
        return tokens.access_token, new_refresh
