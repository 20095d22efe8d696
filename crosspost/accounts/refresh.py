"""
OAuth 2.0 refresh-token grants for the platforms that support them.

  twitter   POST https://api.twitter.com/2/oauth2/token        (HTTP Basic client auth)
  linkedin  POST https://www.linkedin.com/oauth/v2/accessToken (client id/secret in form)
  tiktok    POST https://open.tiktokapis.com/v2/oauth/token/   (client key/secret in form)

Instagram long-lived tokens have no refresh grant here; an expired Instagram
token means the user has to reconnect.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

from crosspost.content.models import Platform
from crosspost.errors import AuthFailed, PlatformTransient, error_for_status

logger = logging.getLogger(__name__)


@dataclass
class RefreshedTokens:
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_in: Optional[int] = None


class TokenRefresher(ABC):
    """Refresh-token grant against one platform's token endpoint."""

    platform: Platform
    token_url: str

    def __init__(self, client_id: str, client_secret: str, http: httpx.Client) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self._http = http

    @abstractmethod
    def _request(self, refresh_token: str) -> httpx.Response:
        """Send the platform-specific refresh grant."""

    def refresh(self, refresh_token: str) -> RefreshedTokens:
        try:
            resp = self._request(refresh_token)
        except httpx.TransportError as exc:
            raise PlatformTransient(
                f"Failed to refresh {self.platform.value} token: {exc}",
                platform=self.platform.value,
            ) from exc

        if resp.status_code >= 400:
            message = f"Failed to refresh {self.platform.value} token: {resp.text}"
            if resp.status_code == 429 or resp.status_code >= 500:
                raise error_for_status(resp.status_code, message, platform=self.platform.value)
            raise AuthFailed(message, platform=self.platform.value, status_code=resp.status_code)

        body = resp.json()
        logger.info("Refreshed %s access token", self.platform.value)
        return RefreshedTokens(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=body.get("expires_in"),
        )


class TwitterRefresher(TokenRefresher):
    platform = Platform.TWITTER
    token_url = "https://api.twitter.com/2/oauth2/token"

    def _request(self, refresh_token: str) -> httpx.Response:
        return self._http.post(
            self.token_url,
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
            auth=(self.client_id, self.client_secret),
        )


class LinkedInRefresher(TokenRefresher):
    platform = Platform.LINKEDIN
    token_url = "https://www.linkedin.com/oauth/v2/accessToken"

    def _request(self, refresh_token: str) -> httpx.Response:
        return self._http.post(
            self.token_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )


class TikTokRefresher(TokenRefresher):
    platform = Platform.TIKTOK
    token_url = "https://open.tiktokapis.com/v2/oauth/token/"

    def _request(self, refresh_token: str) -> httpx.Response:
        return self._http.post(
            self.token_url,
            data={
                "client_key": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )


def build_refreshers(settings, http: httpx.Client) -> dict[Platform, TokenRefresher]:
    """Refreshers for every platform whose app credentials are configured."""
    candidates = [
        (TwitterRefresher, settings.twitter_client_id, settings.twitter_client_secret),
        (LinkedInRefresher, settings.linkedin_client_id, settings.linkedin_client_secret),
        (TikTokRefresher, settings.tiktok_client_key, settings.tiktok_client_secret),
    ]
    refreshers: dict[Platform, TokenRefresher] = {}
    for cls, client_id, client_secret in candidates:
        if client_id and client_secret:
            refreshers[cls.platform] = cls(client_id, client_secret, http)
    return refreshers
