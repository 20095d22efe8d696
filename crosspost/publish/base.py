"""
Publisher contract and the platform → publisher lookup table.

Every adapter takes decrypted credentials, the post text and a list of
``MediaReference`` items and returns the platform-assigned post id, or
raises a ``PublishError`` subclass that the worker can classify.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterator, Optional, Sequence

import httpx

from crosspost.accounts.resolver import Credentials
from crosspost.content.models import MediaReference, Platform
from crosspost.errors import ConfigurationError, PlatformTransient, error_for_status

logger = logging.getLogger(__name__)


class Publisher(ABC):
    """One platform's publish protocol."""

    platform: Platform

    @abstractmethod
    def publish(
        self,
        credentials: Credentials,
        content: str,
        media: Sequence[MediaReference],
    ) -> str:
        """Publish one post and return the platform post id."""


class HttpPublisher(Publisher):
    """Publisher that talks to its platform through a shared ``httpx.Client``."""

    def __init__(
        self,
        http: httpx.Client,
        *,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._http = http
        self._sleep = sleep or time.sleep

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request; connection failures become ``PlatformTransient``."""
        try:
            return self._http.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise PlatformTransient(
                f"{self.platform.value} request failed: {exc}",
                platform=self.platform.value,
            ) from exc

    def _check(self, resp: httpx.Response, context: str) -> httpx.Response:
        """Raise the typed error for a non-2xx response, keeping the platform message."""
        if resp.status_code < 400:
            return resp
        message = f"{context}: {error_message(resp)}"
        raise error_for_status(
            resp.status_code,
            message,
            platform=self.platform.value,
            retry_after=retry_after_seconds(resp),
        )


def error_message(resp: httpx.Response) -> str:
    """Best-effort extraction of the human-readable error from a platform response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        for key in ("message", "detail", "title", "error_description"):
            if body.get(key):
                return str(body[key])
    return str(body)


def retry_after_seconds(resp: httpx.Response) -> Optional[float]:
    value = resp.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class PublisherRegistry:
    """Lookup table of publishers keyed by platform."""

    def __init__(self, publishers: Optional[Sequence[Publisher]] = None) -> None:
        self._publishers: dict[Platform, Publisher] = {}
        for publisher in publishers or ():
            self.register(publisher)

    def register(self, publisher: Publisher) -> None:
        self._publishers[publisher.platform] = publisher
        logger.debug("Registered publisher for %s", publisher.platform.value)

    def get(self, platform: Platform) -> Publisher:
        try:
            return self._publishers[platform]
        except KeyError:
            raise ConfigurationError(
                f"No publisher registered for platform {platform.value}"
            ) from None

    def __contains__(self, platform: object) -> bool:
        return platform in self._publishers

    def __iter__(self) -> Iterator[Platform]:
        return iter(self._publishers)

    def __len__(self) -> int:
        return len(self._publishers)
