"""
Publishing package — Instagram, X/Twitter, LinkedIn, TikTok adapters.
"""

from __future__ import annotations

import httpx

from crosspost.publish.base import HttpPublisher, Publisher, PublisherRegistry
from crosspost.publish.instagram import InstagramPublisher
from crosspost.publish.linkedin import LinkedInPublisher
from crosspost.publish.tiktok import TikTokPublisher
from crosspost.publish.twitter import TwitterPublisher


def default_registry(settings, http: httpx.Client) -> PublisherRegistry:
    """One publisher per supported platform, configured from settings."""
    return PublisherRegistry(
        [
            TwitterPublisher(
                http,
                consumer_key=settings.twitter_consumer_key,
                consumer_secret=settings.twitter_consumer_secret,
                poll_interval=settings.twitter_poll_interval,
                poll_attempts=settings.twitter_poll_attempts,
            ),
            InstagramPublisher(
                http,
                api_version=settings.graph_api_version,
                poll_interval=settings.instagram_poll_interval,
                poll_attempts=settings.instagram_poll_attempts,
            ),
            LinkedInPublisher(http),
            TikTokPublisher(
                http,
                poll_interval=settings.tiktok_poll_interval,
                poll_attempts=settings.tiktok_poll_attempts,
            ),
        ]
    )


__all__ = [
    "Publisher",
    "HttpPublisher",
    "PublisherRegistry",
    "InstagramPublisher",
    "TwitterPublisher",
    "LinkedInPublisher",
    "TikTokPublisher",
    "default_registry",
]
