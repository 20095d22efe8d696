"""
Tests for crosspost/publish/base.py, crosspost/publish/media.py,
crosspost/publish/__init__.py and the error taxonomy in crosspost/errors.py
"""

from __future__ import annotations

import datetime as dt
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from crosspost.content.models import InlineMedia, Platform, UrlMedia
from crosspost.errors import (
    AccountInactive,
    AuthFailed,
    ConfigurationError,
    ErrorKind,
    MediaRejected,
    PlatformTransient,
    RateLimited,
    UnknownPublishError,
    ValidationError,
    classify_error,
    describe_failure,
    error_for_status,
    is_retryable,
)
from crosspost.publish import default_registry
from crosspost.publish.base import PublisherRegistry, error_message, retry_after_seconds
from crosspost.publish.media import MediaBlob, is_video, is_video_url, load_media


def _response(status: int, *, json_body=None, text: str = "", headers: dict | None = None) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status
    mock.text = text
    mock.headers = headers or {}
    if json_body is None:
        mock.json.side_effect = ValueError("not json")
    else:
        mock.json.return_value = json_body
    return mock


# ---------------------------------------------------------------------------
# PublisherRegistry
# ---------------------------------------------------------------------------


class TestPublisherRegistry:
    def test_register_and_get(self) -> None:
        publisher = SimpleNamespace(platform=Platform.TWITTER)
        registry = PublisherRegistry([publisher])

        assert registry.get(Platform.TWITTER) is publisher
        assert Platform.TWITTER in registry
        assert Platform.TIKTOK not in registry
        assert list(registry) == [Platform.TWITTER]
        assert len(registry) == 1

    def test_unknown_platform_is_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="tiktok"):
            PublisherRegistry().get(Platform.TIKTOK)

    def test_default_registry_covers_every_platform(self) -> None:
        settings = SimpleNamespace(
            twitter_consumer_key="ck",
            twitter_consumer_secret="cs",
            twitter_poll_interval=2.0,
            twitter_poll_attempts=60,
            graph_api_version="v18.0",
            instagram_poll_interval=2.0,
            instagram_poll_attempts=30,
            tiktok_poll_interval=5.0,
            tiktok_poll_attempts=60,
        )

        registry = default_registry(settings, MagicMock())

        assert set(registry) == set(Platform)


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


class TestResponseHelpers:
    def test_graph_style_error(self) -> None:
        resp = _response(400, json_body={"error": {"message": "Invalid parameter"}})
        assert error_message(resp) == "Invalid parameter"

    def test_message_key(self) -> None:
        resp = _response(401, json_body={"message": "Invalid access token"})
        assert error_message(resp) == "Invalid access token"

    def test_non_json_falls_back_to_text(self) -> None:
        assert error_message(_response(502, text="Bad Gateway")) == "Bad Gateway"

    def test_empty_body(self) -> None:
        assert error_message(_response(503)) == "HTTP 503"

    def test_retry_after(self) -> None:
        assert retry_after_seconds(_response(429, headers={"retry-after": "30"})) == 30.0
        assert retry_after_seconds(_response(429, headers={"retry-after": "soon"})) is None
        assert retry_after_seconds(_response(429)) is None


# ---------------------------------------------------------------------------
# Media helpers
# ---------------------------------------------------------------------------


class TestMedia:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://x.example/a.mp4", True),
            ("https://x.example/a.MOV", True),
            ("https://x.example/a.avi?token=1", True),
            ("https://x.example/a.jpg", False),
            ("https://x.example/mp4/a.png", False),
        ],
    )
    def test_is_video_url(self, url: str, expected: bool) -> None:
        assert is_video_url(url) is expected

    def test_is_video_inline(self) -> None:
        assert is_video(InlineMedia.from_bytes(b"x", "video/mp4"))
        assert not is_video(UrlMedia(url="https://x.example/a.jpg"))

    def test_blob_filename(self) -> None:
        assert MediaBlob(b"", "image/png").filename == "upload.png"
        assert MediaBlob(b"", "application/x-unknown-thing").filename == "upload.bin"

    def test_load_inline(self) -> None:
        blob = load_media(InlineMedia.from_bytes(b"abc", "image/gif"), MagicMock())
        assert blob == MediaBlob(b"abc", "image/gif")

    def test_load_url_uses_content_type(self) -> None:
        http = MagicMock()
        resp = _response(200, headers={"content-type": "video/mp4; charset=binary"})
        resp.content = b"vid"
        http.get.return_value = resp

        blob = load_media(UrlMedia(url="https://x.example/clip"), http)

        assert blob.mime_type == "video/mp4"
        assert blob.is_video

    def test_load_url_guesses_type(self) -> None:
        http = MagicMock()
        resp = _response(200)
        resp.content = b"png"
        http.get.return_value = resp

        assert load_media(UrlMedia(url="https://x.example/a.png"), http).mime_type == "image/png"

    def test_load_url_defaults_to_jpeg(self) -> None:
        http = MagicMock()
        resp = _response(200)
        resp.content = b"?"
        http.get.return_value = resp

        assert load_media(UrlMedia(url="https://x.example/blob"), http).mime_type == "image/jpeg"

    def test_load_url_not_found(self) -> None:
        http = MagicMock()
        http.get.return_value = _response(404)

        with pytest.raises(UnknownPublishError, match="HTTP 404"):
            load_media(UrlMedia(url="https://x.example/a.png"), http)

    def test_load_url_connection_error(self) -> None:
        http = MagicMock()
        http.get.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(PlatformTransient):
            load_media(UrlMedia(url="https://x.example/a.png"), http)

    def test_load_rejects_unknown_reference(self) -> None:
        http = MagicMock()

        with pytest.raises(TypeError, match="Unsupported media reference"):
            load_media("https://x.example/a.png", http)

        http.get.assert_not_called()


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


class TestErrors:
    @pytest.mark.parametrize(
        "status, cls, retryable",
        [
            (429, RateLimited, True),
            (401, AuthFailed, False),
            (403, AuthFailed, False),
            (400, MediaRejected, False),
            (422, MediaRejected, False),
            (500, PlatformTransient, True),
            (503, PlatformTransient, True),
            (404, UnknownPublishError, True),
        ],
    )
    def test_error_for_status(self, status: int, cls: type, retryable: bool) -> None:
        err = error_for_status(status, "boom", platform="twitter")

        assert type(err) is cls
        assert err.status_code == status
        assert err.platform == "twitter"
        assert is_retryable(err) is retryable

    def test_rate_limited_keeps_retry_after(self) -> None:
        err = error_for_status(429, "slow", retry_after=12.0)
        assert err.retry_after == 12.0

    def test_credential_errors_are_terminal(self) -> None:
        assert not is_retryable(AccountInactive("x"))
        assert not is_retryable(ValidationError("x"))
        assert not is_retryable(ConfigurationError("x"))

    def test_unknown_exceptions_are_retryable(self) -> None:
        assert is_retryable(RuntimeError("x"))

    @pytest.mark.parametrize(
        "message, kind",
        [
            ("Request failed with status 429", ErrorKind.RATE_LIMITED),
            ("Rate limit exceeded", ErrorKind.RATE_LIMITED),
            ("HTTP 401 Unauthorized", ErrorKind.AUTH),
            ("Authentication failed: token revoked", ErrorKind.AUTH),
            ("something odd", ErrorKind.UNKNOWN),
        ],
    )
    def test_classify_untyped(self, message: str, kind: ErrorKind) -> None:
        assert classify_error(RuntimeError(message)) is kind

    def test_classify_typed_uses_kind(self) -> None:
        assert classify_error(AccountInactive("rate limit")) is ErrorKind.INACTIVE

    def test_describe_rate_limit(self) -> None:
        notice = describe_failure("429 Too Many Requests", cooldown_minutes=15)

        assert notice.kind is ErrorKind.RATE_LIMITED
        assert notice.retry_after == dt.timedelta(minutes=15)
        assert "15 minutes" in notice.detail

    def test_describe_auth(self) -> None:
        notice = describe_failure("403 Forbidden")

        assert notice.kind is ErrorKind.AUTH
        assert "Reconnect" in notice.detail
        assert notice.retry_after is None

    def test_describe_other_keeps_message(self) -> None:
        notice = describe_failure("Media processing failed")

        assert notice.kind is ErrorKind.UNKNOWN
        assert notice.detail == "Media processing failed"
