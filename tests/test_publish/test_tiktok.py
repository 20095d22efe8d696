"""
Tests for crosspost/publish/tiktok.py

All HTTP calls are mocked — no real API credentials needed.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from crosspost.accounts.resolver import Credentials
from crosspost.content.models import InlineMedia, Platform, UrlMedia
from crosspost.errors import MediaRejected, PlatformTransient, RateLimited, UnknownPublishError
from crosspost.publish.tiktok import TikTokPublisher, validate_video


# ---------------------------------------------------------------------------
# Helpers / fixtures
# ---------------------------------------------------------------------------


def _ok_response(data: dict | None = None, code: str = "ok") -> MagicMock:
    mock = MagicMock()
    mock.status_code = 200
    mock.headers = {}
    mock.json.return_value = {"data": data or {}, "error": {"code": code, "message": ""}}
    return mock


def _status(status: str, **extra: object) -> MagicMock:
    return _ok_response({"status": status, **extra})


def _publisher(responses: list, attempts: int = 5) -> tuple[TikTokPublisher, MagicMock]:
    http = MagicMock()
    http.request.side_effect = list(responses)
    sleeps: list[float] = []
    publisher = TikTokPublisher(http, poll_interval=5.0, poll_attempts=attempts, sleep=sleeps.append)
    publisher.sleeps = sleeps
    return publisher, http


def _creds() -> Credentials:
    return Credentials(
        account_id="acc1",
        platform=Platform.TIKTOK,
        platform_user_id="tt-uid",
        access_token="TT_TOKEN",
    )


def _body(http: MagicMock, index: int) -> dict:
    return http.request.call_args_list[index][1]["json"]


# ---------------------------------------------------------------------------
# validate_video
# ---------------------------------------------------------------------------


class TestValidateVideo:
    @pytest.mark.parametrize(
        "mime", ["video/mp4", "video/quicktime", "video/x-msvideo", "video/webm"]
    )
    def test_accepted_formats(self, mime: str) -> None:
        validate_video(b"data", mime)

    def test_rejects_images(self) -> None:
        with pytest.raises(MediaRejected, match="Invalid video format"):
            validate_video(b"data", "image/jpeg")


# ---------------------------------------------------------------------------
# publish
# ---------------------------------------------------------------------------


class TestPublish:
    def test_requires_video(self) -> None:
        publisher, http = _publisher([])

        with pytest.raises(MediaRejected, match="TikTok requires a video"):
            publisher.publish(_creds(), "caption", [])

        http.request.assert_not_called()

    def test_pull_from_url(self) -> None:
        publisher, http = _publisher(
            [
                _ok_response({"publish_id": "PUB1"}),
                _status("PROCESSING_DOWNLOAD"),
                _status("PUBLISH_COMPLETE", publicaly_available_post_id=[7312]),
            ]
        )

        post_id = publisher.publish(
            _creds(), "dance", [UrlMedia(url="https://cdn.example/v.mp4")]
        )

        assert post_id == "7312"
        body = _body(http, 0)
        assert body["source_info"] == {
            "source": "PULL_FROM_URL",
            "video_url": "https://cdn.example/v.mp4",
        }
        assert body["post_info"]["title"] == "dance"
        assert body["post_info"]["privacy_level"] == "PUBLIC_TO_EVERYONE"
        assert _body(http, 1) == {"publish_id": "PUB1"}
        assert publisher.sleeps == [5.0]
        headers = http.request.call_args_list[0][1]["headers"]
        assert headers["Authorization"] == "Bearer TT_TOKEN"

    def test_file_upload(self) -> None:
        publisher, http = _publisher(
            [
                _ok_response({"upload_url": "https://upload.example/u1", "upload_id": "UP1"}),
                _ok_response(),
                _ok_response({"publish_id": "PUB1"}),
                _status("PUBLISH_COMPLETE"),
            ]
        )
        video = InlineMedia.from_bytes(b"\x00\x00\x00\x18ftypmp42", "video/mp4")

        post_id = publisher.publish(_creds(), "x" * 200, [video])

        assert post_id == "PUB1"
        assert _body(http, 0)["source_info"] == {"source": "FILE_UPLOAD"}
        args, kwargs = http.request.call_args_list[1]
        assert args == ("PUT", "https://upload.example/u1")
        assert kwargs["content"] == b"\x00\x00\x00\x18ftypmp42"
        body = _body(http, 2)
        assert body["source_info"] == {"source": "FILE_UPLOAD", "upload_id": "UP1"}
        assert len(body["post_info"]["title"]) == 150

    def test_inline_image_rejected(self) -> None:
        publisher, http = _publisher([])
        image = InlineMedia.from_bytes(b"\xff\xd8", "image/jpeg")

        with pytest.raises(MediaRejected):
            publisher.publish(_creds(), "x", [image])

        http.request.assert_not_called()

    def test_api_error_code(self) -> None:
        publisher, _ = _publisher([_ok_response(code="spam_risk_too_many_posts")])

        with pytest.raises(UnknownPublishError, match="TikTok publish init failed"):
            publisher.publish(_creds(), "x", [UrlMedia(url="https://cdn.example/v.mp4")])

    def test_publish_failed(self) -> None:
        publisher, _ = _publisher(
            [
                _ok_response({"publish_id": "PUB1"}),
                _status("FAILED", fail_reason="video_pull_failed"),
            ]
        )

        with pytest.raises(UnknownPublishError, match="video_pull_failed"):
            publisher.publish(_creds(), "x", [UrlMedia(url="https://cdn.example/v.mp4")])

    def test_publish_timeout(self) -> None:
        publisher, _ = _publisher(
            [_ok_response({"publish_id": "PUB1"})] + [_status("PROCESSING_UPLOAD")] * 3,
            attempts=3,
        )

        with pytest.raises(PlatformTransient, match="timeout"):
            publisher.publish(_creds(), "x", [UrlMedia(url="https://cdn.example/v.mp4")])

    def test_http_429(self) -> None:
        resp = MagicMock()
        resp.status_code = 429
        resp.headers = {"retry-after": "60"}
        resp.json.return_value = {"error": {"code": "rate_limit_exceeded", "message": "slow down"}}
        publisher, _ = _publisher([resp])

        with pytest.raises(RateLimited) as excinfo:
            publisher.publish(_creds(), "x", [UrlMedia(url="https://cdn.example/v.mp4")])

        assert excinfo.value.retry_after == 60.0
