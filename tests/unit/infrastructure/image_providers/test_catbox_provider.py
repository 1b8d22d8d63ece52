"""Tests for the Catbox / Litterbox upload provider."""

from collections.abc import Callable

import httpx
import pytest

from presencesync.config.settings import CatboxSettings
from presencesync.domain.exceptions import ProviderError
from presencesync.domain.value_objects import Bytes, DirectUrl, TrackMetadata
from presencesync.infrastructure.image_providers.catbox_provider import (
    CATBOX_URL,
    LITTERBOX_URL,
    CatboxProvider,
)

METADATA = TrackMetadata(title="Song", artists=("Artist",))


def make_provider(
    handler: Callable[[httpx.Request], httpx.Response], settings: CatboxSettings
) -> CatboxProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CatboxProvider(settings, client=client)


class Recorder:
    def __init__(
        self, body: str = "https://files.catbox.moe/abc123.jpg", status: int = 200
    ) -> None:
        self.body = body
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, text=self.body)


class TestCatboxProvider:
    """Test permanent and temporary uploads."""

    def test_name_follows_mode(self) -> None:
        """Test the provider reports itself as litterbox in temporary mode."""
        assert CatboxProvider(CatboxSettings()).name == "catbox"
        assert CatboxProvider(CatboxSettings(use_litter=True)).name == "litterbox"

    def test_invalid_hours_fall_back(self) -> None:
        """Test unsupported durations use 24 hours."""
        settings = CatboxSettings.model_construct(use_litter=True, litter_hours=5)
        assert CatboxProvider(settings).litter_hours == 24

    def test_supports(self) -> None:
        """Test direct URLs and missing art are not supported."""
        provider = CatboxProvider(CatboxSettings())
        assert provider.supports(Bytes(b"x"))
        assert not provider.supports(DirectUrl("https://img/a.jpg"))
        assert not provider.supports(None)

    async def test_permanent_upload(self) -> None:
        """Test catbox uploads with the user hash and no expiration."""
        recorder = Recorder(body="https://files.catbox.moe/abc123.jpg\n")
        provider = make_provider(recorder, CatboxSettings(user_hash="hash42"))

        result = await provider.process(Bytes(b"img"), METADATA)

        assert result is not None
        assert result.url == "https://files.catbox.moe/abc123.jpg"
        assert result.provider == "catbox"
        assert result.expiration is None
        request = recorder.requests[0]
        assert str(request.url) == CATBOX_URL
        body = request.content
        assert b'name="reqtype"' in body
        assert b"fileupload" in body
        assert b'name="userhash"' in body
        assert b"hash42" in body
        assert b'name="fileToUpload"; filename="cover.jpg"' in body

    async def test_litter_upload(self) -> None:
        """Test litterbox uploads send the duration and report the expiration."""
        recorder = Recorder(body="https://litter.catbox.moe/xyz.jpg")
        provider = make_provider(recorder, CatboxSettings(use_litter=True, litter_hours=12))

        result = await provider.process(Bytes(b"img"), METADATA)

        assert result is not None
        assert result.provider == "litterbox"
        assert result.expiration == 12 * 3600
        request = recorder.requests[0]
        assert str(request.url) == LITTERBOX_URL
        assert b"12h" in request.content
        assert b"userhash" not in request.content

    async def test_http_error(self) -> None:
        """Test error statuses raise ProviderError."""
        provider = make_provider(Recorder(body="Server error", status=500), CatboxSettings())
        with pytest.raises(ProviderError, match="HTTP 500"):
            await provider.process(Bytes(b"img"), METADATA)

    async def test_body_without_url(self) -> None:
        """Test a plain-text error body raises ProviderError."""
        provider = make_provider(Recorder(body="No file uploaded"), CatboxSettings())
        with pytest.raises(ProviderError, match="returned no URL"):
            await provider.process(Bytes(b"img"), METADATA)

    async def test_unsupported_source(self) -> None:
        """Test no request is made for a direct URL."""
        recorder = Recorder()
        provider = make_provider(recorder, CatboxSettings())
        assert await provider.process(DirectUrl("https://img/a.jpg"), METADATA) is None
        assert recorder.requests == []
