"""ImgBB upload provider."""

import base64
import json
import logging
from typing import Any

import httpx

from presencesync.config.settings import ImageProcessingSettings, ImgBBSettings
from presencesync.domain.exceptions import ProviderError
from presencesync.domain.ports import CoverResult, ICoverArtProvider
from presencesync.domain.value_objects import ArtSource, Base64, Bytes, LocalFile, TrackMetadata
from presencesync.infrastructure.image_providers.image_processing import prepare_upload
from presencesync.infrastructure.integrations.http_pool import HttpClientPool

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://api.imgbb.com/1/upload"
DEFAULT_IMAGE_NAME = "presencesync_cover"


def extract_url(payload: dict[str, Any]) -> str | None:
    """Best URL from an upload response: url > display_url > image.url > thumb.url."""
    data = payload.get("data") or {}
    candidates = (
        data.get("url"),
        data.get("display_url"),
        (data.get("image") or {}).get("url"),
        (data.get("thumb") or {}).get("url"),
    )
    return next((url for url in candidates if url), None)


class ImgBBProvider(ICoverArtProvider):
    """Uploads local artwork to ImgBB and returns the hosted URL."""

    def __init__(
        self,
        settings: ImgBBSettings,
        image: ImageProcessingSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._image = image or ImageProcessingSettings()
        # None = shared HttpClientPool client, tests inject one with a MockTransport
        self._client = client

    @property
    def name(self) -> str:
        return "imgbb"

    @property
    def enabled(self) -> bool:
        return bool(self._settings.api_key)

    def supports(self, source: ArtSource | None) -> bool:
        return isinstance(source, (Bytes, Base64, LocalFile))

    def image_name(self, metadata: TrackMetadata) -> str:
        artist = metadata.artists[0] if metadata.artists else None
        if artist and metadata.title:
            return f"{artist} - {metadata.title}"
        return artist or metadata.title or self._settings.default_name or DEFAULT_IMAGE_NAME

    async def process(
        self, source: ArtSource | None, metadata: TrackMetadata
    ) -> CoverResult | None:
        if not self.enabled:
            logger.warning("ImgBB provider is disabled (no API key configured)")
            return None
        if source is None or not self.supports(source):
            return None

        data = await prepare_upload(source, self._image.max_size, self._image.quality, self.name)
        form: dict[str, Any] = {
            "key": self._settings.api_key,
            "image": base64.b64encode(data).decode("ascii"),
            "name": self.image_name(metadata),
        }
        expiration = self._settings.expiration or None
        if expiration:
            form["expiration"] = str(expiration)

        client = self._client or await HttpClientPool.get_client()
        logger.info("Uploading %d bytes to ImgBB as %r", len(data), form["name"])
        response = await client.post(UPLOAD_URL, data=form, timeout=self._settings.timeout)
        if response.status_code >= 400:
            raise ProviderError(
                f"ImgBB upload failed with HTTP {response.status_code}: {response.text[:200]}",
                provider=self.name,
            )
        try:
            payload = response.json()
        except json.JSONDecodeError as e:
            raise ProviderError(f"ImgBB returned invalid JSON: {e}", provider=self.name) from e

        url = extract_url(payload)
        if url is None:
            raise ProviderError("ImgBB response contained no URL", provider=self.name)
        logger.info("ImgBB provided hosted cover art: %s", url)
        return CoverResult(url=url, provider=self.name, expiration=expiration)
