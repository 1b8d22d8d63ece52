"""Catbox / Litterbox upload provider.

Hey future me - catbox.moe keeps files forever (optionally tied to your user hash so you can
delete them later), litterbox.catbox.moe deletes them after 1/12/24/72 hours. Both answer
the multipart upload with the bare URL as plain text, not JSON. With use_litter the provider
reports itself as "litterbox" and sets the expiration so the cache never outlives the file.
"""

import logging

import httpx

from presencesync.config.settings import LITTER_HOURS, CatboxSettings, ImageProcessingSettings
from presencesync.domain.exceptions import ProviderError
from presencesync.domain.ports import CoverResult, ICoverArtProvider
from presencesync.domain.value_objects import ArtSource, Base64, Bytes, LocalFile, TrackMetadata
from presencesync.infrastructure.image_providers.image_processing import prepare_upload
from presencesync.infrastructure.integrations.http_pool import HttpClientPool

logger = logging.getLogger(__name__)

CATBOX_URL = "https://catbox.moe/user/api.php"
LITTERBOX_URL = "https://litterbox.catbox.moe/resources/internals/api.php"


class CatboxProvider(ICoverArtProvider):
    """Uploads local artwork to Catbox (permanent) or Litterbox (temporary)."""

    def __init__(
        self,
        settings: CatboxSettings,
        image: ImageProcessingSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._image = image or ImageProcessingSettings()
        self._client = client

    @property
    def name(self) -> str:
        return "litterbox" if self._settings.use_litter else "catbox"

    @property
    def litter_hours(self) -> int:
        # settings already validated this, but providers can be built from raw models in tests
        hours = self._settings.litter_hours
        if hours not in LITTER_HOURS:
            logger.warning("Invalid litter_hours %s, using 24h", hours)
            return 24
        return hours

    def supports(self, source: ArtSource | None) -> bool:
        return isinstance(source, (Bytes, Base64, LocalFile))

    async def process(
        self, source: ArtSource | None, metadata: TrackMetadata
    ) -> CoverResult | None:
        if source is None or not self.supports(source):
            return None

        data = await prepare_upload(source, self._image.max_size, self._image.quality, self.name)
        files = {"fileToUpload": ("cover.jpg", data, "image/jpeg")}
        form = {"reqtype": "fileupload"}
        expiration: int | None = None
        if self._settings.use_litter:
            url = LITTERBOX_URL
            form["time"] = f"{self.litter_hours}h"
            expiration = self.litter_hours * 3600
        else:
            url = CATBOX_URL
            if self._settings.user_hash:
                form["userhash"] = self._settings.user_hash

        client = self._client or await HttpClientPool.get_client()
        logger.info("Uploading %d bytes to %s", len(data), self.name)
        response = await client.post(url, data=form, files=files)
        body = response.text.strip()
        if response.status_code >= 400:
            raise ProviderError(
                f"{self.name} upload failed with HTTP {response.status_code}: {body[:200]}",
                provider=self.name,
            )
        if not body.startswith(("http://", "https://")):
            raise ProviderError(f"{self.name} returned no URL: {body[:200]}", provider=self.name)

        logger.info("%s provided hosted cover art: %s", self.name, body)
        return CoverResult(url=body, provider=self.name, expiration=expiration)
