"""Image helpers shared by the upload providers (ImgBB, Catbox).

Hey future me - Discord shows the large image at ~300px anyway, so uploading a 3000px
embedded FLAC cover is pure waste. Everything goes through prepare_upload() first:

    ArtSource ──read_source_bytes()──► raw bytes ──shrink_image()──► JPEG ≤ max_size

PIL is CPU-bound, it runs in a worker thread (asyncio.to_thread) like file reads do.
"""

import asyncio
import base64
import binascii
import logging
import mimetypes
from io import BytesIO

from PIL import Image as PILImage
from PIL import UnidentifiedImageError

from presencesync.domain.exceptions import ProviderError
from presencesync.domain.value_objects import ArtSource, Base64, Bytes, DirectUrl, LocalFile

logger = logging.getLogger(__name__)


async def read_source_bytes(source: ArtSource, provider: str | None = None) -> tuple[bytes, str]:
    """Load the raw image bytes and mime type of a local art source.

    Raises:
        ProviderError: file unreadable, invalid base64 or a DirectUrl (nothing to upload)
    """
    if isinstance(source, Bytes):
        return source.data, source.mime
    if isinstance(source, Base64):
        try:
            return base64.b64decode(source.data, validate=False), source.mime
        except (binascii.Error, ValueError) as e:
            raise ProviderError(f"Invalid base64 image data: {e}", provider=provider) from e
    if isinstance(source, LocalFile):
        try:
            data = await asyncio.to_thread(source.path.read_bytes)
        except OSError as e:
            raise ProviderError(f"Cannot read {source.path}: {e}", provider=provider) from e
        mime = mimetypes.guess_type(source.path.name)[0] or "image/jpeg"
        return data, mime
    if isinstance(source, DirectUrl):
        raise ProviderError("Direct URLs need no upload", provider=provider)
    raise ProviderError(f"Unsupported art source {source!r}", provider=provider)


def _shrink_sync(data: bytes, max_size: int, quality: int) -> bytes:
    with PILImage.open(BytesIO(data)) as img:
        if max(img.size) <= max_size and img.format == "JPEG":
            return data
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.thumbnail((max_size, max_size), PILImage.Resampling.LANCZOS)
        output = BytesIO()
        img.save(output, format="JPEG", quality=quality, optimize=True)
        return output.getvalue()


async def shrink_image(data: bytes, max_size: int = 500, quality: int = 85) -> bytes:
    """Downscale to max_size on the longest edge and recompress to JPEG.

    Small JPEGs are passed through untouched. Data Pillow can't decode is returned as-is,
    the host may still accept it.
    """
    try:
        return await asyncio.to_thread(_shrink_sync, data, max_size, quality)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("Could not process image (%d bytes), uploading original: %s", len(data), e)
        return data


async def prepare_upload(
    source: ArtSource, max_size: int, quality: int, provider: str | None = None
) -> bytes:
    data, mime = await read_source_bytes(source, provider)
    if not data:
        raise ProviderError("Empty image data", provider=provider)
    shrunk = await shrink_image(data, max_size, quality)
    if shrunk is not data:
        logger.debug("Resized %s image: %d → %d bytes", mime, len(data), len(shrunk))
    return shrunk
