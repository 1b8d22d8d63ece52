"""Art Source Extractor - classify where a track's artwork lives.

Hey future me - the ORDER below matters, first hit wins:

    1. art URL http(s)                 → DirectUrl  (no provider needed at all)
    2. embedded picture in file tags   → Bytes
    3. art URL data:image/...;base64,  → Base64
    4. art URL file:// or plain path   → LocalFile  (only if the file exists)
    5. sidecar next to the media file  → LocalFile  (cover.jpg, Folder.PNG, ...)
    6. nothing                         → None (musicbrainz can still search by metadata)

Sidecar search is case insensitive and depth limited: depth 1 scans the media file's own
directory, depth 2 also its direct subdirectories ("Scans/", "Artwork/") and so on.
Depth 0 disables it.
"""

import asyncio
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from urllib.parse import unquote, urlparse

from presencesync.domain.value_objects import (
    ArtSource,
    Bytes,
    DirectUrl,
    LocalFile,
    TrackMetadata,
    parse_data_url,
)

logger = logging.getLogger(__name__)

DEFAULT_FILE_NAMES = ("cover", "folder", "front", "album", "art")
DEFAULT_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp")


class ArtSourceExtractor:
    """Turns TrackMetadata into an ArtSource."""

    def __init__(
        self,
        file_names: Sequence[str] = DEFAULT_FILE_NAMES,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        search_depth: int = 1,
    ) -> None:
        self.file_names = [name.lower() for name in file_names]
        self.extensions = [ext.lower().lstrip(".") for ext in extensions]
        self.search_depth = search_depth

    async def extract(self, metadata: TrackMetadata) -> ArtSource | None:
        art_url = (metadata.art_url or "").strip()

        if art_url.startswith(("http://", "https://")):
            logger.debug("Found direct HTTP(S) art URL: %s", art_url)
            return DirectUrl(art_url)

        if metadata.picture is not None:
            logger.debug("Using embedded picture (%d bytes)", len(metadata.picture.data))
            return Bytes(metadata.picture.data, metadata.picture.mime)

        if art_url:
            data_source = parse_data_url(art_url)
            if data_source is not None:
                logger.debug("Found base64 encoded %s art URL", data_source.mime)
                return data_source

            path = self._art_url_path(art_url)
            if path is not None and await asyncio.to_thread(path.is_file):
                logger.debug("Found local art file: %s", path)
                return LocalFile(path)

        media_path = metadata.local_path
        if media_path is not None and self.search_depth > 0:
            found = await asyncio.to_thread(self._search_sidecar, media_path)
            if found is not None:
                logger.debug("Found sidecar cover file: %s", found)
                return LocalFile(found)

        return None

    @staticmethod
    def _art_url_path(art_url: str) -> Path | None:
        parsed = urlparse(art_url)
        if parsed.scheme == "file":
            return Path(unquote(parsed.path))
        if parsed.scheme == "":
            return Path(art_url).expanduser()
        return None

    def _search_sidecar(self, media_path: Path) -> Path | None:
        """Breadth-first, shallowest match wins; within a level file_names order wins."""
        start = media_path if media_path.is_dir() else media_path.parent
        wanted = [f"{name}.{ext}" for name in self.file_names for ext in self.extensions]

        level = [start]
        for _ in range(self.search_depth):
            next_level: list[Path] = []
            for directory in level:
                files: dict[str, Path] = {}
                try:
                    with os.scandir(directory) as entries:
                        for entry in entries:
                            if entry.is_file():
                                files.setdefault(entry.name.lower(), Path(entry.path))
                            elif entry.is_dir(follow_symlinks=False):
                                next_level.append(Path(entry.path))
                except OSError as e:
                    logger.debug("Cannot scan %s for cover files: %s", directory, e)
                    continue
                for candidate in wanted:
                    if candidate in files:
                        return files[candidate]
            level = sorted(next_level)
        return None
