"""Metadata Service - player metadata map + local file tags → TrackMetadata.

Hey future me - players only expose what they feel like (mpv: title + url, Spotify: lots,
browsers: title + artUrl). For local files we read the tags ourselves to fill the gaps
(album artist, track totals, MusicBrainz ids, bitrate, embedded cover). Player values
always win over file tags.
"""

import logging
import mimetypes
from collections.abc import Iterable
from typing import Any
from urllib.parse import urlparse

from presencesync.domain.ports import ITagReader
from presencesync.domain.value_objects import TrackMetadata

logger = logging.getLogger(__name__)

# xesam key → TrackMetadata field, plain strings
_STRING_KEYS = {
    "xesam:title": "title",
    "xesam:album": "album",
    "mpris:trackid": "track_id",
    "xesam:url": "url",
    "mpris:artUrl": "art_url",
    "xesam:initialKey": "initial_key",
    "xesam:bpm": "bpm",
    "xesam:mood": "mood",
    "xesam:isrc": "isrc",
    "xesam:barcode": "barcode",
    "xesam:catalogNumber": "catalog_number",
    "xesam:label": "label",
    "xesam:musicbrainzTrackID": "musicbrainz_track_id",
    "xesam:musicbrainzAlbumID": "musicbrainz_album_id",
    "xesam:musicbrainzArtistID": "musicbrainz_artist_id",
    "xesam:musicbrainzAlbumArtistID": "musicbrainz_album_artist_id",
    "xesam:musicbrainzReleaseGroupID": "musicbrainz_release_group_id",
}

_INT_KEYS = {
    "xesam:trackNumber": "track_number",
    "xesam:trackTotal": "track_total",
    "xesam:discNumber": "disc_number",
    "xesam:discTotal": "disc_total",
}

_LIST_KEYS = {
    "xesam:artist": "artists",
    "xesam:albumArtist": "album_artists",
    "xesam:genre": "genres",
}


def _as_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    items: Iterable[Any] = [value] if isinstance(value, str) else value
    return tuple(s for s in (str(item).strip() for item in items) if s)


def _as_str(value: Any) -> str | None:
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_int(value: Any) -> int | None:
    """Parse "3", 3 or "3/12" (track number with total) into 3."""
    text = _as_str(value)
    if text is None:
        return None
    try:
        return int(text.split("/", 1)[0])
    except ValueError:
        return None


def metadata_from_player(raw: dict[str, Any]) -> TrackMetadata:
    """Normalize a raw player metadata map."""
    fields: dict[str, Any] = {}
    for key, name in _STRING_KEYS.items():
        value = _as_str(raw.get(key))
        if value is not None:
            fields[name] = value
    for key, name in _INT_KEYS.items():
        number = parse_int(raw.get(key))
        if number is not None:
            fields[name] = number
    for key, name in _LIST_KEYS.items():
        items = _as_list(raw.get(key))
        if items:
            fields[name] = items

    length = raw.get("mpris:length")
    if length is not None:
        try:
            # microseconds on the wire
            seconds = int(float(length)) / 1_000_000
        except (TypeError, ValueError, OverflowError):
            seconds = 0
        if seconds > 0:
            fields["length_seconds"] = seconds

    year = _as_str(raw.get("xesam:year")) or _as_str(raw.get("xesam:contentCreated"))
    if year and year[:4].isdigit():
        fields["year"] = year[:4]

    return TrackMetadata(**fields)


def guess_content_type(metadata: TrackMetadata) -> str | None:
    """Best-effort mime type of the playing media ("audio/flac", "video/mp4", ...)."""
    if metadata.url:
        guessed, _ = mimetypes.guess_type(urlparse(metadata.url).path)
        if guessed:
            return guessed
    track_id = (metadata.track_id or "").lower()
    if "video" in track_id:
        return "video/unknown"
    if "audio" in track_id:
        return "audio/unknown"
    if metadata.artists:
        return "audio/unknown"
    return None


class MetadataService:
    """Builds the TrackMetadata used for templates and cover art."""

    def __init__(self, tag_reader: ITagReader | None = None) -> None:
        self._tag_reader = tag_reader

    async def load(self, raw: dict[str, Any]) -> TrackMetadata:
        metadata = metadata_from_player(raw)
        path = metadata.local_path
        if self._tag_reader is None or path is None:
            return metadata

        tags = await self._tag_reader.read(path)
        if tags is None:
            return metadata
        logger.debug("Enriched %r with tags from %s", metadata.title, path.name)
        return metadata.fill_gaps(tags)
