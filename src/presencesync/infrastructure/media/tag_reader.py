"""Local file tag reader using mutagen.

Hey future me - mutagen has two faces: File(path, easy=True) gives us normalized text keys
("albumartist", "tracknumber") across ID3/MP4/Vorbis, but hides pictures. The raw
File(path) gives us the pictures in a different shape per container:

    FLAC         → audio.pictures                      (Picture, .type 3 = front cover)
    MP3 (ID3)    → audio.tags.getall("APIC")           (APIC, .type 3 = front cover)
    MP4/M4A      → audio.tags["covr"]                  (MP4Cover, bytes subclass)
    Ogg/Opus     → "metadata_block_picture" comment    (base64 of a FLAC Picture block)

So we open the file twice, both times in a worker thread. Local files are small and
cached by the OS after the first read.
"""

import asyncio
import base64
import binascii
import logging
from pathlib import Path
from typing import Any

import mutagen
from mutagen.flac import Picture

from presencesync.domain.ports import ITagReader
from presencesync.domain.value_objects import EmbeddedPicture, TrackMetadata

logger = logging.getLogger(__name__)

FRONT_COVER = 3

# TrackMetadata field → candidate tag keys (first non-empty wins)
_TEXT_TAGS: dict[str, tuple[str, ...]] = {
    "title": ("title",),
    "album": ("album",),
    "initial_key": ("initialkey", "key"),
    "bpm": ("bpm",),
    "mood": ("mood",),
    "isrc": ("isrc",),
    "barcode": ("barcode",),
    "catalog_number": ("catalognumber",),
    "label": ("label", "organization", "publisher"),
    "musicbrainz_track_id": ("musicbrainz_trackid",),
    "musicbrainz_album_id": ("musicbrainz_albumid",),
    "musicbrainz_artist_id": ("musicbrainz_artistid",),
    "musicbrainz_album_artist_id": ("musicbrainz_albumartistid",),
    "musicbrainz_release_group_id": ("musicbrainz_releasegroupid",),
}

_LIST_TAGS: dict[str, tuple[str, ...]] = {
    "artists": ("artist",),
    "album_artists": ("albumartist", "album artist"),
    "genres": ("genre",),
}


def _values(tags: Any, keys: tuple[str, ...]) -> list[str]:
    for key in keys:
        try:
            raw = tags.get(key)
        except (KeyError, ValueError):
            raw = None
        if not raw:
            continue
        items = raw if isinstance(raw, list) else [raw]
        values = [str(item).strip() for item in items if str(item).strip()]
        if values:
            return values
    return []


def _number_pair(value: str | None) -> tuple[int | None, int | None]:
    """Parse "3/12" into (3, 12) and "3" into (3, None)."""
    if not value:
        return None, None
    head, _, tail = value.partition("/")
    try:
        number = int(head.strip())
    except ValueError:
        return None, None
    try:
        total = int(tail.strip()) if tail.strip() else None
    except ValueError:
        total = None
    return number, total


def _first_int(tags: Any, keys: tuple[str, ...]) -> int | None:
    values = _values(tags, keys)
    return _number_pair(values[0])[0] if values else None


def tags_to_fields(tags: Any) -> dict[str, Any]:
    """Map an easy-mode tag dict onto TrackMetadata field names."""
    fields: dict[str, Any] = {}
    for name, keys in _TEXT_TAGS.items():
        values = _values(tags, keys)
        if values:
            fields[name] = values[0]
    for name, keys in _LIST_TAGS.items():
        values = _values(tags, keys)
        if values:
            fields[name] = tuple(values)

    track = _values(tags, ("tracknumber",))
    number, total = _number_pair(track[0] if track else None)
    fields["track_number"] = number
    fields["track_total"] = total or _first_int(tags, ("tracktotal", "totaltracks"))

    disc = _values(tags, ("discnumber",))
    number, total = _number_pair(disc[0] if disc else None)
    fields["disc_number"] = number
    fields["disc_total"] = total or _first_int(tags, ("disctotal", "totaldiscs"))

    date = _values(tags, ("date", "year", "originaldate"))
    if date and date[0][:4].isdigit():
        fields["year"] = date[0][:4]
    return {key: value for key, value in fields.items() if value is not None}


def info_to_fields(info: Any) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    length = getattr(info, "length", None)
    if length:
        fields["length_seconds"] = float(length)
    bitrate = getattr(info, "bitrate", None)
    if bitrate:
        fields["bitrate_kbps"] = int(bitrate) // 1000
    sample_rate = getattr(info, "sample_rate", None)
    if sample_rate:
        fields["sample_rate_hz"] = int(sample_rate)
    bit_depth = getattr(info, "bits_per_sample", None)
    if bit_depth:
        fields["bit_depth"] = int(bit_depth)
    channels = getattr(info, "channels", None)
    if channels:
        fields["channels"] = int(channels)
    return fields


def _pick(pictures: list[tuple[int, bytes, str]]) -> EmbeddedPicture | None:
    if not pictures:
        return None
    front = [p for p in pictures if p[0] == FRONT_COVER]
    _type, data, mime = (front or pictures)[0]
    return EmbeddedPicture(data=data, mime=mime or "image/jpeg")


def extract_picture(audio: Any) -> EmbeddedPicture | None:
    """Embedded cover of a raw (non-easy) mutagen file, front cover preferred."""
    found: list[tuple[int, bytes, str]] = []

    for picture in getattr(audio, "pictures", None) or []:
        found.append((picture.type, picture.data, picture.mime))

    tags = getattr(audio, "tags", None)
    if tags is not None:
        if hasattr(tags, "getall"):
            for frame in tags.getall("APIC"):
                found.append((frame.type, frame.data, frame.mime))
        covers = tags.get("covr") if hasattr(tags, "get") else None
        for cover in covers or []:
            mime = "image/png" if getattr(cover, "imageformat", None) == 14 else "image/jpeg"
            found.append((FRONT_COVER, bytes(cover), mime))
        blocks = tags.get("metadata_block_picture") if hasattr(tags, "get") else None
        for block in blocks or []:
            try:
                picture = Picture(base64.b64decode(block))
            except (binascii.Error, ValueError, mutagen.MutagenError):
                continue
            found.append((picture.type, picture.data, picture.mime))

    return _pick(found)


class MutagenTagReader(ITagReader):
    """Reads tags, stream info and embedded pictures with mutagen."""

    def __init__(self, read_pictures: bool = True) -> None:
        self._read_pictures = read_pictures

    def _read_sync(self, path: Path) -> TrackMetadata | None:
        if not path.is_file():
            return None
        easy = mutagen.File(path, easy=True)  # type: ignore[attr-defined]
        if easy is None:
            logger.debug("mutagen does not recognize %s", path.name)
            return None

        fields: dict[str, Any] = {}
        if easy.tags is not None:
            fields.update(tags_to_fields(easy.tags))
        fields.update(info_to_fields(easy.info))

        if self._read_pictures:
            raw = mutagen.File(path)  # type: ignore[attr-defined]
            picture = extract_picture(raw) if raw is not None else None
            if picture is not None:
                fields["picture"] = picture
        return TrackMetadata(**fields)

    async def read(self, path: Path) -> TrackMetadata | None:
        try:
            return await asyncio.to_thread(self._read_sync, path)
        except (mutagen.MutagenError, OSError) as e:
            logger.debug("Reading tags from %s failed: %s", path, e)
            return None
