"""TrackMetadata value object.

Hey future me - TrackMetadata is built from the player's metadata map first and then
enriched with tags read from the local media file. Player values ALWAYS win, file tags
only fill gaps (see fill_gaps). Keep it immutable so a cached snapshot can be
re-dispatched after a config reload without anybody mutating it halfway.
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from urllib.parse import unquote, urlparse


@dataclass(frozen=True)
class EmbeddedPicture:
    data: bytes
    mime: str = "image/jpeg"

    def __repr__(self) -> str:
        return f"EmbeddedPicture(<{len(self.data)} bytes>, mime={self.mime!r})"


@dataclass(frozen=True)
class TrackMetadata:
    """Normalized metadata of the track a player is currently on."""

    title: str | None = None
    artists: tuple[str, ...] = ()
    album: str | None = None
    album_artists: tuple[str, ...] = ()
    track_id: str | None = None
    url: str | None = None
    art_url: str | None = None
    length_seconds: float | None = None
    track_number: int | None = None
    track_total: int | None = None
    disc_number: int | None = None
    disc_total: int | None = None
    genres: tuple[str, ...] = ()
    year: str | None = None

    initial_key: str | None = None
    bpm: str | None = None
    mood: str | None = None
    isrc: str | None = None
    barcode: str | None = None
    catalog_number: str | None = None
    label: str | None = None
    musicbrainz_track_id: str | None = None
    musicbrainz_album_id: str | None = None
    musicbrainz_artist_id: str | None = None
    musicbrainz_album_artist_id: str | None = None
    musicbrainz_release_group_id: str | None = None

    bitrate_kbps: int | None = None
    sample_rate_hz: int | None = None
    bit_depth: int | None = None
    channels: int | None = None

    picture: EmbeddedPicture | None = field(default=None, compare=False)

    @property
    def local_path(self) -> Path | None:
        """Filesystem path of the media file when the URL is file:// (or a bare path)."""
        if not self.url:
            return None
        parsed = urlparse(self.url)
        if parsed.scheme == "file":
            return Path(unquote(parsed.path))
        if parsed.scheme == "" and self.url.startswith("/"):
            return Path(self.url)
        return None

    @property
    def is_streaming(self) -> bool:
        """True for web media (browsers, radio streams), i.e. http(s) media URLs."""
        return bool(self.url) and urlparse(self.url).scheme in ("http", "https")

    def fill_gaps(self, other: "TrackMetadata") -> "TrackMetadata":
        """Return a copy where every empty field is taken from `other`."""
        changes = {}
        for f in fields(self):
            mine = getattr(self, f.name)
            if mine is None or mine == ():
                theirs = getattr(other, f.name)
                if theirs is not None and theirs != ():
                    changes[f.name] = theirs
        return replace(self, **changes) if changes else self
