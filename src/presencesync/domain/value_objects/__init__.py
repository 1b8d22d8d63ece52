"""Domain value objects."""

from presencesync.domain.value_objects.art_source import (
    ArtSource,
    Base64,
    Bytes,
    DirectUrl,
    LocalFile,
    parse_data_url,
)
from presencesync.domain.value_objects.track_metadata import EmbeddedPicture, TrackMetadata

__all__ = [
    "ArtSource",
    "Base64",
    "Bytes",
    "DirectUrl",
    "EmbeddedPicture",
    "LocalFile",
    "TrackMetadata",
    "parse_data_url",
]
