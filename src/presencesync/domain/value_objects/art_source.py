"""ArtSource value objects - where a track's artwork physically lives.

Hey future me - this is the tagged union the whole cover pipeline talks in!
The extractor produces ONE of these, providers declare which kinds they can handle
via supports(), and nothing here is ever persisted (only resolved URLs are cached).

    DirectUrl  → already a public http(s) URL, no provider needed
    LocalFile  → file on disk (file:// art URL or sidecar cover.jpg)
    Base64     → data:image/...;base64,... art URL
    Bytes      → embedded picture from the audio file tags
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class DirectUrl:
    url: str

    @property
    def kind(self) -> str:
        return "url"


@dataclass(frozen=True)
class LocalFile:
    path: Path

    @property
    def kind(self) -> str:
        return "file"


@dataclass(frozen=True)
class Base64:
    data: str
    mime: str = "image/jpeg"

    @property
    def kind(self) -> str:
        return "base64"


@dataclass(frozen=True)
class Bytes:
    data: bytes
    mime: str = "image/jpeg"

    @property
    def kind(self) -> str:
        return "bytes"

    def __repr__(self) -> str:
        # raw picture data in logs is useless and huge
        return f"Bytes(<{len(self.data)} bytes>, mime={self.mime!r})"


ArtSource = DirectUrl | LocalFile | Base64 | Bytes


def parse_data_url(url: str) -> Base64 | None:
    """Parse a data:image/...;base64, URL into a Base64 source."""
    if not url.startswith("data:image/"):
        return None
    header, sep, payload = url.partition(",")
    if not sep or ";base64" not in header:
        return None
    mime = header[len("data:") :].split(";", 1)[0]
    return Base64(data=payload.strip(), mime=mime)
