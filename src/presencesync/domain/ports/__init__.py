"""Domain ports (interfaces) for dependency inversion.

Hey future me - the engine only ever talks to these ABCs. Concrete adapters live in
infrastructure/ (playerctl, Discord IPC, Jinja2, MusicBrainz/ImgBB/Catbox) and get wired
together in infrastructure/lifecycle.py. Tests swap them for fakes/AsyncMocks.

FLOW:
    EventOrchestrator
        ├─► IPlayerSource.list_players() → [IPlayerHandle]
        ├─► PresenceSessionManager
        │       ├─► ITemplateRenderer.render(name, context)
        │       ├─► CoverArtResolver → [ICoverArtProvider, ...]
        │       └─► IPresenceTransport (one per player)
        └─► ConfigStore.subscribe()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from presencesync.domain.entities import ActivityPayload, PlayerIdentity
from presencesync.domain.value_objects import ArtSource, TrackMetadata


class IPlayerHandle(ABC):
    """One running media player.

    Every call is independently fallible and raises PlayerSourceError.
    """

    @abstractmethod
    def identity(self) -> PlayerIdentity:
        pass

    @abstractmethod
    async def status(self) -> str:
        """Raw playback status string ("Playing", "Paused", "Stopped")."""
        pass

    @abstractmethod
    async def position(self) -> float:
        """Playback position in seconds."""
        pass

    @abstractmethod
    async def volume(self) -> float:
        """Volume as 0.0-1.0 fraction."""
        pass

    @abstractmethod
    async def metadata(self) -> dict[str, Any]:
        """Raw player metadata map keyed by xesam:/mpris: names."""
        pass


class IPlayerSource(ABC):
    """Enumerates the currently running media players."""

    @abstractmethod
    async def list_players(self) -> list[IPlayerHandle]:
        pass

    async def close(self) -> None:  # noqa: B027
        """Release resources. Default: nothing to release."""


class IPresenceTransport(ABC):
    """Outbound presence session for ONE player (one app id, one socket)."""

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def send_activity(self, payload: ActivityPayload) -> None:
        pass

    @abstractmethod
    async def clear_activity(self) -> None:
        pass

    @abstractmethod
    async def reconnect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class ITagReader(ABC):
    """Reads tags, audio properties and embedded art from a local media file."""

    @abstractmethod
    async def read(self, path: Path) -> TrackMetadata | None:
        """None when the file is missing or not a readable audio/video container."""
        pass


class ITemplateRenderer(ABC):
    """Renders named templates (details/state/large_text/small_text)."""

    @abstractmethod
    def render(self, name: str, data: dict[str, Any]) -> str:
        """Render template `name`; raises TemplateError on failure."""
        pass


@dataclass(frozen=True)
class CoverResult:
    """URL a provider produced for a track's artwork.

    expiration (seconds) is set by hosts that delete uploads after a while
    (ImgBB with expiration, Litterbox). The resolver caps the cache TTL with it.
    """

    url: str
    provider: str
    expiration: int | None = None


class ICoverArtProvider(ABC):
    """Three-method capability contract every cover art provider implements."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def supports(self, source: ArtSource | None) -> bool:
        """Whether process() can do anything with this source (None = no local art)."""
        pass

    @abstractmethod
    async def process(
        self, source: ArtSource | None, metadata: TrackMetadata
    ) -> CoverResult | None:
        """Produce a public URL, None when nothing was found.

        Raises ProviderError (or lets httpx errors escape) on failure; the resolver
        treats both as "try the next provider".
        """
        pass

    async def close(self) -> None:  # noqa: B027
        """Release HTTP clients. Default: nothing to release."""


__all__ = [
    "CoverResult",
    "ICoverArtProvider",
    "IPlayerHandle",
    "IPlayerSource",
    "IPresenceTransport",
    "ITagReader",
    "ITemplateRenderer",
]
