"""Domain exceptions."""

from typing import Any


class PresenceSyncError(Exception):
    """Base exception for all presencesync errors."""

    # Hey future me, message is stored as an attribute so handlers can log it without
    # parsing str(exception). Never raise this base directly, always pick a subclass so
    # the orchestrator can decide what is fatal and what is retried on the next tick.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class PlayerSourceError(PresenceSyncError):
    """A call into a media player failed.

    Recovered locally: the affected snapshot field becomes None (or Stopped for status).

    Example:
        raise PlayerSourceError("playerctl exited with 1", player="spotify", operation="position")
    """

    def __init__(
        self, message: str, player: str | None = None, operation: str | None = None
    ) -> None:
        super().__init__(message)
        self.player = player
        self.operation = operation


class ProviderError(PresenceSyncError):
    """A cover art provider could not produce a URL.

    The resolver logs it with the provider name and moves on to the next provider.

    Example:
        raise ProviderError("ImgBB returned no URL", provider="imgbb")
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class TransportError(PresenceSyncError):
    """The outbound presence session failed to connect, send or clear."""

    def __init__(
        self, message: str, player: str | None = None, operation: str | None = None
    ) -> None:
        super().__init__(message)
        self.player = player
        self.operation = operation


class TemplateError(PresenceSyncError):
    """A template failed to compile or to render.

    Compile errors surface at load/reload. Render errors only fail the update of
    the player being rendered.
    """

    def __init__(self, message: str, template: str | None = None) -> None:
        super().__init__(message)
        self.template = template


class CacheError(PresenceSyncError):
    """The artwork cache could not be read or written."""

    pass


class ConfigurationError(PresenceSyncError):
    """Configuration is missing, unreadable or invalid.

    Fatal on the initial load, logged and ignored on hot reload (the previous
    snapshot stays active).

    Example:
        raise ConfigurationError("interval must be positive")
    """

    pass


__all__ = [
    "PresenceSyncError",
    "PlayerSourceError",
    "ProviderError",
    "TransportError",
    "TemplateError",
    "CacheError",
    "ConfigurationError",
]
