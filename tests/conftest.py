"""Shared fakes and fixtures.

Hey future me - the fakes implement the real ports (not MagicMock) so the engine is tested
against the same contracts the playerctl / Discord adapters implement.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from presencesync.domain.entities import ActivityPayload, PlayerIdentity
from presencesync.domain.exceptions import PlayerSourceError, TransportError
from presencesync.domain.ports import IPlayerHandle, IPlayerSource, IPresenceTransport


class FakePlayerHandle(IPlayerHandle):
    """Player with settable state; names in `failing` raise PlayerSourceError."""

    def __init__(
        self,
        identity: str = "Spotify",
        bus_name: str = "org.mpris.MediaPlayer2.spotify",
        unique_name: str = ":1.42",
        status: str = "Playing",
        position: float = 0.0,
        volume: float = 0.5,
        metadata: dict[str, Any] | None = None,
        failing: tuple[str, ...] = (),
    ) -> None:
        self.player_id = PlayerIdentity.create(identity, bus_name, unique_name)
        self.status_value = status
        self.position_value = position
        self.volume_value = volume
        self.metadata_value = metadata if metadata is not None else {
            "mpris:trackid": "/track/1",
            "xesam:title": "Song",
            "xesam:artist": ["Artist"],
        }
        self.failing = set(failing)

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise PlayerSourceError(
                f"{operation} failed", player=self.player_id.identity, operation=operation
            )

    def identity(self) -> PlayerIdentity:
        return self.player_id

    async def status(self) -> str:
        self._check("status")
        return self.status_value

    async def position(self) -> float:
        self._check("position")
        return self.position_value

    async def volume(self) -> float:
        self._check("volume")
        return self.volume_value

    async def metadata(self) -> dict[str, Any]:
        self._check("metadata")
        return dict(self.metadata_value)


class FakePlayerSource(IPlayerSource):
    def __init__(self, players: list[FakePlayerHandle] | None = None) -> None:
        self.players = players or []
        self.closed = False

    async def list_players(self) -> list[IPlayerHandle]:
        return list(self.players)

    async def close(self) -> None:
        self.closed = True


class FakeTransport(IPresenceTransport):
    """Records every call; fail_* flags make the next calls raise TransportError."""

    def __init__(self, app_id: str = "app") -> None:
        self.app_id = app_id
        self.calls: list[str] = []
        self.sent: list[ActivityPayload] = []
        self.fail_connect = False
        self.fail_send = False
        self.fail_reconnect = False
        self.closed = False

    async def connect(self) -> None:
        self.calls.append("connect")
        if self.fail_connect:
            raise TransportError("connect refused", operation="connect")

    async def send_activity(self, payload: ActivityPayload) -> None:
        self.calls.append("send")
        if self.fail_send:
            raise TransportError("broken pipe", operation="send")
        self.sent.append(payload)

    async def clear_activity(self) -> None:
        self.calls.append("clear")
        if self.fail_send:
            raise TransportError("broken pipe", operation="clear")

    async def reconnect(self) -> None:
        self.calls.append("reconnect")
        if self.fail_reconnect:
            raise TransportError("still down", operation="reconnect")

    async def close(self) -> None:
        self.calls.append("close")
        self.closed = True


@pytest.fixture
def player_id() -> PlayerIdentity:
    return PlayerIdentity.create("Spotify", "org.mpris.MediaPlayer2.spotify", ":1.42")


@pytest.fixture
def transports() -> list[FakeTransport]:
    """Every transport the factory below has created, in order."""
    return []


@pytest.fixture
def transport_factory(transports: list[FakeTransport]) -> Callable[[str], FakeTransport]:
    def factory(app_id: str) -> FakeTransport:
        transport = FakeTransport(app_id)
        transports.append(transport)
        return transport

    return factory


@pytest.fixture
def eventually() -> Callable[[Callable[[], bool], float], Awaitable[None]]:
    """Await until condition() is true, fail after `timeout` seconds."""

    async def wait(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return wait


@pytest.fixture
def make_player() -> type[FakePlayerHandle]:
    return FakePlayerHandle


@pytest.fixture
def make_source() -> type[FakePlayerSource]:
    return FakePlayerSource
