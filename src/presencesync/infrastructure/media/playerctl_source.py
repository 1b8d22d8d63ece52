"""playerctl based player source.

Hey future me - instead of speaking D-Bus ourselves we shell out to `playerctl`, which every
desktop that has MPRIS players ships anyway. One short-lived subprocess per call:

    playerctl -l                       → one player name per line ("spotify", "vlc",
                                         "firefox.instance_1_84")
    playerctl -p <name> status         → "Playing" / "Paused" / "Stopped"
    playerctl -p <name> position       → seconds as float
    playerctl -p <name> volume         → 0.0-1.0 as float
    playerctl -p <name> metadata       → "<name> <key> <value>" lines, multi-value keys
                                         (xesam:artist) repeat the line

"No players found" is exit code 1 on stderr, that's an empty list and not an error.
Every other failure (playerctl missing, timeout, non-zero exit) becomes PlayerSourceError
so the state tracker can treat that one field as unknown.

playerctl doesn't expose the MPRIS Identity property, so the player name (without the
instance suffix) doubles as identity: "firefox.instance_1_84" → identity "firefox",
bus name "org.mpris.MediaPlayer2.firefox", unique name "firefox.instance_1_84".
"""

import asyncio
import logging
from typing import Any

from presencesync.domain.entities import PlayerIdentity, canonical_bus_name
from presencesync.domain.exceptions import PlayerSourceError
from presencesync.domain.ports import IPlayerHandle, IPlayerSource

logger = logging.getLogger(__name__)

BUS_PREFIX = "org.mpris.MediaPlayer2."
NO_PLAYERS = "No players found"


async def run_playerctl(
    *args: str, executable: str = "playerctl", timeout: float = 5.0, player: str | None = None
) -> str:
    """Run playerctl and return its stdout.

    Raises:
        PlayerSourceError: playerctl missing, timed out or exited non-zero
    """
    operation = args[-1] if args else None
    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise PlayerSourceError(
            f"Cannot run {executable}: {e}", player=player, operation=operation
        ) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError as e:
        process.kill()
        await process.wait()
        raise PlayerSourceError(
            f"{executable} {' '.join(args)} timed out after {timeout}s",
            player=player,
            operation=operation,
        ) from e

    if process.returncode != 0:
        message = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
        raise PlayerSourceError(message, player=player, operation=operation)
    return stdout.decode(errors="replace")


def parse_metadata(output: str) -> dict[str, Any]:
    """Parse `playerctl metadata` output into a key → value (or list of values) map."""
    result: dict[str, Any] = {}
    for line in output.splitlines():
        parts = line.split(None, 2)
        if len(parts) < 2:
            continue
        key = parts[1]
        value = parts[2].strip() if len(parts) == 3 else ""
        if key in result:
            existing = result[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                result[key] = [existing, value]
        else:
            result[key] = value
    return result


def identity_from_name(name: str) -> PlayerIdentity:
    bus_name = canonical_bus_name(BUS_PREFIX + name)
    return PlayerIdentity.create(
        identity=bus_name[len(BUS_PREFIX) :], bus_name=bus_name, unique_name=name
    )


class PlayerctlHandle(IPlayerHandle):
    """One player as seen through `playerctl -p <name>`."""

    def __init__(self, name: str, executable: str = "playerctl", timeout: float = 5.0) -> None:
        self._name = name
        self._executable = executable
        self._timeout = timeout
        self._identity = identity_from_name(name)

    def identity(self) -> PlayerIdentity:
        return self._identity

    async def _call(self, command: str) -> str:
        return await run_playerctl(
            "-p",
            self._name,
            command,
            executable=self._executable,
            timeout=self._timeout,
            player=self._identity.identity,
        )

    async def _number(self, command: str) -> float:
        output = (await self._call(command)).strip()
        try:
            return float(output)
        except ValueError as e:
            raise PlayerSourceError(
                f"Unexpected {command} output {output!r}",
                player=self._identity.identity,
                operation=command,
            ) from e

    async def status(self) -> str:
        return (await self._call("status")).strip()

    async def position(self) -> float:
        return await self._number("position")

    async def volume(self) -> float:
        return await self._number("volume")

    async def metadata(self) -> dict[str, Any]:
        return parse_metadata(await self._call("metadata"))

    def __repr__(self) -> str:
        return f"PlayerctlHandle({self._name!r})"


class PlayerctlSource(IPlayerSource):
    """Lists MPRIS players with `playerctl -l`."""

    def __init__(self, executable: str = "playerctl", timeout: float = 5.0) -> None:
        self._executable = executable
        self._timeout = timeout

    async def list_players(self) -> list[IPlayerHandle]:
        try:
            output = await run_playerctl("-l", executable=self._executable, timeout=self._timeout)
        except PlayerSourceError as e:
            if NO_PLAYERS in e.message:
                return []
            raise
        names = [line.strip() for line in output.splitlines() if line.strip()]
        return [PlayerctlHandle(name, self._executable, self._timeout) for name in names]
