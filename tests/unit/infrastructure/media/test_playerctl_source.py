"""Tests for the playerctl player source."""

import stat
from pathlib import Path

import pytest

from presencesync.domain.exceptions import PlayerSourceError
from presencesync.infrastructure.media.playerctl_source import (
    PlayerctlHandle,
    PlayerctlSource,
    identity_from_name,
    parse_metadata,
    run_playerctl,
)

METADATA_OUTPUT = """\
spotify mpris:trackid         spotify:track:4uLU6hMCjMI75M1A2tKUQC
spotify mpris:length          215000000
spotify xesam:title           Never Gonna Give You Up
spotify xesam:artist          Rick Astley
spotify xesam:artist          Someone Else
spotify xesam:album           Whenever You Need Somebody
spotify xesam:comment
"""


def fake_playerctl(tmp_path: Path, body: str) -> str:
    """Write an executable shell script standing in for playerctl."""
    script = tmp_path / "playerctl"
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script)


class TestParseMetadata:
    """Test `playerctl metadata` parsing."""

    def test_parse(self) -> None:
        """Test keys, values with spaces and repeated keys."""
        metadata = parse_metadata(METADATA_OUTPUT)

        assert metadata["xesam:title"] == "Never Gonna Give You Up"
        assert metadata["mpris:length"] == "215000000"
        assert metadata["xesam:artist"] == ["Rick Astley", "Someone Else"]
        assert metadata["xesam:comment"] == ""

    def test_empty_output(self) -> None:
        """Test no output means no metadata."""
        assert parse_metadata("") == {}
        assert parse_metadata("\n\n") == {}


class TestIdentityFromName:
    """Test player name to identity mapping."""

    def test_plain_name(self) -> None:
        """Test a plain name maps onto the MPRIS bus name."""
        pid = identity_from_name("spotify")
        assert pid.identity == "spotify"
        assert pid.bus_name == "org.mpris.MediaPlayer2.spotify"
        assert pid.unique_name == "spotify"

    def test_instance_name(self) -> None:
        """Test instance suffixes are dropped from identity but kept as unique name."""
        pid = identity_from_name("firefox.instance_1_84")
        assert pid.identity == "firefox"
        assert pid.bus_name == "org.mpris.MediaPlayer2.firefox"
        assert pid.unique_name == "firefox.instance_1_84"

    def test_two_instances_differ(self) -> None:
        """Test two windows of one player are separate identities."""
        assert identity_from_name("vlc.instance1") != identity_from_name("vlc.instance2")


class TestRunPlayerctl:
    """Test the subprocess wrapper."""

    async def test_stdout_returned(self, tmp_path: Path) -> None:
        """Test stdout of a successful run is returned."""
        executable = fake_playerctl(tmp_path, 'printf "%s\\n" "$*"\n')
        assert await run_playerctl("-p", "vlc", "status", executable=executable) == (
            "-p vlc status\n"
        )

    async def test_missing_executable(self, tmp_path: Path) -> None:
        """Test a missing playerctl raises PlayerSourceError."""
        with pytest.raises(PlayerSourceError, match="Cannot run"):
            await run_playerctl("-l", executable=str(tmp_path / "missing"))

    async def test_non_zero_exit(self, tmp_path: Path) -> None:
        """Test stderr becomes the error message on failure."""
        executable = fake_playerctl(tmp_path, 'echo "Could not connect" >&2\nexit 1\n')
        with pytest.raises(PlayerSourceError, match="Could not connect") as exc_info:
            await run_playerctl("-p", "vlc", "position", executable=executable, player="vlc")
        assert exc_info.value.operation == "position"
        assert exc_info.value.player == "vlc"

    async def test_timeout(self, tmp_path: Path) -> None:
        """Test a hanging playerctl is killed."""
        executable = fake_playerctl(tmp_path, "exec sleep 5\n")
        with pytest.raises(PlayerSourceError, match="timed out"):
            await run_playerctl("status", executable=executable, timeout=0.2)


class TestPlayerctlSource:
    """Test listing players and per-player calls."""

    async def test_list_players(self, tmp_path: Path) -> None:
        """Test every listed name becomes a handle."""
        executable = fake_playerctl(tmp_path, 'printf "spotify\\nvlc.instance42\\n"\n')
        players = await PlayerctlSource(executable).list_players()
        assert [p.identity().identity for p in players] == ["spotify", "vlc"]

    async def test_no_players(self, tmp_path: Path) -> None:
        """Test "No players found" is an empty list."""
        executable = fake_playerctl(tmp_path, 'echo "No players found" >&2\nexit 1\n')
        assert await PlayerctlSource(executable).list_players() == []

    async def test_other_errors_raise(self, tmp_path: Path) -> None:
        """Test other listing failures propagate."""
        executable = fake_playerctl(tmp_path, 'echo "dbus error" >&2\nexit 1\n')
        with pytest.raises(PlayerSourceError):
            await PlayerctlSource(executable).list_players()

    async def test_handle_calls(self, tmp_path: Path) -> None:
        """Test status, position, volume and metadata go through `-p <name>`."""
        executable = fake_playerctl(
            tmp_path,
            'case "$3" in\n'
            "  status) echo Playing ;;\n"
            "  position) echo 42.500000 ;;\n"
            "  volume) echo 0.650000 ;;\n"
            '  metadata) echo "$2 xesam:title Song" ;;\n'
            "esac\n",
        )
        handle = PlayerctlHandle("spotify", executable)

        assert await handle.status() == "Playing"
        assert await handle.position() == 42.5
        assert await handle.volume() == 0.65
        assert await handle.metadata() == {"xesam:title": "Song"}

    async def test_unparsable_number(self, tmp_path: Path) -> None:
        """Test garbage position output raises PlayerSourceError."""
        executable = fake_playerctl(tmp_path, "echo nope\n")
        with pytest.raises(PlayerSourceError, match="Unexpected position output"):
            await PlayerctlHandle("spotify", executable).position()
