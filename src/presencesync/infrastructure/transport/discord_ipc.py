"""Discord Rich Presence over the local IPC socket.

Hey future me - the Discord client listens on a Unix socket `discord-ipc-{0..9}` inside the
runtime dir (Flatpak and Snap builds hide it one level deeper). Wire format per frame:

    ┌──────────┬───────────┬──────────────────────┐
    │ op (u32) │ len (u32) │ JSON payload (UTF-8) │   little endian header
    └──────────┴───────────┴──────────────────────┘

    op 0 HANDSHAKE  {"v": 1, "client_id": "<app id>"}  → op 1 READY dispatch
    op 1 FRAME      {"cmd": "SET_ACTIVITY", "args": {"pid", "activity"}, "nonce"}
    op 2 CLOSE      sent by either side, payload carries code + message
    op 3/4 PING/PONG

Every presence session owns ONE socket with ONE app id; Discord shows one activity per
connection, which is how two players end up as two activities.
"""

import asyncio
import json
import logging
import os
import struct
import uuid
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from presencesync.domain.entities import ActivityPayload
from presencesync.domain.exceptions import TransportError
from presencesync.domain.ports import IPresenceTransport

logger = logging.getLogger(__name__)

OP_HANDSHAKE = 0
OP_FRAME = 1
OP_CLOSE = 2
OP_PING = 3
OP_PONG = 4

HEADER = struct.Struct("<II")
IPC_SLOTS = 10
# relative to the runtime dir, "" is the plain desktop client
_SOCKET_SUBDIRS = (
    "",
    "app/com.discordapp.Discord",
    "snap.discord",
    ".flatpak/dev.vencord.Vesktop/xdg-run",
)


def candidate_socket_paths() -> list[Path]:
    """All places a Discord IPC socket may live, in probing order."""
    bases: list[Path] = []
    for var in ("XDG_RUNTIME_DIR", "TMPDIR", "TMP", "TEMP"):
        value = os.environ.get(var)
        if value and Path(value) not in bases:
            bases.append(Path(value))
    if Path("/tmp") not in bases:
        bases.append(Path("/tmp"))

    paths: list[Path] = []
    for slot in range(IPC_SLOTS):
        for base in bases:
            for subdir in _SOCKET_SUBDIRS:
                paths.append(base / subdir / f"discord-ipc-{slot}")
    return paths


def encode_frame(op: int, payload: dict[str, Any]) -> bytes:
    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return HEADER.pack(op, len(body)) + body


class DiscordIpcTransport(IPresenceTransport):
    """One IPC connection to the local Discord client for one app id."""

    def __init__(
        self,
        app_id: str,
        socket_paths: Sequence[Path] | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.app_id = app_id
        self._socket_paths = socket_paths
        self._timeout = timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._lock = asyncio.Lock()
        self.socket_path: Path | None = None

    @property
    def connected(self) -> bool:
        return self._writer is not None

    # -------------------------------------------------------------------------
    # IPresenceTransport
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        if self.connected:
            return
        paths = (
            list(self._socket_paths)
            if self._socket_paths is not None
            else candidate_socket_paths()
        )
        last_error: Exception | None = None
        for path in paths:
            if not path.exists():
                continue
            try:
                await self._open(path)
                logger.debug("Connected to Discord IPC at %s (app id %s)", path, self.app_id)
                return
            except (
                OSError, TimeoutError, asyncio.IncompleteReadError, ValueError, TransportError
            ) as e:
                last_error = e
                logger.debug("Discord IPC socket %s refused: %s", path, e)
                await self._drop()
        raise TransportError(
            "No Discord IPC socket accepted the connection (is Discord running?)",
            operation="connect",
        ) from last_error

    async def send_activity(self, payload: ActivityPayload) -> None:
        await self._command("SET_ACTIVITY", {"pid": os.getpid(), "activity": payload.to_discord()})

    async def clear_activity(self) -> None:
        await self._command("SET_ACTIVITY", {"pid": os.getpid(), "activity": None})

    async def reconnect(self) -> None:
        await self._drop()
        await self.connect()

    async def close(self) -> None:
        if self._writer is not None:
            try:
                self._writer.write(encode_frame(OP_CLOSE, {}))
                await asyncio.wait_for(self._writer.drain(), self._timeout)
            except (OSError, TimeoutError) as e:
                logger.debug("Sending close frame failed: %s", e)
        await self._drop()

    # -------------------------------------------------------------------------
    # Wire protocol
    # -------------------------------------------------------------------------

    async def _open(self, path: Path) -> None:
        self._reader, self._writer = await asyncio.wait_for(
            asyncio.open_unix_connection(str(path)), self._timeout
        )
        await self._write(OP_HANDSHAKE, {"v": 1, "client_id": self.app_id})
        op, data = await self._read()
        if op == OP_CLOSE:
            raise TransportError(
                f"Discord rejected handshake: {data.get('message', data)}", operation="handshake"
            )
        if data.get("evt") != "READY":
            raise TransportError(f"Unexpected handshake reply: {data}", operation="handshake")
        self.socket_path = path

    async def _drop(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug("Closing IPC socket failed: %s", e)

    async def _write(self, op: int, payload: dict[str, Any]) -> None:
        if self._writer is None:
            raise TransportError("Not connected", operation="write")
        self._writer.write(encode_frame(op, payload))
        await asyncio.wait_for(self._writer.drain(), self._timeout)

    async def _read(self) -> tuple[int, dict[str, Any]]:
        if self._reader is None:
            raise TransportError("Not connected", operation="read")
        while True:
            header = await asyncio.wait_for(self._reader.readexactly(HEADER.size), self._timeout)
            op, length = HEADER.unpack(header)
            body = await asyncio.wait_for(self._reader.readexactly(length), self._timeout)
            data = json.loads(body.decode("utf-8")) if body else {}
            if op == OP_PING:
                await self._write(OP_PONG, data)
                continue
            return op, data

    async def _command(self, cmd: str, args: dict[str, Any]) -> dict[str, Any]:
        nonce = str(uuid.uuid4())
        async with self._lock:
            try:
                await self._write(OP_FRAME, {"cmd": cmd, "args": args, "nonce": nonce})
                while True:
                    op, data = await self._read()
                    if op == OP_CLOSE:
                        raise TransportError(
                            f"Discord closed the connection: {data.get('message', data)}",
                            operation=cmd,
                        )
                    # skips nonce-less dispatches and replies to older, timed out commands
                    if data.get("nonce") == nonce:
                        break
            except TransportError:
                await self._drop()
                raise
            except (OSError, TimeoutError, asyncio.IncompleteReadError, ValueError) as e:
                await self._drop()
                raise TransportError(f"{cmd} failed: {e}", operation=cmd) from e

        if data.get("evt") == "ERROR":
            message = (data.get("data") or {}).get("message", "unknown error")
            raise TransportError(f"Discord refused {cmd}: {message}", operation=cmd)
        return data
