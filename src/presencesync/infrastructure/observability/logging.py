"""Structured logging configuration with JSON formatting and player context."""

import contextvars
import logging
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

# Hey future me, every player lane runs in its own asyncio task, and contextvars are per-task.
# So while a lane processes an update, EVERY log line (template service, resolver, providers,
# transport) carries the player identity without anybody passing it around. Default "" covers
# the poll loop and startup logs.
player_context_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "player_context", default=""
)


def get_player_context() -> str:
    """Get the player identity bound to the current task ("" if none)."""
    return player_context_var.get()


@contextmanager
def player_context(identity: str) -> Iterator[None]:
    """Bind a player identity to all log records emitted inside the block."""
    token = player_context_var.set(identity)
    try:
        yield
    finally:
        player_context_var.reset(token)


class PlayerContextFilter(logging.Filter):
    """Add the current player identity to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.player = get_player_context()
        return True


class CompactExceptionFormatter(logging.Formatter):
    """Formatter that shows compact exception chains without traceback boilerplate.

    Hey future me - root cause first, one ╰─► header per chained exception, and only frames
    from our own package (site-packages and stdlib frames are noise in a terminal).

    Example output:
    12:01:33 │ ERROR   │ [Spotify] presencesync.application.workers.orchestrator:212 │ Update failed
    ╰─► ConnectionRefusedError: [Errno 111] Connection refused
        File "discord_ipc.py", line 88, in connect
          reader, writer = await asyncio.open_unix_connection(path)
    ╰─► TransportError: No Discord IPC socket accepted the connection
    """

    def format(self, record: logging.LogRecord) -> str:
        player = getattr(record, "player", "")
        record.player_prefix = f"[{player}] " if player else ""
        return super().format(record)

    def formatException(self, ei: Any) -> str:
        _exc_type, exc_value, _exc_tb = ei
        if exc_value is None:
            return ""

        exceptions: list[BaseException] = []
        current: BaseException | None = exc_value
        while current is not None and current not in exceptions:
            exceptions.append(current)
            current = current.__cause__ or current.__context__
        exceptions.reverse()

        lines: list[str] = []
        for exc in exceptions:
            lines.append(f"╰─► {exc.__class__.__name__}: {exc}")
            if exc.__traceback__ is None:
                continue
            for frame in traceback.extract_tb(exc.__traceback__):
                filepath = frame.filename
                if "/site-packages/" in filepath or "presencesync" not in filepath:
                    continue
                lines.append(f'    File "{Path(filepath).name}", line {frame.lineno}, in {frame.name}')
                if frame.line:
                    lines.append(f"      {frame.line.strip()}")

        return "\n".join(lines)


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[misc]
    """JSON formatter with the fields log shippers expect."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno

        # the filter sets record.player on every record, keep the key out of non-lane lines
        player = getattr(record, "player", "")
        if player:
            log_record["player"] = player
        else:
            log_record.pop("player", None)

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_record["stack_info"] = self.formatStack(record.stack_info)


# Listen future me, call this ONCE at startup (main.py). It replaces the root handlers so a
# second call (tests, CLI subcommands) doesn't double every line. stderr, not stdout: the
# `config` and `players` commands print their results on stdout.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "presencesync",
) -> None:
    """Configure structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit one JSON object per line instead of human-readable text
        app_name: Application name included in the startup record
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(PlayerContextFilter())

    formatter: logging.Formatter
    if json_format:
        formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = CompactExceptionFormatter(
            fmt="%(asctime)s │ %(levelname)-7s │ %(player_prefix)s%(name)s:%(lineno)d │ %(message)s",
            datefmt="%H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "hpack", "PIL", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Logging configured",
        extra={"app_name": app_name, "log_level": log_level, "json_format": json_format},
    )
