"""Logging configuration for capo.

Logging is disabled by default (library behavior) and enabled by the process
hosting the actuator:

    from capo.observability.logging import LogConfig, setup_logging, teardown_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", console=True))
    try:
        await actuator.create(machine)
    finally:
        teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, TypeAlias

from loguru import logger
from rich.logging import RichHandler

LogLevel: TypeAlias = Literal["DEBUG", "INFO", "WARNING", "ERROR", "TRACE"]

_CONTEXT_KEYS = ("component", "machine", "instance_id", "namespace")


def _format_context(record: Any) -> str:
    extra = record.get("extra", {})
    parts = [f"{k}={extra[k]}" for k in _CONTEXT_KEYS if k in extra]
    return f" [{' '.join(parts)}]" if parts else ""


CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan>"
    "<dim>{extra[_ctx]}</dim> - "
    "<level>{message}</level>"
)

RICH_FORMAT = "{message}{extra[_ctx]}"

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line}{extra[_ctx]} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum log level for the console.
        file: Path to log file. None disables file output.
        console: Whether to log to stderr.
        rich: Render console output through rich instead of plain ANSI.
        rotation: File rotation policy (e.g., "50 MB", "1 day").
        retention: Number of old log files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rich: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def _console_handler() -> RichHandler:
    return RichHandler(
        show_time=True,
        show_level=True,
        show_path=True,
        markup=False,
        rich_tracebacks=True,
    )


def setup_logging(config: LogConfig) -> list[int]:
    """Configure capo's sinks and return handler IDs for cleanup."""
    logger.enable("capo")
    logger.configure(patcher=lambda r: r["extra"].update(_ctx=_format_context(r)))
    handler_ids: list[int] = []

    if config.console:
        if config.rich:
            hid = logger.add(
                _console_handler(),
                level=config.level,
                format=RICH_FORMAT,
                filter="capo",
            )
        else:
            hid = logger.add(
                sys.stderr,
                level=config.level,
                format=CONSOLE_FORMAT,
                colorize=True,
                filter="capo",
            )
        handler_ids.append(hid)

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        hid = logger.add(
            config.file,
            level="DEBUG",
            format=FILE_FORMAT,
            filter="capo",
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            diagnose=False,
            enqueue=False,
        )
        handler_ids.append(hid)

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers and disable logging."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("capo")
