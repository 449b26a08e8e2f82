"""
core/host.py

Host reload signal: tells the content-filtering runtime to re-read the
bundle files from the shared directory.
"""
from __future__ import annotations

import asyncio
import logging
import shlex
from typing import List, Protocol

from .errors import HostReloadError

logger = logging.getLogger(__name__)


class HostReloader(Protocol):
    async def reload(self, identifier: str) -> None:
        ...


class CommandReloader:
    """Runs ``<command> <identifier>``; a non-zero exit is a HostReloadError."""

    def __init__(self, command: str) -> None:
        self._argv: List[str] = shlex.split(command)
        if not self._argv:
            raise ValueError("reload command is empty")

    async def reload(self, identifier: str) -> None:
        argv = [*self._argv, identifier]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise HostReloadError(f"Unable to start reload command {argv[0]!r}: {exc}") from exc
        _stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:500]
            raise HostReloadError(f"Reload command exited with status {proc.returncode}: {detail}")


class LoggingReloader:
    """Used when no reload command is configured; the host picks up files on its own."""

    async def reload(self, identifier: str) -> None:
        logger.info("No reload command configured; bundle %s left for the host to pick up", identifier)


def build_reloader(command: str) -> HostReloader:
    if command.strip():
        return CommandReloader(command)
    return LoggingReloader()
