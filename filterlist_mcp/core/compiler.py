"""
core/compiler.py

Adapter for the external rule compiler.

The compiler is opaque: filtered rule lines go in, and a JSON rule array, a
valid-rule count and an optional advanced JSON rule array come out.  The
default adapter drives a ConverterTool-style command: rules on stdin, one
JSON object on stdout with keys ``converted``, ``convertedCount`` and
``advancedBlocking``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import shlex
from typing import List, Protocol, Sequence

from .config import CompileOptions, CompileResult
from .errors import CompileError

logger = logging.getLogger(__name__)


class RuleCompiler(Protocol):
    async def compile(self, lines: Sequence[str], options: CompileOptions) -> CompileResult:
        ...


def parse_converter_output(stdout: str) -> CompileResult:
    """Parse the converter's JSON summary into a CompileResult."""
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise CompileError(f"Compiler output is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CompileError("Compiler output is not a JSON object")

    converted = data.get("converted")
    if not isinstance(converted, str):
        raise CompileError("Compiler output has no 'converted' rule text")

    count = data.get("convertedCount")
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise CompileError(f"Compiler output has an invalid 'convertedCount': {count!r}")

    advanced = data.get("advancedBlocking")
    if advanced is not None and not isinstance(advanced, str):
        advanced = None

    extra = {k: v for k, v in data.items() if k not in ("converted", "convertedCount", "advancedBlocking")}
    return CompileResult(converted=converted, converted_count=count, advanced=advanced or None, extra=extra)


class CommandCompiler:
    """Runs the configured converter command once per subscription."""

    def __init__(self, command: str) -> None:
        self._argv: List[str] = shlex.split(command)
        if not self._argv:
            raise ValueError("compiler command is empty")

    def build_argv(self, options: CompileOptions) -> List[str]:
        return [
            *self._argv,
            "--safari-version", options.target_version,
            "--optimize", "true" if options.optimize else "false",
            "--advanced-blocking", "true" if options.advanced else "false",
        ]

    async def compile(self, lines: Sequence[str], options: CompileOptions) -> CompileResult:
        argv = self.build_argv(options)
        payload = "\n".join(lines).encode("utf-8")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CompileError(f"Unable to start compiler {argv[0]!r}: {exc}") from exc

        stdout, stderr = await proc.communicate(payload)
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:500]
            raise CompileError(f"Compiler exited with status {proc.returncode}: {detail}")

        try:
            text = stdout.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CompileError(f"Compiler output is not UTF-8: {exc}") from exc

        result = parse_converter_output(text)
        logger.debug("Compiled %d lines into %d rules", len(lines), result.converted_count)
        return result
