"""Async subprocess runner shared by the build verifier and git adapter."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .contracts import CommandTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    command: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


async def run_command(
    args: Sequence[str],
    cwd: str | Path,
    timeout: Optional[float] = None,
) -> CommandResult:
    """Run ``args`` in ``cwd`` and capture its output.

    Raises:
        CommandTimeoutError: If the process outlives ``timeout``. The process
            is killed before raising.
        FileNotFoundError: If the executable does not exist.
    """
    command = " ".join(args)
    logger.debug(f"Running `{command}` in {cwd}")
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise CommandTimeoutError(command, timeout) from None
    return CommandResult(
        command=command,
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace").strip(),
        stderr=stderr.decode("utf-8", errors="replace").strip(),
    )
