"""Library for running the configured shell command."""

import asyncio
import logging
import subprocess
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeAlias, cast

logger = logging.getLogger(__name__)

Runner: TypeAlias = Callable[[str, Path], Awaitable[str]]
"""Signature of `run_command`, so callers can substitute their own."""


class CommandError(subprocess.CalledProcessError):
    """Command exited with a non-zero status."""

    def __str__(self) -> str:
        return f"Command {self.cmd!r} exited with status {self.returncode}"


async def run_command(command: str, cwd: Path) -> str:
    """Execute `command` with ``sh -c`` inside `cwd` and return its stdout output.

    Raises CommandError on a non-zero exit status, after logging the status
    and output at error level. Raises OSError (typically FileNotFoundError) if
    the process could not be started, e.g. because `cwd` no longer exists.
    """
    logger.debug(f"Running {command!r} in {cwd}")
    process = await asyncio.create_subprocess_exec(
        "sh",
        "-c",
        command,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout_bytes, stderr_bytes = await process.communicate()
    stdout = stdout_bytes.decode(errors="replace")
    stderr = stderr_bytes.decode(errors="replace")
    returncode = cast(int, process.returncode)
    if returncode != 0:
        logger.error(f"Command:\n{command}\nExited with status {returncode}")
        if stdout:
            logger.error(f"stdout:\n{stdout}")
        if stderr:
            logger.error(f"stderr:\n{stderr}")
        raise CommandError(returncode, command, stdout, stderr)
    return stdout
