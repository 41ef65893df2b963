"""Async subprocess helper for credential helper programs.

``docker-credential-*`` helpers are short-lived processes that read a
registry host on stdin and answer with JSON on stdout. Running them via
``asyncio`` keeps a slow keychain prompt from blocking other lookups, and
lets a cancelled lookup take the helper down with it.

Example:
    >>> from regauth.utils.async_subprocess import run_command
    >>> stdout, stderr, code = await run_command(
    ...     "docker-credential-pass", "get", input="ghcr.io", check=False
    ... )
"""

import asyncio
import subprocess
from pathlib import Path


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


async def run_command(
    *args: str,
    input: str | None = None,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
) -> tuple[str, str, int]:
    """Execute a program directly (no shell) and collect its output.

    Args:
        *args: Program followed by its arguments
        input: Text sent on stdin before it is closed; stdin is left
            unconnected when None
        cwd: Directory to run in
        check: Raise CalledProcessError for a non-zero exit status
        timeout: Seconds to wait before killing the program; None waits
            for as long as it takes

    Returns:
        (stdout, stderr, exit_status), decoded as UTF-8 with undecodable
        bytes replaced

    Raises:
        subprocess.CalledProcessError: Non-zero exit while ``check`` is set
        TimeoutError: The program outlived ``timeout`` and was killed
        FileNotFoundError: The program does not exist
        PermissionError: The program is not executable
    """
    stdin_data = input.encode("utf-8") if input is not None else None
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdin=asyncio.subprocess.PIPE if stdin_data is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        raw_out, raw_err = await asyncio.wait_for(process.communicate(stdin_data), timeout=timeout)
    except (TimeoutError, asyncio.CancelledError):
        # Reap the child before propagating so no helper outlives its lookup
        process.kill()
        await process.wait()
        raise

    stdout, stderr = _decode(raw_out), _decode(raw_err)
    returncode = process.returncode or 0

    if check and returncode != 0:
        raise subprocess.CalledProcessError(returncode, args, stdout, stderr)

    return stdout, stderr, returncode
