import asyncio
import os
from pathlib import Path
from typing import Awaitable, Callable

CommandRunnerT = Callable[..., Awaitable[str]]


async def exec_command(command: str, *args: str, timeout: float | None = None) -> str:
    process = await asyncio.create_subprocess_exec(
        command,
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    if stdout is None:  # type: ignore
        stdout = b""
    if stderr is None:  # type: ignore
        stderr = b""

    if process.returncode != 0:
        raise RuntimeError(f"Failed to exec command: {command}\n{stderr.decode()}")
    return stdout.decode()


def read_file_string(path: str | Path) -> str:
    """
    read a small procfs/sysfs file and strip it
    returns an empty string on any error
    """
    try:
        with open(path, "r", encoding="utf8", errors="replace") as f:
            return f.read().strip()
    except OSError:
        return ""


def read_link(path: str | Path) -> str:
    """
    returns the symlink target, or an empty string if it is not a readable link
    """
    try:
        return os.readlink(path)
    except OSError:
        return ""


def read_int(path: str | Path) -> int | None:
    value = read_file_string(path)
    try:
        return int(value)
    except ValueError:
        return None
