"""Finding the hypervisor process through its pid file."""

from __future__ import annotations

import asyncio
from pathlib import Path

from .utils import NotFoundError, SandboxError, read_file

PID_DETECT_ATTEMPTS = 1000
PID_DETECT_INTERVAL = 0.01
PROC_ROOT = "/proc"

_U32_MAX = 2**32 - 1


def _parse_pid(text: str) -> int:
    text = text.strip()
    if not (text.isascii() and text.isdigit()) or int(text) > _U32_MAX:
        raise ValueError(f"failed to parse stratovirt.pid {text!r}")
    return int(text)


def _read_cmdline(pid: int) -> list[str]:
    try:
        raw = Path(PROC_ROOT, str(pid), "cmdline").read_bytes()
    except OSError as e:
        raise SandboxError(f"failed to get stratovirt process, {e}") from e
    return [arg.decode(errors="replace") for arg in raw.split(b"\0") if arg]


async def detect_pid(path, bin_path: str) -> int:
    """Wait for the pid file at ``path`` and check the process runs ``bin_path``.

    Raises NotFoundError when the pid belongs to another program, and
    SandboxError when the pid file never becomes readable.
    """
    last_error: Exception | None = None
    for _ in range(PID_DETECT_ATTEMPTS):
        try:
            pid = _parse_pid(await read_file(path))
        except (OSError, ValueError) as e:
            last_error = e
        else:
            cmdline = await asyncio.to_thread(_read_cmdline, pid)
            # the pid may have been reused by an unrelated process
            if any(bin_path in arg for arg in cmdline):
                return pid
            raise NotFoundError(f"stratovirt process {pid}")
        await asyncio.sleep(PID_DETECT_INTERVAL)
    raise SandboxError(f"timeout waiting for the pid file, err: {last_error!r}")