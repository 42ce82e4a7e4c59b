"""The virtiofs daemon process that serves the shared directory to the guest."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field
from typing import Optional

from .config import DEFAULT_VHOST_USER_FS_BIN_PATH
from .utils import SandboxError, read_std

logger = logging.getLogger(__name__)


async def _drain(stream: Optional[asyncio.StreamReader], name: str) -> None:
    if stream is None:
        return
    try:
        await read_std(stream, name)
    except Exception:
        pass


async def _wait_child(proc: asyncio.subprocess.Process, name: str) -> int:
    """Log the child's output, wait for it to exit and return its exit code."""
    try:
        _, _, returncode = await asyncio.gather(
            _drain(proc.stdout, name), _drain(proc.stderr, name), proc.wait()
        )
    except Exception as e:
        logger.error("%s wait error %s", name, e)
        return 0
    if returncode != 0:
        logger.error("%s exit %s", name, returncode)
    return returncode


@dataclass
class VirtiofsDaemon:
    """A vhost_user_fs daemon exporting ``shared_dir`` on ``socket_path``."""

    path: str = DEFAULT_VHOST_USER_FS_BIN_PATH
    log_path: str = ""
    socket_path: str = ""
    shared_dir: str = ""
    pid: Optional[int] = None
    _wait_task: Optional[asyncio.Task] = field(
        default=None, init=False, repr=False, compare=False
    )

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        """Daemon arguments; empty values are left out."""
        params: list[str] = []
        for key, value in (
            ("D", self.log_path),
            ("socket-path", self.socket_path),
            ("source", self.shared_dir),
        ):
            if value:
                params.extend([f"{hyphen}{key}", value])
        return params

    async def start(self) -> None:
        """Spawn the daemon and keep logging its output in the background."""
        params = self.to_cmdline_params("-")
        logger.debug("start virtiofs daemon with cmdline: %s %s", self.path, " ".join(params))
        try:
            proc = await asyncio.create_subprocess_exec(
                self.path,
                *params,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SandboxError(f"failed to spawn virtiofsd command: {e}") from e
        self.pid = proc.pid
        self._wait_task = asyncio.create_task(_wait_child(proc, "vhost_user_fs"))

    def stop(self) -> None:
        """Kill the daemon if it was started."""
        if self.pid is None:
            return
        if self.pid <= 1:
            raise SandboxError(f"invalid virtiofs daemon process pid: {self.pid}")
        try:
            os.kill(self.pid, signal.SIGKILL)
        except OSError as e:
            raise SandboxError(f"failed to kill virtiofs daemon {self.pid}: {e}") from e