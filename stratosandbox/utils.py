"""Shared helpers: errors, resource merging, file and process utilities."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass, field, replace
from pathlib import Path

logger = logging.getLogger(__name__)

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1
_UNSIGNED = re.compile(r"\+?[0-9]+")


class SandboxError(Exception):
    """Base error for sandbox operations."""


class InvalidArgumentError(SandboxError):
    """An argument or input had an unexpected format."""


class NotFoundError(SandboxError):
    """A requested object does not exist."""


class ResourceExhaustedError(SandboxError):
    """No free resource (slot, port, ...) is left."""


class UnimplementedError(SandboxError):
    """The requested operation is not supported."""


@dataclass
class HugepageLimit:
    """Hugepage limit for one page size."""

    page_size: str = ""
    limit: int = 0


@dataclass
class LinuxContainerResources:
    """Linux resource settings of a container or sandbox."""

    cpu_period: int = 0
    cpu_quota: int = 0
    cpu_shares: int = 0
    memory_limit_in_bytes: int = 0
    oom_score_adj: int = 0
    cpuset_cpus: str = ""
    cpuset_mems: str = ""
    hugepage_limits: list[HugepageLimit] = field(default_factory=list)
    unified: dict[str, str] = field(default_factory=dict)
    memory_swap_limit_in_bytes: int = 0


def _parse_unsigned(text: str, maximum: int) -> int | None:
    text = text.strip()
    if not _UNSIGNED.fullmatch(text):
        return None
    value = int(text)
    return value if value <= maximum else None


def _div_trunc(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a >= 0) == (b > 0) else -quotient


async def read_file(filename) -> str:
    """Read a whole text file."""
    return await asyncio.to_thread(Path(filename).read_text)


def merge_resources(
    resource1: LinuxContainerResources, resource2: LinuxContainerResources
) -> LinuxContainerResources:
    """Combine two resource sets into one covering both."""
    oom_score_adj = max(resource1.oom_score_adj, resource2.oom_score_adj)

    hugepage_limits = [replace(h) for h in resource1.hugepage_limits]
    for h2 in resource2.hugepage_limits:
        for limit in hugepage_limits:
            if limit.page_size == h2.page_size:
                limit.limit += h2.limit
        hugepage_limits.append(replace(h2))

    unified = dict(resource1.unified)
    for key, value in resource2.unified.items():
        unified.setdefault(key, value)

    try:
        cpuset_cpus = merge_cpusets(resource1.cpuset_cpus, resource2.cpuset_cpus)
    except InvalidArgumentError:
        logger.error(
            "failed to merge cpusets %s with %s",
            resource1.cpuset_cpus,
            resource2.cpuset_cpus,
        )
        cpuset_cpus = resource1.cpuset_cpus

    try:
        cpuset_mems = merge_cpusets(resource1.cpuset_mems, resource2.cpuset_mems)
    except InvalidArgumentError:
        logger.error(
            "failed to merge cpuset mems %s with %s",
            resource1.cpuset_mems,
            resource2.cpuset_mems,
        )
        cpuset_mems = resource1.cpuset_mems

    return LinuxContainerResources(
        cpu_period=resource1.cpu_period,
        cpu_quota=resource1.cpu_quota
        + _div_trunc(resource2.cpu_quota * resource1.cpu_period, resource2.cpu_period),
        cpu_shares=resource1.cpu_shares + resource2.cpu_shares,
        memory_limit_in_bytes=resource1.memory_limit_in_bytes
        + resource2.memory_limit_in_bytes,
        oom_score_adj=oom_score_adj,
        cpuset_cpus=cpuset_cpus,
        cpuset_mems=cpuset_mems,
        hugepage_limits=hugepage_limits,
        unified=unified,
        memory_swap_limit_in_bytes=resource1.memory_swap_limit_in_bytes
        + resource2.memory_swap_limit_in_bytes,
    )


def merge_cpusets(cpusets1: str, cpusets2: str) -> str:
    """Merge two cpuset lists such as "0-3,6" into one."""
    parts1 = cpuset_parts(cpusets1)
    parts2 = cpuset_parts(cpusets2)
    merged = []
    for base in parts1:
        for delta in parts2:
            base = merge_cpuset(base, delta)
        merged.append(base)
    for part in parts2:
        if not any(cpuset_intersect(part, existing) for existing in merged):
            merged.append(part)
    return ",".join(cpuset_tostring(p) for p in merged)


def merge_cpuset(base: tuple[int, int], delta: tuple[int, int]) -> tuple[int, int]:
    """Widen ``base`` by ``delta`` when the two ranges overlap."""
    low, high = base
    if delta[1] < low or delta[0] > high:
        return (low, high)
    return (min(low, delta[0]), max(high, delta[1]))


def cpuset_intersect(cpuset1: tuple[int, int], cpuset2: tuple[int, int]) -> bool:
    """Whether two inclusive ranges overlap."""
    return not (cpuset2[1] < cpuset1[0] or cpuset2[0] > cpuset1[1])


def cpuset_parts(cpuset: str) -> list[tuple[int, int]]:
    """Split a cpuset list into inclusive ranges."""
    return [cpuset_one_part(part) for part in cpuset.split(",")]


def cpuset_one_part(cpuset: str) -> tuple[int, int]:
    """Parse one cpuset item, either "N" or "N-M"."""
    parts = cpuset.split("-")
    low = _parse_unsigned(parts[0], _U32_MAX)
    if low is None:
        raise InvalidArgumentError("cpuset format error")
    high = low
    if len(parts) == 2:
        high = _parse_unsigned(parts[1], _U32_MAX)
        if high is None:
            raise InvalidArgumentError("cpuset format error")
    return (low, high)


def cpuset_tostring(cpuset: tuple[int, int]) -> str:
    """Format an inclusive range as cpuset text."""
    low, high = cpuset
    return str(low) if low == high else f"{low}-{high}"


async def get_host_memory_in_mb(meminfo_path="/proc/meminfo") -> int:
    """Total host memory in MiB, read from a meminfo file."""
    content = await read_file(meminfo_path)
    for line in content.splitlines():
        fields = line.split()
        if len(fields) >= 3 and fields[0] == "MemTotal:" and fields[2] == "kB":
            kib = _parse_unsigned(fields[1], _U64_MAX)
            if kib is None:
                raise SandboxError(
                    f"failed to parse memory from {meminfo_path}: {fields[1]!r}"
                )
            return kib // 1024
    raise SandboxError(f"can not get host memory info from {meminfo_path}")


async def wait_pid(pid: int) -> tuple[int, int]:
    """Poll until a (non-child) process is gone; return (0, exit time in ns)."""
    while True:
        try:
            os.kill(pid, 0)
        except OSError:
            return (0, time.time_ns())
        await asyncio.sleep(0.005)


def _sync_data(fd: int) -> None:
    sync = getattr(os, "fdatasync", os.fsync)
    sync(fd)


def _write_and_sync(fd: int, data: bytes, path) -> None:
    with os.fdopen(fd, "wb") as f:
        try:
            f.write(data)
            f.flush()
        except OSError as e:
            raise SandboxError(f"failed to write string to path {path}: {e}") from e
        try:
            _sync_data(f.fileno())
        except OSError as e:
            raise SandboxError(f"failed to sync data to path {path}: {e}") from e


def _write_existing(path: Path, s: str) -> None:
    try:
        fd = os.open(path, os.O_WRONLY)
    except OSError as e:
        raise SandboxError(f"failed to open path {path}: {e}") from e
    _write_and_sync(fd, s.encode(), path)


async def write_file_async(path, s: str) -> None:
    """Write into an existing file from its start, without truncating."""
    await asyncio.to_thread(_write_existing, Path(path), s)


def _write_atomic(path: Path, s: str) -> None:
    if not path.name:
        raise InvalidArgumentError("path illegal")
    tmp_path = path.with_name(f".{path.name}")
    try:
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o666)
    except OSError as e:
        raise SandboxError(f"failed to open path {tmp_path}, {e}") from e
    _write_and_sync(fd, s.encode(), tmp_path)
    try:
        os.rename(tmp_path, path)
    except OSError as e:
        raise SandboxError(f"failed to rename file: {e}") from e


async def write_file_atomic(path, s: str) -> None:
    """Write a file through a hidden temporary sibling and a rename."""
    await asyncio.to_thread(_write_atomic, Path(path), s)


_ON_OFF = {True: "on", False: "off"}
_SOCKET_SERVER = {True: "server", False: ""}
_SOCKET_NOWAIT = {True: "nowait", False: ""}


def bool_to_on_off(b: bool) -> str:
    """Render a flag as "on" or "off"."""
    return _ON_OFF[bool(b)]


def bool_to_socket_server(b: bool) -> str:
    """Render the socket server flag: "server" when set, else empty."""
    return _SOCKET_SERVER[bool(b)]


def bool_to_socket_nowait(b: bool) -> str:
    """Render the socket nowait flag: "nowait" when set, else empty."""
    return _SOCKET_NOWAIT[bool(b)]


def vec_to_string(v) -> str:
    """Join items with colons."""
    return ":".join(str(x) for x in v)


def fds_to_vectors(fds) -> str:
    """Number of MSI-X vectors needed for the given queue fds."""
    return str(2 * len(fds) + 2)


async def read_std(stream: asyncio.StreamReader, prefix: str) -> None:
    """Log every line read from a stream until it ends."""
    while True:
        try:
            line = await stream.readline()
        except Exception as e:
            logger.error("failed to read %s log %s", prefix, e)
            raise
        if not line:
            return
        logger.debug("%s: %s", prefix, line.decode(errors="replace").strip())