"""A small asynchronous QMP client and the QMP data types the sandbox needs."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .utils import SandboxError

logger = logging.getLogger(__name__)

_STREAM_LIMIT = 2**20

EventPredicate = Callable[[dict], bool]


class QmpError(SandboxError):
    """A QMP command failed or the QMP connection is unusable."""


class CpuArch(enum.Enum):
    """Architecture reported by ``query-cpus``."""

    X86 = "x86"
    ARM = "Arm"


_ARCH_TAGS = {"x86": CpuArch.X86, "arm": CpuArch.ARM}


@dataclass(frozen=True)
class CpuInfo:
    """One vCPU as reported by ``query-cpus``."""

    arch: CpuArch
    cpu: int
    current: bool
    halted: bool
    qom_path: str
    thread_id: int


def parse_cpu_info(data) -> list[CpuInfo]:
    """Decode the return value of ``query-cpus``."""
    if not isinstance(data, list):
        raise QmpError(f"malformed query-cpus result: {data!r}")
    result = []
    for entry in data:
        try:
            arch = _ARCH_TAGS[entry["arch"]]
            info = CpuInfo(
                arch=arch,
                cpu=int(entry["CPU"]),
                current=bool(entry["current"]),
                halted=bool(entry["halted"]),
                qom_path=str(entry["qom_path"]),
                thread_id=int(entry["thread_id"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise QmpError(f"malformed cpu info: {entry!r}") from e
        result.append(info)
    return result


class QmpClient:
    """A QMP connection; commands are matched to replies by id, events go to watchers."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._pending: dict[int, asyncio.Future] = {}
        self._watchers: list[tuple[EventPredicate, asyncio.Future]] = []
        self._ids = itertools.count(1)
        self._closed = False
        self._reader_task = asyncio.create_task(self._read_loop())

    @classmethod
    async def connect(cls, socket_addr: str) -> QmpClient:
        """Connect to a QMP unix socket and negotiate capabilities."""
        try:
            reader, writer = await asyncio.open_unix_connection(
                socket_addr, limit=_STREAM_LIMIT
            )
        except OSError as e:
            raise QmpError(f"failed to connect to qmp socket {socket_addr}: {e}") from e
        try:
            line = await reader.readline()
            greeting = json.loads(line) if line else None
        except (OSError, ValueError) as e:
            writer.close()
            raise QmpError(f"failed to read qmp greeting: {e}") from e
        if not isinstance(greeting, dict) or "QMP" not in greeting:
            writer.close()
            raise QmpError(f"unexpected qmp greeting: {line!r}")
        client = cls(reader, writer)
        try:
            await client.execute("qmp_capabilities")
        except BaseException:
            await client.close()
            raise
        return client

    async def _read_loop(self) -> None:
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    break
                try:
                    message = json.loads(line)
                except ValueError:
                    logger.warning("ignoring malformed qmp message %r", line)
                    continue
                if not isinstance(message, dict):
                    continue
                if "event" in message:
                    self._dispatch_event(message)
                elif "return" in message or "error" in message:
                    self._resolve(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("failed to read from qmp socket, %s", e)
        finally:
            self._fail_all(QmpError("qmp connection closed"))

    def _resolve(self, message: dict) -> None:
        request_id = message.get("id")
        if request_id in self._pending:
            future = self._pending.pop(request_id)
        elif self._pending:
            future = self._pending.pop(next(iter(self._pending)))
        else:
            return
        if not future.done():
            future.set_result(message)

    def _dispatch_event(self, event: dict) -> None:
        retained = []
        for predicate, future in self._watchers:
            if future.done():
                continue
            try:
                matched = predicate(event)
            except Exception as e:
                logger.error("qmp event filter failed, %s", e)
                matched = False
            if matched:
                future.set_result(event)
            else:
                retained.append((predicate, future))
        self._watchers = retained

    def _fail_all(self, error: QmpError) -> None:
        self._closed = True
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
        for _, future in self._watchers:
            if not future.done():
                future.set_exception(error)
        self._watchers.clear()

    async def _request(self, command: str, arguments: Optional[dict]) -> dict:
        if self._closed:
            raise QmpError("qmp client is closed")
        request_id = next(self._ids)
        payload: dict[str, Any] = {"execute": command, "id": request_id}
        if arguments:
            payload["arguments"] = arguments
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            self._writer.write(json.dumps(payload).encode() + b"\n")
            await self._writer.drain()
        except OSError as e:
            self._pending.pop(request_id, None)
            raise QmpError(f"failed to send qmp command {command}: {e}") from e
        return await future

    async def execute(self, command: str, arguments: Optional[dict] = None) -> Any:
        """Run a command and return its ``return`` value."""
        reply = await self._request(command, arguments)
        if "error" in reply:
            error = reply["error"]
            desc = error.get("desc", error) if isinstance(error, dict) else error
            raise QmpError(f"failed to execute qmp, {desc}")
        return reply["return"]

    async def execute_and_wait_event(
        self, command: str, arguments: Optional[dict], predicate: EventPredicate
    ) -> Any:
        """Run a command, then wait for the first event accepted by ``predicate``."""
        future = asyncio.get_running_loop().create_future()
        watcher = (predicate, future)
        self._watchers.append(watcher)
        try:
            result = await self.execute(command, arguments)
        except BaseException:
            if watcher in self._watchers:
                self._watchers.remove(watcher)
            future.cancel()
            raise
        with contextlib.suppress(QmpError):
            await future
        return result

    async def delete_device(self, device_id: str) -> None:
        """Unplug a device and wait until the guest reports it gone."""

        def deleted(event: dict) -> bool:
            data = event.get("data") or {}
            return event.get("event") == "DEVICE_DELETED" and data.get("device") == device_id

        await self.execute_and_wait_event("device_del", {"id": device_id}, deleted)

    async def close(self) -> None:
        """Close the connection; pending commands fail with QmpError."""
        self._closed = True
        if not self._reader_task.done():
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
        self._writer.close()
        with contextlib.suppress(OSError):
            await self._writer.wait_closed()