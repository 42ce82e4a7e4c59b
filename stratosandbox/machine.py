"""A StratoVirt virtual machine: device layout, launch and control."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Awaitable, Optional, Union

from .config import StratoVirtConfig
from .devices.base import (
    DEFAULT_PCIE_BUS,
    PCIE_ROOTBUS_CAPACITY,
    Bus,
    PcieRootBus,
    Slot,
    StratoVirtDevice,
)
from .devices.block import VirtioBlockDevice
from .devices.rootport import PcieRootPorts, RootPort
from .devices.virtio_net import tap_net_device
from .pidfile import detect_pid
from .qmp import QmpClient, parse_cpu_info
from .utils import (
    ResourceExhaustedError,
    SandboxError,
    UnimplementedError,
    read_std,
    wait_pid,
)
from .virtiofs import VirtiofsDaemon
from .vm import BlockDriver, BusType, Pids, VcpuThreads

logger = logging.getLogger(__name__)

STRATOVIRT_START_TIMEOUT_IN_SEC = 10
STOP_TIMEOUT_IN_SEC = 10
_CONNECT_RETRY_INTERVAL = 0.01


@dataclass
class TapDeviceInfo:
    """A tap interface handed to the VM, with its queue file descriptors."""

    id: str
    name: str
    mac_address: str
    fds: list[int] = field(default_factory=list)


@dataclass
class BlockDeviceInfo:
    """A host block device or image to plug into the VM."""

    id: str
    path: str
    read_only: bool = False


DeviceInfo = Union[TapDeviceInfo, BlockDeviceInfo]


def _log_pipe(fd: int, prefix: str) -> None:
    with os.fdopen(fd, "rb") as pipe:
        for line in pipe:
            logger.debug("%s: %s", prefix, line.decode(errors="replace").strip())


async def _read_console(path: str) -> None:
    try:
        reader, writer = await asyncio.open_unix_connection(path)
    except OSError as e:
        logger.error("failed to read console log, %s", e)
        return
    try:
        await read_std(reader, "console")
    except Exception as e:
        logger.error("failed to read console log, %s", e)
    finally:
        writer.close()


class StratoVirtVM:
    """One StratoVirt VM: its configuration, devices and running process."""

    def __init__(self, id: str, netns: str = "", base_dir: str = "") -> None:
        self.id = id
        self.config = StratoVirtConfig()
        self.devices: list[StratoVirtDevice] = []
        self.hot_attached_devices: list[VirtioBlockDevice] = []
        self.fds: list[int] = []
        self.console_socket = f"{base_dir}/console.sock"
        self.agent_socket = ""
        self.netns = netns
        self.block_driver = BlockDriver.VIRTIO_BLK
        self.client: Optional[QmpClient] = None
        self.virtiofs_daemon: Optional[VirtiofsDaemon] = None
        self.pcie_root_bus = PcieRootBus()
        self.pcie_root_ports_pool: Optional[PcieRootPorts] = None
        self._pids = Pids()
        self._exit_status: tuple[int, int] = (0, 0)
        self._exited: Optional[asyncio.Event] = None
        self._background: set[asyncio.Task] = set()

    # -- lifecycle -------------------------------------------------------

    async def start(self) -> int:
        """Start the virtiofs daemon and the VM; return the hypervisor pid."""
        logger.debug("start virtiofs daemon process")
        await self._start_virtiofs_daemon()

        logger.debug("start vm %s", self.id)
        await self._launch()
        started = time.monotonic()
        while True:
            try:
                self.client = await self._create_client()
                break
            except SandboxError as e:
                if time.monotonic() - started > STRATOVIRT_START_TIMEOUT_IN_SEC:
                    logger.error("failed to create stratovirt: %s", e)
                    raise SandboxError(f"timeout connect stratovirt, {e}") from e
                await asyncio.sleep(_CONNECT_RETRY_INTERVAL)

        self._spawn(_read_console(self.console_socket))

        vmm_pid = await detect_pid(self.config.pid_file, self.config.path)
        self._pids.vmm_pid = vmm_pid
        if self.virtiofs_daemon is not None and self.virtiofs_daemon.pid is not None:
            self._pids.affiliated_pids.append(self.virtiofs_daemon.pid)
        return vmm_pid

    async def stop(self, force: bool) -> None:
        """Stop the virtiofs daemon and ask the VM to quit; kill it when forced."""
        logger.debug("stop virtiofs daemon process")
        if self.virtiofs_daemon is None:
            raise SandboxError("virtiofs daemon is not created")
        self.virtiofs_daemon.stop()

        logger.debug("stop vm %s", self.id)
        if not force:
            await self._get_client().execute("quit")
        elif self.client is not None:
            try:
                await self.client.execute("quit")
            except Exception as e:
                logger.debug("quit failed during forced stop, %s", e)

        try:
            await self._wait_stop(STOP_TIMEOUT_IN_SEC)
        except SandboxError:
            if not force:
                raise
            pid = self._pids.vmm_pid
            if not pid:
                return
            try:
                os.kill(pid, signal.SIGKILL)
            except OSError as e:
                logger.warning("failed to kill stratovirt %s, %s", pid, e)

    async def recover(self) -> None:
        """Reconnect to a running VM and watch its process again."""
        self.client = await self._create_client()
        pid = self._pid()
        self._track_exit(wait_pid(pid))

    # -- devices ---------------------------------------------------------

    async def attach(self, device_info: DeviceInfo) -> None:
        """Cold-plug a device before the VM starts."""
        if not isinstance(device_info, TapDeviceInfo):
            raise UnimplementedError(f"attach for {type(device_info).__name__}")
        fd_indexes = [self.append_fd(fd) for fd in device_info.fds]
        device = tap_net_device(
            device_info.id,
            device_info.name,
            device_info.mac_address,
            fds=fd_indexes,
            bus=DEFAULT_PCIE_BUS,
        )
        self.attach_to_pcie_rootbus(device)

    async def hot_attach(self, device_info: DeviceInfo) -> tuple[BusType, str]:
        """Hot-plug a device into a free root port; return its bus and PCI address."""
        if isinstance(device_info, BlockDeviceInfo):
            device = VirtioBlockDevice(
                driver="",
                id=device_info.id,
                deviceid="",
                file=device_info.path,
                readonly=device_info.read_only,
            )
            index = await self._hot_attach_device(device)
            return self.block_driver.to_bus_type(), f"0000:00:{index:02x}.0"
        if isinstance(device_info, TapDeviceInfo):
            raise UnimplementedError("hot attach for tap device")
        raise UnimplementedError(f"hot attach for {type(device_info).__name__}")

    async def hot_detach(self, id: str) -> None:
        """Hot-unplug is not performed; the call succeeds without effect."""
        return None

    def attach_device(self, device: StratoVirtDevice) -> None:
        self.devices.append(device)

    def append_fd(self, fd: int) -> int:
        """Keep ``fd`` for the hypervisor; return the number it gets in the child."""
        self.fds.append(fd)
        return len(self.fds) - 1 + 3

    def cmdline_params(self) -> list[str]:
        """Full hypervisor argument list: configuration first, then devices."""
        params = self.config.to_cmdline_params("-")
        for device in self.devices:
            params.extend(device.to_cmdline_params("-"))
        return params

    def attach_to_pcie_rootbus(self, device: StratoVirtDevice) -> None:
        """Put ``device`` into the first free slot of pcie.0."""
        slot_index = self._get_empty_pcie_slot_index()
        self.pcie_root_bus.bus.slots[slot_index].occupant = device.id
        device.set_device_addr(slot_index)
        self.devices.append(device)

    def create_pcie_root_ports(self, cap_size: int) -> None:
        """Reserve ``cap_size`` root ports on pcie.0 for later hot-plugging."""
        first = self._get_empty_pcie_slot_index()
        left = PCIE_ROOTBUS_CAPACITY - first
        if left < cap_size:
            raise ResourceExhaustedError(
                f"left pcie slots number: {left}, doesn't meet the require size "
                f"of PCIE RootPorts: {cap_size}"
            )
        root_ports = []
        for i in range(1, cap_size + 1):
            slot_index = first + i - 1
            root_port = RootPort(
                id=f"pcie.{i}",
                port=slot_index,
                index=slot_index,
                bus_name=DEFAULT_PCIE_BUS,
                multi_function=None,
            )
            root_ports.append(dataclasses.replace(root_port))
            self.attach_to_pcie_rootbus(root_port)
        self.pcie_root_ports_pool = PcieRootPorts(
            id="root-ports-pool",
            bus=Bus(
                bus_type=BusType.PCIE,
                id="pcie-root-ports",
                bus_addr=str(first),
                slots=[Slot() for _ in range(cap_size)],
            ),
            root_ports=root_ports,
        )

    def get_empty_rootport_slot(self, device_id: str) -> tuple[str, int]:
        """Claim a free root port for ``device_id``; return its id and slot index."""
        if self.pcie_root_ports_pool is None:
            raise SandboxError("pcie root ports are not created")
        for root_port in self.pcie_root_ports_pool.root_ports:
            if not root_port.device_id:
                root_port.device_id = device_id
                return root_port.id, root_port.index
        raise ResourceExhaustedError("slot of rootport")

    def create_virtiofs_daemon(self, daemon_path: str, base_dir: str, shared_path: str) -> None:
        self.virtiofs_daemon = VirtiofsDaemon(
            path=daemon_path,
            log_path=f"{base_dir}/virtiofs.log",
            socket_path=f"{base_dir}/virtiofs.sock",
            shared_dir=shared_path,
            pid=None,
        )

    # -- queries ---------------------------------------------------------

    async def ping(self) -> None:
        await self._get_client().execute("query-status")

    def socket_address(self) -> str:
        return self.agent_socket

    async def vcpus(self) -> VcpuThreads:
        """Host thread id of every vCPU."""
        result = await self._get_client().execute("query-cpus")
        return VcpuThreads(vcpus={info.cpu: info.thread_id for info in parse_cpu_info(result)})

    def pids(self) -> Pids:
        return dataclasses.replace(self._pids, affiliated_pids=list(self._pids.affiliated_pids))

    # -- internals -------------------------------------------------------

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _track_exit(self, waiter: Awaitable[tuple[int, int]]) -> None:
        self._exit_status = (0, 0)
        exited = asyncio.Event()
        self._exited = exited

        async def record() -> None:
            try:
                status = await waiter
            except SandboxError as e:
                logger.warning("failed to watch stratovirt process, %s", e)
                status = (0, time.time_ns())
            self._exit_status = status
            exited.set()

        self._spawn(record())

    async def _wait_vmm_exit(self, pid_file: str, path: str) -> tuple[int, int]:
        # the direct child only daemonizes; the real process is found via its pid file
        try:
            pid = await detect_pid(pid_file, path)
        except SandboxError:
            logger.warning("failed to get stratovirt pid from %s", pid_file)
            return (0, time.time_ns())
        return await wait_pid(pid)

    async def _launch(self) -> None:
        params = self.cmdline_params()
        path = self.config.path
        pid_file = self.config.pid_file
        logger.debug("stratovirt startup param: %s %s", path, " ".join(params))

        setns = getattr(os, "setns", None)
        if self.netns and setns is None:
            raise SandboxError("entering a network namespace is not supported here")
        netns_fd = None
        if self.netns:
            try:
                netns_fd = os.open(self.netns, os.O_RDONLY | os.O_CLOEXEC)
            except OSError as e:
                raise SandboxError(f"failed to open netns {e}") from e

        fds = list(self.fds)

        def prepare_child() -> None:
            if netns_fd is not None:
                setns(netns_fd, os.CLONE_NEWNET)
            for index, fd in enumerate(fds):
                dest = 3 + index
                if fd == dest:
                    os.set_inheritable(fd, True)
                else:
                    os.dup2(fd, dest)

        reader, writer = os.pipe()
        try:
            proc = await asyncio.create_subprocess_exec(
                path,
                *params,
                stdin=subprocess.DEVNULL,
                stdout=writer,
                stderr=writer,
                close_fds=False,
                preexec_fn=prepare_child,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(reader)
            raise SandboxError(f"failed to spawn stratovirt command: {e}") from e
        finally:
            os.close(writer)
            if netns_fd is not None:
                os.close(netns_fd)

        threading.Thread(target=_log_pipe, args=(reader, "stratovirt"), daemon=True).start()
        returncode = await proc.wait()
        if returncode != 0:
            raise SandboxError(
                f"stratovirt command execute failed, exit with status {returncode}"
            )
        self._track_exit(self._wait_vmm_exit(pid_file, path))

    async def _create_client(self) -> QmpClient:
        if self.config.qmp_socket is None:
            raise SandboxError("failed to get qmp socket path")
        return await QmpClient.connect(self.config.qmp_socket.name)

    def _get_client(self) -> QmpClient:
        if self.client is None:
            raise SandboxError("qmp client is not init")
        return self.client

    async def _wait_stop(self, timeout: float) -> None:
        if self._exited is None or self._exit_status[1] != 0:
            return
        try:
            await asyncio.wait_for(self._exited.wait(), timeout)
        except asyncio.TimeoutError as e:
            raise SandboxError("wait task timeout") from e

    def _pid(self) -> int:
        if self._pids.vmm_pid is None:
            raise SandboxError("empty pid from vmm_pid")
        return self._pids.vmm_pid

    async def _hot_attach_device(self, device: VirtioBlockDevice) -> int:
        rp_id, rp_index = self.get_empty_rootport_slot(device.id)
        client = self._get_client()
        await device.execute_hot_attach(client, rp_id)
        self.hot_attached_devices.append(device)
        return rp_index

    def _get_empty_pcie_slot_index(self) -> int:
        for index, slot in enumerate(self.pcie_root_bus.bus.slots):
            if slot.is_empty():
                return index
        raise ResourceExhaustedError("slots of pcie.0 root bus is full")

    async def _start_virtiofs_daemon(self) -> None:
        if self.virtiofs_daemon is None:
            raise SandboxError("virtiofs daemon is not created")
        try:
            await self.virtiofs_daemon.start()
        except SandboxError as e:
            raise SandboxError(f"start virtiofs daemon process failed: {e}") from e