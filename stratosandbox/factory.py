"""Builds StratoVirt VMs with the standard sandbox device layout."""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Awaitable, Callable

from .config import QmpSocket, StratoVirtVMConfig
from .devices.base import (
    DEFAULT_CONSOLE_CHARDEV_ID,
    DEFAULT_CONSOLE_DEVICE_ID,
    DEFAULT_PCIE_BUS,
    DEFAULT_RNG_DEVICE_ID,
    DEFAULT_SERIAL_DEVICE_ID,
    PCIE_ROOTPORT_CAPACITY,
    Transport,
    create_pcie_root_bus,
)
from .devices.block import VIRTIO_BLK_DRIVER, VirtioBlockDevice
from .devices.char import CharDevice
from .devices.console import VirtConsole
from .devices.rng import VirtioRngDevice
from .devices.serial import SerialDevice
from .devices.vhost_user_fs import DEFAULT_MOUNT_TAG_NAME, VhostUserFs
from .devices.vsock import VSockDevice, find_context_id
from .machine import StratoVirtVM
from .vm import BlockDriver

SHARED_DIR_SUFFIX = "shared"
AGENT_VSOCK_PORT = 1024

CidAllocator = Callable[[], Awaitable[tuple[int, int]]]


class StratoVirtVMFactory:
    """Creates VMs from a default configuration.

    ``cid_allocator`` returns an open vhost-vsock fd and the guest cid claimed on it.
    """

    def __init__(
        self, config: StratoVirtVMConfig, cid_allocator: CidAllocator = find_context_id
    ) -> None:
        self.default_config = config
        self._cid_allocator = cid_allocator

    async def create_vm(self, id: str, base_dir: str, netns: str = "") -> StratoVirtVM:
        """A VM for sandbox ``id`` whose runtime files live in ``base_dir``."""
        vm = StratoVirtVM(id, netns, base_dir)
        vm.config = self.default_config.to_stratovirt_config()
        vm.config.uuid = str(uuid.uuid4())
        vm.config.name = f"sandbox-{id}"
        vm.config.pid_file = f"{base_dir}/sandbox-{id}.pid"
        vm.block_driver = BlockDriver.parse(self.default_config.block_device_driver)
        vm.config.log_file = f"{base_dir}/sandbox-{id}.log"

        vm.config.qmp_socket = QmpSocket(
            param_key="qmp",
            type="unix",
            name=f"/run/{id}-qmp.sock",
            server=True,
            no_wait=True,
        )

        vm.pcie_root_bus = create_pcie_root_bus()

        vm.attach_to_pcie_rootbus(
            VirtioRngDevice(DEFAULT_RNG_DEVICE_ID, "/dev/urandom", Transport.PCI, DEFAULT_PCIE_BUS)
        )

        vm.attach_to_pcie_rootbus(
            SerialDevice(DEFAULT_SERIAL_DEVICE_ID, Transport.PCI, DEFAULT_PCIE_BUS)
        )
        vm.attach_device(CharDevice("socket", DEFAULT_CONSOLE_CHARDEV_ID, vm.console_socket))
        vm.attach_device(VirtConsole(DEFAULT_CONSOLE_DEVICE_ID, DEFAULT_CONSOLE_CHARDEV_ID))

        if vm.config.kernel.image is not None:
            image_device = VirtioBlockDevice(
                driver=Transport.PCI.to_driver(VIRTIO_BLK_DRIVER),
                id="rootfs",
                deviceid="blk-0",
                file=vm.config.kernel.image,
                readonly=True,
                bus=DEFAULT_PCIE_BUS,
            )
            vm.attach_to_pcie_rootbus(image_device)

        fd, cid = await self._cid_allocator()
        fd_index = vm.append_fd(fd)
        vm.attach_to_pcie_rootbus(VSockDevice(cid, Transport.PCI, DEFAULT_PCIE_BUS, fd_index))
        vm.agent_socket = f"vsock://{cid}:{AGENT_VSOCK_PORT}"

        share_fs_path = f"{base_dir}/{SHARED_DIR_SUFFIX}"
        await asyncio.to_thread(Path(share_fs_path).mkdir, parents=True, exist_ok=True)
        chardev_id = f"virtio-fs-{id}"
        vm.attach_device(CharDevice("socket", chardev_id, f"{base_dir}/virtiofs.sock"))
        vm.attach_to_pcie_rootbus(
            VhostUserFs(
                id=f"vhost-user-fs-{id}",
                transport=Transport.PCI,
                chardev_id=chardev_id,
                tag=DEFAULT_MOUNT_TAG_NAME,
                bus=DEFAULT_PCIE_BUS,
            )
        )

        vm.create_virtiofs_daemon(self.default_config.virtiofsd_conf.path, base_dir, share_fs_path)

        vm.create_pcie_root_ports(PCIE_ROOTPORT_CAPACITY)
        return vm