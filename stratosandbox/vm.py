"""Hypervisor-independent VM settings and types."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from .utils import InvalidArgumentError

DEFAULT_KERNEL_PATH = "/var/lib/kuasar/vmlinux.bin"


@dataclass
class HypervisorCommonConfig:
    """Settings shared by every hypervisor backend."""

    debug: bool = False
    vcpus: int = 1
    memory_in_mb: int = 1024
    kernel_path: str = DEFAULT_KERNEL_PATH
    image_path: str = ""
    initrd_path: str = ""
    kernel_params: str = ""
    firmware: str = ""
    enable_mem_prealloc: bool = False


class BusType(enum.Enum):
    """Kind of bus a device sits on."""

    PCI = "pci"
    PCIE = "pcie"
    SCSI = "scsi"
    MMIO = "mmio"
    NULL = "null"


class BlockDriver(enum.Enum):
    """Block device driver used for disks handed to the guest."""

    VIRTIO_BLK = "virtio-blk"
    VIRTIO_SCSI = "virtio-scsi"
    VIRTIO_MMIO = "virtio-mmio"

    @classmethod
    def parse(cls, s: str) -> BlockDriver:
        """Driver named by ``s``; unknown names mean virtio-blk."""
        try:
            return cls(s)
        except ValueError:
            return cls.VIRTIO_BLK

    def to_driver_string(self) -> str:
        return _DRIVER_STRINGS[self]

    def to_bus_type(self) -> BusType:
        return _BUS_TYPES[self]

    @classmethod
    def from_bus_type(cls, bus_type: BusType) -> BlockDriver:
        return {
            BusType.PCI: cls.VIRTIO_BLK,
            BusType.SCSI: cls.VIRTIO_SCSI,
            BusType.MMIO: cls.VIRTIO_MMIO,
        }.get(bus_type, cls.VIRTIO_BLK)


_DRIVER_STRINGS = {
    BlockDriver.VIRTIO_BLK: "blk",
    BlockDriver.VIRTIO_MMIO: "mmioblk",
    BlockDriver.VIRTIO_SCSI: "scsi",
}

_BUS_TYPES = {
    BlockDriver.VIRTIO_BLK: BusType.PCI,
    BlockDriver.VIRTIO_MMIO: BusType.NULL,
    BlockDriver.VIRTIO_SCSI: BusType.SCSI,
}


class ShareFsType(enum.Enum):
    """Mechanism used to share host directories with the guest."""

    VIRTIO_9P = "virtio-9p"
    VIRTIO_FS = "virtio-fs"

    @classmethod
    def parse(cls, s: str) -> ShareFsType:
        try:
            return cls(s)
        except ValueError:
            raise InvalidArgumentError(s) from None


@dataclass
class VcpuThreads:
    """Mapping of vCPU index to host thread id."""

    vcpus: dict[int, int] = field(default_factory=dict)


@dataclass
class Pids:
    """Process ids belonging to a running VM."""

    vmm_pid: int | None = None
    affiliated_pids: list[int] = field(default_factory=list)