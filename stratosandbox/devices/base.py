"""Common device plumbing: transports, PCIe slots and command-line rendering."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Tuple

from ..vm import BusType

PCIE_ROOTPORT_CAPACITY = 10
PCIE_ROOTBUS_CAPACITY = 32

DEFAULT_PCIE_BUS = "pcie.0"
DEFAULT_RNG_DEVICE_ID = "rng0"
DEFAULT_SERIAL_DEVICE_ID = "virtio-serial0"
DEFAULT_CONSOLE_DEVICE_ID = "virtio-console0"
DEFAULT_CONSOLE_CHARDEV_ID = "charconsole0"

VIRTIO_RND_DEVICE_ADDR = 1
VIRTIO_SERIAL_CONSOLE_ADDR = 2
VHOST_VSOCK_ADDR = 3
VHOST_USER_FS_ADDR = 4
ROOTPORT_PCI_START_ADDR = 5

# One property of a command-line parameter: (key or None for a bare value, value).
Property = Tuple[Optional[str], object]
# One parameter: (parameter name, its properties in order).
ParamGroup = Tuple[str, Sequence[Property]]


class Transport(enum.Enum):
    """How a virtio device is connected to the guest."""

    PCI = "pci"
    CCW = "ccw"
    MMIO = "device"

    def to_driver(self, driver: str) -> str:
        """Full driver name for a virtio driver on this transport."""
        return f"{driver}-{self.value}"


@dataclass
class Slot:
    """One slot of a bus; ``occupant`` is the id of the device using it."""

    occupant: Optional[str] = None

    def is_empty(self) -> bool:
        return self.occupant is None


@dataclass
class Bus:
    """A bus with a fixed number of slots."""

    bus_type: BusType = BusType.PCIE
    id: str = ""
    bus_addr: str = ""
    slots: list[Slot] = field(default_factory=list)


@dataclass
class PcieRootBus:
    """Bookkeeping for the slots of the pcie.0 root bus; not a real device."""

    id: str = ""
    bus: Bus = field(default_factory=Bus)


def format_device_addr(addr: int) -> str:
    """Hexadecimal device address as used on the command line, e.g. ``0x5``."""
    return f"{addr:#x}"


def _render_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_params(hyphen: str, groups: Iterable[ParamGroup]) -> list[str]:
    """Turn parameter groups into ``[-name, "a,key=b,..."]`` argument pairs.

    Properties whose value is None or renders empty are left out.
    """
    params: list[str] = []
    for name, properties in groups:
        items = []
        for key, value in properties:
            if value is None:
                continue
            text = _render_value(value)
            if not text:
                continue
            items.append(text if key is None else f"{key}={text}")
        params.append(f"{hyphen}{name}")
        params.append(",".join(items))
    return params


class StratoVirtDevice(ABC):
    """A device that contributes arguments to the hypervisor command line.

    Subclasses provide ``id`` and ``addr`` attributes and describe their
    parameters in ``_cmdline_groups``.
    """

    id: str
    addr: str

    @abstractmethod
    def _cmdline_groups(self) -> list[ParamGroup]:
        """Parameters of this device, in command-line order."""

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return render_params(hyphen, self._cmdline_groups())

    def set_device_addr(self, addr: int) -> None:
        self.addr = format_device_addr(addr)

    def get_device_addr(self) -> str:
        return self.addr


def create_pcie_root_bus() -> PcieRootBus:
    """The pcie.0 root bus, with slot 0 reserved."""
    slots = [Slot() for _ in range(PCIE_ROOTBUS_CAPACITY)]
    slots[0].occupant = "reserved"
    return PcieRootBus(
        id=DEFAULT_PCIE_BUS,
        bus=Bus(bus_type=BusType.PCIE, id=DEFAULT_PCIE_BUS, bus_addr="", slots=slots),
    )