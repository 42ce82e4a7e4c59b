"""virtio-serial controller."""

from __future__ import annotations

from dataclasses import dataclass, field

from .base import DEFAULT_PCIE_BUS, ParamGroup, StratoVirtDevice, Transport

VIRTIO_SERIAL_DRIVER = "virtio-serial"


@dataclass
class SerialDevice(StratoVirtDevice):
    """A virtio-serial controller on ``bus``."""

    id: str
    transport: Transport = Transport.PCI
    bus: str = DEFAULT_PCIE_BUS
    addr: str = ""
    driver: str = field(init=False)

    def __post_init__(self) -> None:
        self.driver = self.transport.to_driver(VIRTIO_SERIAL_DRIVER)

    def _cmdline_groups(self) -> list[ParamGroup]:
        return [
            (
                "device",
                [(None, self.driver), ("id", self.id), ("bus", self.bus), ("addr", self.addr)],
            )
        ]

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return super().to_cmdline_params(hyphen)