"""virtio-rng device and its random-number backend object."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .base import DEFAULT_PCIE_BUS, ParamGroup, StratoVirtDevice, Transport

VIRTIO_RNG_DRIVER = "virtio-rng"


@dataclass
class VirtioRngDevice(StratoVirtDevice):
    """An ``rng-random`` object reading ``filename`` and the device using it."""

    id: str
    filename: str
    transport: Transport = Transport.PCI
    bus: str = DEFAULT_PCIE_BUS
    max_bytes: Optional[int] = None
    period: Optional[int] = None
    addr: str = ""
    object_type: str = field(default="rng-random", init=False)
    driver: str = field(init=False)
    device_id: str = field(init=False)

    def __post_init__(self) -> None:
        self.driver = self.transport.to_driver(VIRTIO_RNG_DRIVER)
        self.device_id = f"virtio-{self.id}"

    def _cmdline_groups(self) -> list[ParamGroup]:
        return [
            ("object", [(None, self.object_type), ("id", self.id), ("filename", self.filename)]),
            (
                "device",
                [
                    (None, self.driver),
                    ("rng", self.id),
                    ("id", self.device_id),
                    ("max_bytes", self.max_bytes),
                    ("period", self.period),
                    ("bus", self.bus),
                    ("addr", self.addr),
                ],
            ),
        ]

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return super().to_cmdline_params(hyphen)