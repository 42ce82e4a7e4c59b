"""PCIe root ports used as hot-plug targets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .base import (
    DEFAULT_PCIE_BUS,
    Bus,
    ParamGroup,
    StratoVirtDevice,
    format_device_addr,
)

PCIE_ROOT_PORT_DRIVER = "pcie-root-port"


@dataclass
class RootPort(StratoVirtDevice):
    """A pcie-root-port; ``device_id`` names the device plugged into it."""

    id: str
    port: int
    index: int
    bus_name: str = DEFAULT_PCIE_BUS
    multi_function: Optional[bool] = None
    addr: str = ""
    device_id: str = ""
    device_type: str = field(default=PCIE_ROOT_PORT_DRIVER, init=False)

    def _cmdline_groups(self) -> list[ParamGroup]:
        return [
            (
                "device",
                [
                    (None, self.device_type),
                    ("id", self.id),
                    ("port", format_device_addr(self.port)),
                    ("bus", self.bus_name),
                    ("addr", self.addr),
                    ("multifunction", self.multi_function),
                ],
            )
        ]

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return super().to_cmdline_params(hyphen)


@dataclass
class PcieRootPorts:
    """Pool of root ports available for hot-plugging."""

    id: str = ""
    bus: Bus = field(default_factory=Bus)
    root_ports: list[RootPort] = field(default_factory=list)