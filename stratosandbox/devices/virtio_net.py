"""virtio-net device with its tap network backend."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..utils import bool_to_on_off, fds_to_vectors, vec_to_string
from .base import DEFAULT_PCIE_BUS, ParamGroup, StratoVirtDevice, Transport

VIRTIO_NET_DRIVER = "virtio-net"


class NetType(enum.Enum):
    """Kind of host network backend."""

    TAP = "tap"


@dataclass
class VirtioNetDevice(StratoVirtDevice):
    """A ``-netdev`` backend plus the virtio-net device using it."""

    net_type: NetType = NetType.TAP
    transport: Transport = Transport.PCI
    driver: str = ""
    id: str = ""
    device_id: str = ""
    vhost: bool = False
    vhostfds: list[int] = field(default_factory=list)
    fds: list[int] = field(default_factory=list)
    ifname: Optional[str] = None
    pci_bus: Optional[str] = None
    addr: str = ""
    script: Optional[str] = None
    down_script: Optional[str] = None
    mac_address: str = ""
    multi_queue: bool = False
    disable_modern: Optional[bool] = None
    romfile: Optional[str] = None
    queues: Optional[int] = None

    def is_pci(self) -> bool:
        return self.transport is Transport.PCI

    def _cmdline_groups(self) -> list[ParamGroup]:
        netdev = [(None, self.net_type.value), ("id", self.id)]
        if self.vhost:
            netdev.append(("vhost", bool_to_on_off(self.vhost)))
            netdev.append(("vhostfds", vec_to_string(self.vhostfds)))
        if self.fds:
            netdev.append(("fds", vec_to_string(self.fds)))
        else:
            netdev.append(("ifname", self.ifname))
        netdev.extend(
            [("script", self.script), ("downscript", self.down_script), ("queues", self.queues)]
        )

        device = [(None, self.driver), ("netdev", self.id), ("id", self.device_id)]
        if self.fds and self.is_pci():
            device.append(("vectors", fds_to_vectors(self.fds)))
        device.extend(
            [
                ("bus", self.pci_bus),
                ("addr", self.addr),
                ("mac", self.mac_address),
                ("mq", bool_to_on_off(self.multi_queue)),
                ("disable_modern", self.disable_modern),
                ("romfile", self.romfile),
            ]
        )
        return [("netdev", netdev), ("device", device)]

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return super().to_cmdline_params(hyphen)


def tap_net_device(
    id: str,
    name: str,
    mac_address: str,
    fds: Sequence[int] = (),
    bus: Optional[str] = DEFAULT_PCIE_BUS,
) -> VirtioNetDevice:
    """A PCI virtio-net device on tap interface ``name``, multi-queue when fds are given."""
    fd_list = list(fds)
    transport = Transport.PCI
    return VirtioNetDevice(
        net_type=NetType.TAP,
        transport=transport,
        driver=transport.to_driver(VIRTIO_NET_DRIVER),
        id=id,
        device_id=f"virtio-net-{id}",
        vhost=False,
        vhostfds=[],
        fds=fd_list,
        ifname=name,
        pci_bus=bus,
        mac_address=mac_address,
        multi_queue=bool(fd_list),
    )