"""vhost-user-fs device backed by an external virtiofs daemon."""

from __future__ import annotations

from dataclasses import dataclass, field

from .base import DEFAULT_PCIE_BUS, ParamGroup, StratoVirtDevice, Transport

VHOST_USER_FS_DRIVER = "vhost-user-fs"
DEFAULT_MOUNT_TAG_NAME = "kuasar"


@dataclass
class VhostUserFs(StratoVirtDevice):
    """A vhost-user-fs device talking to the daemon through ``chardev_id``."""

    id: str
    transport: Transport = Transport.PCI
    chardev_id: str = ""
    tag: str = DEFAULT_MOUNT_TAG_NAME
    bus: str = DEFAULT_PCIE_BUS
    addr: str = ""
    driver: str = field(init=False)

    def __post_init__(self) -> None:
        self.driver = self.transport.to_driver(VHOST_USER_FS_DRIVER)

    def _cmdline_groups(self) -> list[ParamGroup]:
        return [
            (
                "device",
                [
                    (None, self.driver),
                    ("id", self.id),
                    ("chardev", self.chardev_id),
                    ("tag", self.tag),
                    ("bus", self.bus),
                    ("addr", self.addr),
                ],
            )
        ]

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return super().to_cmdline_params(hyphen)