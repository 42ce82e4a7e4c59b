"""vhost-vsock device and guest context id allocation."""

from __future__ import annotations

import asyncio
import fcntl
import os
import random
import struct
from dataclasses import dataclass, field

from ..utils import SandboxError
from .base import ParamGroup, StratoVirtDevice, Transport

VHOST_VSOCK_DEV_PATH = "/dev/vhost-vsock"
IOCTL_VHOST_SET_GUEST_ID = 0x4008AF60
IOCTL_TRY_TIMES = 10000
VHOST_VSOCK_DRIVER = "vhost-vsock"

_MAX_CID = 2**31 - 1


@dataclass
class VSockDevice(StratoVirtDevice):
    """A vhost-vsock device with guest context id ``context_id``."""

    context_id: int
    transport: Transport
    bus: str
    vhostfd: int
    addr: str = ""
    driver: str = field(init=False)
    id: str = field(init=False)

    def __post_init__(self) -> None:
        self.driver = self.transport.to_driver(VHOST_VSOCK_DRIVER)
        self.id = f"vsock-{self.context_id}"

    def _cmdline_groups(self) -> list[ParamGroup]:
        return [
            (
                "device",
                [
                    (None, self.driver),
                    ("id", self.id),
                    ("guest-cid", self.context_id),
                    ("bus", self.bus),
                    ("addr", self.addr),
                    ("vhostfd", self.vhostfd),
                ],
            )
        ]

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return super().to_cmdline_params(hyphen)


def _claim_context_id(device_path: str) -> tuple[int, int]:
    try:
        fd = os.open(device_path, os.O_RDWR)
    except OSError as e:
        raise SandboxError(f"failed to open {device_path}: {e}") from e
    for _ in range(IOCTL_TRY_TIMES):
        cid = random.randrange(3, _MAX_CID)
        try:
            fcntl.ioctl(fd, IOCTL_VHOST_SET_GUEST_ID, struct.pack("=Q", cid))
        except OSError:
            continue
        return fd, cid
    os.close(fd)
    raise SandboxError(f"tried {IOCTL_TRY_TIMES} times, but can not set guest cid")


async def find_context_id(device_path: str = VHOST_VSOCK_DEV_PATH) -> tuple[int, int]:
    """Open the vhost-vsock device and claim a free guest cid.

    Returns the open file descriptor and the claimed cid.
    """
    return await asyncio.to_thread(_claim_context_id, device_path)