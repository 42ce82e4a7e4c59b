"""virtio-blk device: cold-plug arguments and QMP hot-plug."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..utils import InvalidArgumentError, bool_to_on_off
from .base import ParamGroup, StratoVirtDevice

logger = logging.getLogger(__name__)

VIRTIO_BLK_DRIVER = "virtio-blk"


def _on_off(value: Optional[bool]) -> Optional[str]:
    return None if value is None else bool_to_on_off(value)


@dataclass
class VirtioBlockDevice(StratoVirtDevice):
    """A ``-drive`` backend and the block device exposing it."""

    driver: str
    id: str
    deviceid: str = ""
    file: Optional[str] = None
    readonly: Optional[bool] = None
    interface: Optional[str] = None
    direct: Optional[bool] = None
    bus: Optional[str] = None
    addr: str = ""

    def _cmdline_groups(self) -> list[ParamGroup]:
        return [
            (
                "device",
                [
                    (None, self.driver),
                    ("drive", self.id),
                    ("id", self.deviceid),
                    ("bus", self.bus),
                    ("addr", self.addr),
                ],
            ),
            (
                "drive",
                [
                    ("id", self.id),
                    ("file", self.file),
                    ("if", self.interface),
                    ("readonly", _on_off(self.readonly)),
                    ("direct", _on_off(self.direct)),
                ],
            ),
        ]

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return super().to_cmdline_params(hyphen)

    @property
    def qmp_device_id(self) -> str:
        return f"virtio-{self.id}"

    def blockdev_add_args(self) -> dict[str, Any]:
        """Arguments of the ``blockdev-add`` command for a raw image."""
        if self.file is None:
            raise InvalidArgumentError(f"block device {self.id} has no backing file")
        args: dict[str, Any] = {"driver": "raw"}
        if self.readonly is not None:
            args["read-only"] = self.readonly
        args["node-name"] = self.id
        args["cache"] = {"direct": True}
        args["file"] = {"driver": "file", "filename": self.file}
        return args

    def device_add_args(self, rp_id: str) -> dict[str, Any]:
        """Arguments of the ``device_add`` command plugging into root port ``rp_id``."""
        return {
            "driver": "virtio-blk-pci",
            "id": self.qmp_device_id,
            "bus": rp_id,
            "addr": "0x0",
            "drive": self.id,
        }

    def device_del_args(self) -> dict[str, Any]:
        return {"id": self.qmp_device_id}

    def blockdev_del_args(self) -> dict[str, Any]:
        return {"node-name": self.id}

    async def execute_hot_attach(self, client, rp_id: str) -> None:
        """Add the block backend and the device; undo the backend if the device fails."""
        logger.debug("hot attach block device %s", self.id)
        await client.execute("blockdev-add", self.blockdev_add_args())
        try:
            await client.execute("device_add", self.device_add_args(rp_id))
        except Exception:
            try:
                await client.execute("blockdev-del", self.blockdev_del_args())
            except Exception as e:
                logger.error("failed to delete blockdev after device_add failed, %s", e)
            raise

    async def execute_hot_detach(self, client) -> None:
        """Remove the device, wait for it to go, then remove its backend."""
        logger.debug("hot detach device %s", self.id)
        await client.delete_device(self.qmp_device_id)
        await client.execute("blockdev-del", self.blockdev_del_args())