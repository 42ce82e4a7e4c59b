"""virtconsole device bound to a character backend."""

from __future__ import annotations

from dataclasses import dataclass

from .base import ParamGroup, StratoVirtDevice

VIRT_CONSOLE_DRIVER = "virtconsole"


@dataclass
class VirtConsole(StratoVirtDevice):
    """A virtio console port attached to ``chardev``."""

    id: str
    chardev: str
    driver: str = VIRT_CONSOLE_DRIVER
    addr: str = ""

    def _cmdline_groups(self) -> list[ParamGroup]:
        return [("device", [(None, self.driver), ("id", self.id), ("chardev", self.chardev)])]

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return super().to_cmdline_params(hyphen)