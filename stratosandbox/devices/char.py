"""Character device backends (sockets, files, ...)."""

from __future__ import annotations

from dataclasses import dataclass

from ..utils import bool_to_socket_nowait, bool_to_socket_server
from .base import ParamGroup, StratoVirtDevice


@dataclass
class CharDevice(StratoVirtDevice):
    """A ``-chardev`` backend; socket backends listen without waiting."""

    backend: str
    id: str
    path: str
    server: bool = True
    nowait: bool = True
    addr: str = ""

    def _cmdline_groups(self) -> list[ParamGroup]:
        properties = [(None, self.backend), ("id", self.id), ("path", self.path)]
        if self.backend == "socket":
            properties.append((None, bool_to_socket_server(self.server)))
            properties.append((None, bool_to_socket_nowait(self.nowait)))
        return [("chardev", properties)]

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return super().to_cmdline_params(hyphen)