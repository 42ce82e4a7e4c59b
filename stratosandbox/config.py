"""StratoVirt hypervisor configuration and its command-line rendering."""

from __future__ import annotations

import platform
from dataclasses import dataclass, field
from typing import Optional

from .devices.base import render_params
from .utils import SandboxError
from .vm import HypervisorCommonConfig

MACHINE_TYPE_Q35 = "q35"
MACHINE_TYPE_PC = "pc"
MACHINE_TYPE_VIRT = "virt"
MACHINE_TYPE_PSERIES = "pseries"
MACHINE_TYPE_CCW_VIRTIO = "s390-ccw-virtio"

DEFAULT_STRATOVIRT_PATH = "/usr/bin/stratovirt"
DEFAULT_VHOST_USER_FS_BIN_PATH = "/usr/bin/vhost_user_fs"
DEFAULT_KERNEL_PARAMS = "console=hvc0 console=hvc1 iommu=off debug panic=1 pcie_ports=native"

if platform.machine().lower() in ("aarch64", "arm64"):
    ROOTFS_KERNEL_PARAMS = " root=/dev/vda1 ro rootfstype=ext4"
else:
    ROOTFS_KERNEL_PARAMS = " root=/dev/vda ro rootfstype=ext4"


def _value_param(hyphen: str, key: str, value: object) -> list[str]:
    """A ``-key value`` pair, or nothing when the value is unset or empty."""
    if value is None:
        return []
    text = str(value)
    if not text:
        return []
    return [f"{hyphen}{key}", text]


def _flag_param(hyphen: str, key: str, enabled: bool) -> list[str]:
    return [f"{hyphen}{key}"] if enabled else []


@dataclass
class Machine:
    """The ``-machine`` parameter."""

    type: str = ""
    options: Optional[str] = None

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return render_params(hyphen, [("machine", [(None, self.type), (None, self.options)])])


@dataclass
class Kernel:
    """Kernel, initrd and kernel command line; ``image`` is attached as a disk instead."""

    path: str = ""
    initrd: Optional[str] = None
    image: Optional[str] = None
    kernel_params: str = ""

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return [
            *_value_param(hyphen, "kernel", self.path),
            *_value_param(hyphen, "initrd", self.initrd),
            *_value_param(hyphen, "append", self.kernel_params),
        ]


@dataclass
class QmpSocket:
    """The QMP control socket; it always listens without waiting."""

    param_key: str = ""
    type: str = ""
    name: str = ""
    server: bool = False
    no_wait: bool = False

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return [f"{hyphen}{self.param_key}", f"{self.type}:{self.name},server,nowait"]


@dataclass
class Global:
    """One ``-global`` property."""

    param: str = ""

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return render_params(hyphen, [("global", [(None, self.param)])])


@dataclass
class Smp:
    """The ``-smp`` parameter."""

    cpus: int = 0

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return render_params(hyphen, [("smp", [("cpus", self.cpus)])])


@dataclass
class Memory:
    """The ``-m`` parameter, e.g. ``1024M``."""

    size: str = ""

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return render_params(hyphen, [("m", [(None, self.size)])])


@dataclass
class Knobs:
    """Switches given as bare flags when enabled."""

    daemonize: bool = False
    disable_seccomp: bool = False
    prealloc: bool = False

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return [
            *_flag_param(hyphen, "daemonize", self.daemonize),
            *_flag_param(hyphen, "disable-seccomp", self.disable_seccomp),
            *_flag_param(hyphen, "mem-prealloc", self.prealloc),
        ]


@dataclass
class Firmware:
    """A read-only pflash firmware drive."""

    param_key: str = ""
    file: str = ""

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        return [
            f"{hyphen}{self.param_key}",
            f"file={self.file},if=pflash,format=raw,unit=0,readonly=on",
        ]


@dataclass
class StratoVirtConfig:
    """Everything needed to launch one StratoVirt process, minus devices."""

    name: str = ""
    uuid: str = ""
    path: str = ""
    machine: Machine = field(default_factory=Machine)
    qmp_socket: Optional[QmpSocket] = None
    kernel: Kernel = field(default_factory=Kernel)
    smp: Smp = field(default_factory=Smp)
    memory: Memory = field(default_factory=Memory)
    pid_file: str = ""
    log_file: Optional[str] = None
    global_params: list[Global] = field(default_factory=list)
    knobs: Knobs = field(default_factory=Knobs)
    firmware: Optional[Firmware] = None

    def to_cmdline_params(self, hyphen: str) -> list[str]:
        params = [
            *_value_param(hyphen, "name", self.name),
            *_value_param(hyphen, "uuid", self.uuid),
            *self.machine.to_cmdline_params(hyphen),
        ]
        if self.qmp_socket is not None:
            params.extend(self.qmp_socket.to_cmdline_params(hyphen))
        params.extend(self.kernel.to_cmdline_params(hyphen))
        params.extend(self.smp.to_cmdline_params(hyphen))
        params.extend(self.memory.to_cmdline_params(hyphen))
        params.extend(_value_param(hyphen, "pidfile", self.pid_file))
        params.extend(_value_param(hyphen, "D", self.log_file))
        for global_param in self.global_params:
            params.extend(global_param.to_cmdline_params(hyphen))
        params.extend(self.knobs.to_cmdline_params(hyphen))
        if self.firmware is not None:
            params.extend(self.firmware.to_cmdline_params(hyphen))
        return params


@dataclass
class VirtiofsdConfig:
    """Location of the virtiofs daemon binary."""

    path: str = DEFAULT_VHOST_USER_FS_BIN_PATH


@dataclass
class StratoVirtVMConfig:
    """User-facing StratoVirt settings, as read from the sandboxer configuration."""

    path: str = "stratovirt"
    machine_type: str = MACHINE_TYPE_VIRT
    block_device_driver: str = "virtio-blk"
    common: HypervisorCommonConfig = field(default_factory=HypervisorCommonConfig)
    virtiofsd_conf: VirtiofsdConfig = field(default_factory=VirtiofsdConfig)

    def to_stratovirt_config(self) -> StratoVirtConfig:
        """Build the launch configuration; exactly one of image and initrd must be set."""
        common = self.common
        if common.image_path and common.initrd_path:
            raise SandboxError("both image and initrd defined in config is not supported")
        if not common.image_path and not common.initrd_path:
            raise SandboxError("either image or initrd defined in config is not supported")

        if common.kernel_params:
            kernel_params = f"{DEFAULT_KERNEL_PARAMS} {common.kernel_params}"
        else:
            kernel_params = DEFAULT_KERNEL_PARAMS
        if common.image_path:
            kernel_params += ROOTFS_KERNEL_PARAMS

        firmware = None
        if common.firmware:
            firmware = Firmware(param_key="drive", file=common.firmware)

        return StratoVirtConfig(
            path=self.path or DEFAULT_STRATOVIRT_PATH,
            machine=Machine(type=self.machine_type),
            smp=Smp(cpus=common.vcpus),
            memory=Memory(size=f"{common.memory_in_mb}M"),
            kernel=Kernel(
                path=common.kernel_path,
                image=common.image_path or None,
                initrd=common.initrd_path or None,
                kernel_params=kernel_params,
            ),
            global_params=[Global(param="pcie-root-port.fast-unplug=1")],
            knobs=Knobs(
                daemonize=True,
                disable_seccomp=True,
                prealloc=common.enable_mem_prealloc,
            ),
            firmware=firmware,
        )