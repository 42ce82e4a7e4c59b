import pytest

from stratosandbox.config import (
    DEFAULT_KERNEL_PARAMS,
    DEFAULT_STRATOVIRT_PATH,
    ROOTFS_KERNEL_PARAMS,
    Firmware,
    Knobs,
    QmpSocket,
    StratoVirtVMConfig,
)
from stratosandbox.utils import SandboxError


def _qmp_socket():
    return QmpSocket(
        param_key="qmp",
        type="unix",
        name="/path/to/qmp.sock",
        server=True,
        no_wait=True,
    )


def test_stratovirt_params():
    vmconfig = StratoVirtVMConfig()
    vmconfig.common.initrd_path = "/var/lib/kuasar/initrd"

    config = vmconfig.to_stratovirt_config()
    config.pid_file = "/path/to/pid"
    config.qmp_socket = _qmp_socket()
    config.uuid = "6e7b0e90-3b2e-4179-bc30-43d2b5b5964f"
    config.knobs.daemonize = True
    config.knobs.disable_seccomp = True
    config.knobs.prealloc = True
    config.name = "sandbox-1"
    config.log_file = "/path/to/log"

    assert config.to_cmdline_params("-") == [
        "-name",
        "sandbox-1",
        "-uuid",
        "6e7b0e90-3b2e-4179-bc30-43d2b5b5964f",
        "-machine",
        "virt",
        "-qmp",
        "unix:/path/to/qmp.sock,server,nowait",
        "-kernel",
        "/var/lib/kuasar/vmlinux.bin",
        "-initrd",
        "/var/lib/kuasar/initrd",
        "-append",
        "console=hvc0 console=hvc1 iommu=off debug panic=1 pcie_ports=native",
        "-smp",
        "cpus=1",
        "-m",
        "1024M",
        "-pidfile",
        "/path/to/pid",
        "-D",
        "/path/to/log",
        "-global",
        "pcie-root-port.fast-unplug=1",
        "-daemonize",
        "-disable-seccomp",
        "-mem-prealloc",
    ]


def test_stratovirt_params_with_image():
    vmconfig = StratoVirtVMConfig()
    vmconfig.common.image_path = "/var/lib/kuasar/image"

    config = vmconfig.to_stratovirt_config()
    config.pid_file = "/path/to/pid"
    config.qmp_socket = _qmp_socket()
    config.uuid = "6e7b0e90-3b2e-4179-bc30-43d2b5b5964f"
    config.knobs.daemonize = True
    config.knobs.disable_seccomp = True
    config.name = "sandbox-1"
    config.log_file = "/path/to/log"

    append_params = (
        "console=hvc0 console=hvc1 iommu=off debug panic=1 pcie_ports=native"
        + ROOTFS_KERNEL_PARAMS
    )
    assert config.to_cmdline_params("-") == [
        "-name",
        "sandbox-1",
        "-uuid",
        "6e7b0e90-3b2e-4179-bc30-43d2b5b5964f",
        "-machine",
        "virt",
        "-qmp",
        "unix:/path/to/qmp.sock,server,nowait",
        "-kernel",
        "/var/lib/kuasar/vmlinux.bin",
        "-append",
        append_params,
        "-smp",
        "cpus=1",
        "-m",
        "1024M",
        "-pidfile",
        "/path/to/pid",
        "-D",
        "/path/to/log",
        "-global",
        "pcie-root-port.fast-unplug=1",
        "-daemonize",
        "-disable-seccomp",
    ]


def test_image_is_kept_out_of_the_command_line():
    vmconfig = StratoVirtVMConfig()
    vmconfig.common.image_path = "/var/lib/kuasar/image"
    config = vmconfig.to_stratovirt_config()
    assert config.kernel.image == "/var/lib/kuasar/image"
    assert config.kernel.initrd is None
    assert "/var/lib/kuasar/image" not in config.to_cmdline_params("-")


def test_both_image_and_initrd_is_rejected():
    vmconfig = StratoVirtVMConfig()
    vmconfig.common.image_path = "/var/lib/kuasar/image"
    vmconfig.common.initrd_path = "/var/lib/kuasar/initrd"
    with pytest.raises(SandboxError, match="both image and initrd"):
        vmconfig.to_stratovirt_config()


def test_neither_image_nor_initrd_is_rejected():
    with pytest.raises(SandboxError):
        StratoVirtVMConfig().to_stratovirt_config()


def test_custom_kernel_params_are_appended():
    vmconfig = StratoVirtVMConfig()
    vmconfig.common.initrd_path = "/var/lib/kuasar/initrd"
    vmconfig.common.kernel_params = "quiet"
    config = vmconfig.to_stratovirt_config()
    assert config.kernel.kernel_params == f"{DEFAULT_KERNEL_PARAMS} quiet"


def test_empty_path_falls_back_to_default_binary():
    vmconfig = StratoVirtVMConfig(path="")
    vmconfig.common.initrd_path = "/var/lib/kuasar/initrd"
    assert vmconfig.to_stratovirt_config().path == DEFAULT_STRATOVIRT_PATH


def test_configured_path_is_not_a_parameter():
    vmconfig = StratoVirtVMConfig()
    vmconfig.common.initrd_path = "/var/lib/kuasar/initrd"
    config = vmconfig.to_stratovirt_config()
    assert config.path == "stratovirt"
    assert "stratovirt" not in config.to_cmdline_params("-")


def test_firmware_from_common_config():
    vmconfig = StratoVirtVMConfig()
    vmconfig.common.initrd_path = "/var/lib/kuasar/initrd"
    vmconfig.common.firmware = "/path/to/fw.fd"
    config = vmconfig.to_stratovirt_config()
    assert config.firmware == Firmware(param_key="drive", file="/path/to/fw.fd")
    assert config.to_cmdline_params("-")[-2:] == [
        "-drive",
        "file=/path/to/fw.fd,if=pflash,format=raw,unit=0,readonly=on",
    ]


def test_vcpus_memory_and_prealloc_follow_common_config():
    vmconfig = StratoVirtVMConfig()
    vmconfig.common.initrd_path = "/var/lib/kuasar/initrd"
    vmconfig.common.vcpus = 4
    vmconfig.common.memory_in_mb = 2048
    vmconfig.common.enable_mem_prealloc = True
    config = vmconfig.to_stratovirt_config()
    params = config.to_cmdline_params("-")
    assert params[params.index("-smp") + 1] == "cpus=4"
    assert params[params.index("-m") + 1] == "2048M"
    assert config.knobs.prealloc is True
    assert "-mem-prealloc" in params


def test_disabled_knobs_render_nothing():
    assert Knobs().to_cmdline_params("-") == []
    assert Knobs(daemonize=True).to_cmdline_params("--") == ["--daemonize"]


def test_qmp_socket_always_listens_without_waiting():
    socket = QmpSocket(param_key="qmp", type="unix", name="/tmp/q.sock")
    assert socket.to_cmdline_params("-") == ["-qmp", "unix:/tmp/q.sock,server,nowait"]