import pytest

from stratosandbox.utils import InvalidArgumentError
from stratosandbox.vm import (
    BlockDriver,
    BusType,
    HypervisorCommonConfig,
    Pids,
    ShareFsType,
    VcpuThreads,
)


def test_hypervisor_common_config_defaults():
    config = HypervisorCommonConfig()
    assert config.vcpus == 1
    assert config.memory_in_mb == 1024
    assert config.kernel_path == "/var/lib/kuasar/vmlinux.bin"
    assert config.image_path == ""
    assert config.debug is False
    assert config.enable_mem_prealloc is False


@pytest.mark.parametrize(
    "name, driver",
    [
        ("virtio-blk", BlockDriver.VIRTIO_BLK),
        ("virtio-scsi", BlockDriver.VIRTIO_SCSI),
        ("virtio-mmio", BlockDriver.VIRTIO_MMIO),
        ("unknown", BlockDriver.VIRTIO_BLK),
    ],
)
def test_block_driver_parse(name, driver):
    assert BlockDriver.parse(name) is driver


def test_block_driver_strings():
    assert BlockDriver.VIRTIO_BLK.to_driver_string() == "blk"
    assert BlockDriver.VIRTIO_MMIO.to_driver_string() == "mmioblk"
    assert BlockDriver.VIRTIO_SCSI.to_driver_string() == "scsi"


def test_block_driver_bus_types():
    assert BlockDriver.VIRTIO_BLK.to_bus_type() is BusType.PCI
    assert BlockDriver.VIRTIO_SCSI.to_bus_type() is BusType.SCSI
    assert BlockDriver.VIRTIO_MMIO.to_bus_type() is BusType.NULL


@pytest.mark.parametrize("driver", [BlockDriver.VIRTIO_BLK, BlockDriver.VIRTIO_SCSI])
def test_block_driver_bus_round_trip(driver):
    assert BlockDriver.from_bus_type(driver.to_bus_type()) is driver


def test_block_driver_from_other_bus_types():
    assert BlockDriver.from_bus_type(BusType.MMIO) is BlockDriver.VIRTIO_MMIO
    assert BlockDriver.from_bus_type(BusType.PCIE) is BlockDriver.VIRTIO_BLK


def test_share_fs_type_parse():
    assert ShareFsType.parse("virtio-fs") is ShareFsType.VIRTIO_FS
    assert ShareFsType.parse("virtio-9p") is ShareFsType.VIRTIO_9P


def test_share_fs_type_parse_error():
    with pytest.raises(InvalidArgumentError):
        ShareFsType.parse("nfs")


def test_pids_defaults_are_independent():
    a = Pids()
    b = Pids()
    a.affiliated_pids.append(5)
    assert a.vmm_pid is None
    assert b.affiliated_pids == []


def test_vcpu_threads_holds_mapping():
    threads = VcpuThreads({0: 100, 1: 101})
    assert threads.vcpus[1] == 101
    assert VcpuThreads().vcpus == {}