from stratosandbox.devices.base import DEFAULT_PCIE_BUS, VHOST_USER_FS_ADDR, Transport
from stratosandbox.devices.char import CharDevice
from stratosandbox.devices.vhost_user_fs import DEFAULT_MOUNT_TAG_NAME, VhostUserFs


def test_vhost_user_fs_device_params():
    absolute_virtiofs_sock = "/path/to/virtiofs.sock"
    chardev_id = "virtio-fs-test"
    chardev = CharDevice("socket", chardev_id, absolute_virtiofs_sock)
    result = list(chardev.to_cmdline_params("-"))

    device = VhostUserFs("vhost-user-fs-test", Transport.PCI, chardev_id, "myfs", DEFAULT_PCIE_BUS)
    device.set_device_addr(VHOST_USER_FS_ADDR)
    result.extend(device.to_cmdline_params("-"))

    assert result == [
        "-chardev",
        "socket,id=virtio-fs-test,path=/path/to/virtiofs.sock,server,nowait",
        "-device",
        "vhost-user-fs-pci,id=vhost-user-fs-test,chardev=virtio-fs-test,tag=myfs,bus=pcie.0,addr=0x4",
    ]


def test_driver_follows_transport():
    device = VhostUserFs("fs", Transport.PCI, "chr", DEFAULT_MOUNT_TAG_NAME, DEFAULT_PCIE_BUS)
    assert device.driver == "vhost-user-fs-pci"
    assert device.tag == "kuasar"


def test_device_addr_roundtrip():
    device = VhostUserFs("fs", Transport.PCI, "chr", "tag", DEFAULT_PCIE_BUS)
    device.set_device_addr(VHOST_USER_FS_ADDR)
    assert device.get_device_addr() == "0x4"