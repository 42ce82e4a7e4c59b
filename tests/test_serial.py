from stratosandbox.devices.base import DEFAULT_PCIE_BUS, VIRTIO_SERIAL_CONSOLE_ADDR, Transport
from stratosandbox.devices.serial import SerialDevice


def test_serial_device_params():
    device = SerialDevice("virtio-serial0", Transport.PCI, DEFAULT_PCIE_BUS)
    device.set_device_addr(VIRTIO_SERIAL_CONSOLE_ADDR)
    assert device.to_cmdline_params("-") == [
        "-device",
        "virtio-serial-pci,id=virtio-serial0,bus=pcie.0,addr=0x2",
    ]


def test_driver_follows_transport():
    device = SerialDevice("s0", Transport.CCW, "bus1")
    assert device.driver == Transport.CCW.to_driver("virtio-serial")
    assert device.to_cmdline_params("-")[1].startswith(device.driver + ",")


def test_addr_updates_output():
    device = SerialDevice("s0")
    device.set_device_addr(VIRTIO_SERIAL_CONSOLE_ADDR)
    assert device.to_cmdline_params("-")[1].endswith("addr=" + device.get_device_addr())