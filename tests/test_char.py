from stratosandbox.devices.char import CharDevice


def test_char_device_params():
    device = CharDevice("socket", "charconsole0", "/run/vc/vm/sandbox-id/console.sock")
    assert device.to_cmdline_params("-") == [
        "-chardev",
        "socket,id=charconsole0,path=/run/vc/vm/sandbox-id/console.sock,server,nowait",
    ]


def test_non_socket_backend_has_no_server_flags():
    device = CharDevice("file", "log0", "/tmp/log")
    parts = device.to_cmdline_params("-")[1].split(",")
    assert "server" not in parts
    assert "nowait" not in parts
    assert parts[0] == "file"


def test_socket_without_server_omits_flag():
    device = CharDevice("socket", "c0", "/tmp/s.sock", server=False)
    parts = device.to_cmdline_params("-")[1].split(",")
    assert "server" not in parts
    assert parts[-1] == "nowait"


def test_addr_is_not_rendered():
    device = CharDevice("socket", "c0", "/tmp/s.sock")
    device.set_device_addr(3)
    assert device.get_device_addr() == "0x3"
    assert "addr" not in device.to_cmdline_params("-")[1]