# stratosandbox

An asyncio library for running sandboxes inside StratoVirt micro-VMs. It builds
the hypervisor command line, keeps track of the slots on the `pcie.0` root bus,
attaches devices, runs a `vhost_user_fs` daemon for the shared directory, and
controls the running VM over its QMP socket.

## Installing

```
pip install .
pip install ".[test]"   # with pytest and pytest-asyncio
```

The package has no third-party dependencies. Running a VM needs Linux, a
StratoVirt binary, `/dev/vhost-vsock` and a virtiofs daemon on the host.

## Configuration

`stratosandbox.config.StratoVirtVMConfig` holds the hypervisor settings: binary
path, machine type, block device driver, the virtiofs daemon path
(`virtiofsd_conf`) and a `stratosandbox.vm.HypervisorCommonConfig` (`common`)
with vCPUs, memory, kernel, image or initrd, kernel parameters, firmware and
memory preallocation.

Exactly one of `common.image_path` and `common.initrd_path` must be set;
otherwise `to_stratovirt_config()` raises `SandboxError`. With an image, the
root-filesystem kernel parameters are appended to the kernel command line.

```python
from stratosandbox.config import StratoVirtVMConfig

vm_config = StratoVirtVMConfig()
vm_config.common.initrd_path = "/var/lib/kuasar/kuasar.initrd"

config = vm_config.to_stratovirt_config()
config.name = "sandbox-1"
config.pid_file = "/run/sandbox-1.pid"
print(config.to_cmdline_params("-"))
```

## Creating and running a VM

`stratosandbox.factory.StratoVirtVMFactory` turns the settings into a
`stratosandbox.machine.StratoVirtVM` with the standard devices in place:

- a virtio-rng device
- a virtio-serial controller, a console chardev and a virtconsole
- the root image as a read-only virtio-blk disk, when an image is configured
- a vhost-vsock channel to the agent (`socket_address()` returns `vsock://<cid>:1024`)
- a vhost-user-fs share of `<base_dir>/shared`, served by a virtiofs daemon
- a pool of ten PCIe root ports for hot-plugging

The guest cid is claimed on `/dev/vhost-vsock` by
`stratosandbox.devices.vsock.find_context_id`; the factory accepts another
allocator as `cid_allocator`.

```python
import asyncio

from stratosandbox.factory import StratoVirtVMFactory
from stratosandbox.machine import BlockDeviceInfo

async def main():
    factory = StratoVirtVMFactory(vm_config)
    vm = await factory.create_vm("abc", "/run/kuasar/abc", "")
    pid = await vm.start()
    print("vmm pid", pid, "agent at", vm.socket_address())
    bus, addr = await vm.hot_attach(
        BlockDeviceInfo(id="drive-1", path="/dev/dm-3", read_only=False)
    )
    await vm.stop(False)

asyncio.run(main())
```

`StratoVirtVM` also offers `attach` (cold-plug a `TapDeviceInfo` as a
virtio-net device), `ping`, `vcpus` (vCPU index to host thread id), `pids`,
`recover` (reconnect to a running VM), `cmdline_params`, and the slot helpers
`attach_to_pcie_rootbus`, `create_pcie_root_ports` and
`get_empty_rootport_slot`.

## Device command lines

Each device renders its own arguments with `to_cmdline_params("-")`. The
device classes live in `stratosandbox.devices`:

- `char.CharDevice`
- `console.VirtConsole`
- `serial.SerialDevice`
- `rng.VirtioRngDevice`
- `rootport.RootPort`
- `vhost_user_fs.VhostUserFs`
- `vsock.VSockDevice`
- `virtio_net.VirtioNetDevice` (and the `tap_net_device` helper)
- `block.VirtioBlockDevice`, which also builds the QMP arguments for hot-plug

```python
from stratosandbox.devices.char import CharDevice

CharDevice("socket", "charconsole0", "/run/console.sock").to_cmdline_params("-")
# ['-chardev', 'socket,id=charconsole0,path=/run/console.sock,server,nowait']
```

## QMP

`stratosandbox.qmp.QmpClient.connect(path)` opens the QMP socket and negotiates
capabilities. Then:

- `execute(command, arguments)` runs a command and returns its result, raising
  `QmpError` on failure;
- `execute_and_wait_event(command, arguments, predicate)` runs a command and
  waits for the first event the predicate accepts;
- `delete_device(device_id)` unplugs a device and waits for its
  `DEVICE_DELETED` event;
- `close()` ends the connection.

`parse_cpu_info` decodes the result of `query-cpus`.

## Other helpers

`stratosandbox.utils` has the error classes (`SandboxError` and its
subclasses), cpuset merging (`merge_cpusets`), resource merging
(`merge_resources`), `get_host_memory_in_mb`, `wait_pid` and atomic file
writing. `stratosandbox.pidfile.detect_pid` waits for the hypervisor's pid file
and checks that the process runs the expected binary.

## What it does not do

- There is no command-line tool and no service; the package is a library to be
  driven from your own asyncio code.
- Configuration is built in code; nothing reads a configuration file.
- `StratoVirtVM.hot_detach` does nothing. Only block devices can be
  hot-attached, and only tap devices can be cold-attached with `attach`.

## Running the tests

```
pytest
```