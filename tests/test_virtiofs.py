import asyncio
import shutil
import subprocess

import pytest

from stratosandbox.utils import SandboxError
from stratosandbox.virtiofs import VirtiofsDaemon


def test_cmdline_params():
    daemon = VirtiofsDaemon(
        path="/usr/bin/vhost_user_fs",
        log_path="/path/to/virtiofs.log",
        socket_path="/path/to/virtiofs.sock",
        shared_dir="/path/to/shared",
        pid=42,
    )
    assert daemon.to_cmdline_params("-") == [
        "-D",
        "/path/to/virtiofs.log",
        "-socket-path",
        "/path/to/virtiofs.sock",
        "-source",
        "/path/to/shared",
    ]


def test_default_path_and_empty_params():
    daemon = VirtiofsDaemon()
    assert daemon.path == "/usr/bin/vhost_user_fs"
    assert daemon.to_cmdline_params("-") == []


def test_path_and_pid_not_in_params():
    daemon = VirtiofsDaemon(path="/opt/fsd", log_path="/l", socket_path="/s", shared_dir="/d", pid=7)
    params = daemon.to_cmdline_params("--")
    assert "/opt/fsd" not in params
    assert "7" not in params
    assert params[0] == "--D"


@pytest.mark.parametrize("pid", [0, 1])
def test_stop_rejects_invalid_pid(pid):
    daemon = VirtiofsDaemon(pid=pid)
    with pytest.raises(SandboxError, match="invalid virtiofs daemon process pid"):
        daemon.stop()


def test_stop_kills_process():
    proc = subprocess.Popen(["sleep", "30"])
    try:
        daemon = VirtiofsDaemon(pid=proc.pid)
        daemon.stop()
        assert proc.wait(timeout=5) == -9
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


def test_stop_of_gone_process_raises():
    proc = subprocess.Popen(["true"])
    proc.wait()
    daemon = VirtiofsDaemon(pid=proc.pid)
    with pytest.raises(SandboxError):
        daemon.stop()


@pytest.mark.asyncio
async def test_start_missing_binary_raises():
    daemon = VirtiofsDaemon(path="/nonexistent/vhost_user_fs", shared_dir="/tmp")
    with pytest.raises(SandboxError, match="failed to spawn virtiofsd command"):
        await daemon.start()
    assert daemon.pid is None


@pytest.mark.asyncio
async def test_start_records_pid_and_waits():
    daemon = VirtiofsDaemon(
        path=shutil.which("true"), log_path="/l", socket_path="/s", shared_dir="/d"
    )
    await daemon.start()
    assert daemon.pid > 1
    returncode = await asyncio.wait_for(daemon._wait_task, 5)
    assert returncode == 0