import asyncio
import subprocess

import pytest

from stratosandbox import pidfile
from stratosandbox.pidfile import detect_pid
from stratosandbox.utils import NotFoundError, SandboxError


@pytest.fixture
def sleeper():
    proc = subprocess.Popen(["sleep", "30"])
    yield proc
    proc.kill()
    proc.wait()


@pytest.fixture
def few_attempts(monkeypatch):
    monkeypatch.setattr(pidfile, "PID_DETECT_ATTEMPTS", 3)
    monkeypatch.setattr(pidfile, "PID_DETECT_INTERVAL", 0.001)


@pytest.mark.asyncio
async def test_detects_running_process(tmp_path, sleeper):
    pid_path = tmp_path / "stratovirt.pid"
    pid_path.write_text(f"{sleeper.pid}\n")
    assert await detect_pid(str(pid_path), "sleep") == sleeper.pid


@pytest.mark.asyncio
async def test_other_binary_is_not_found(tmp_path, sleeper):
    pid_path = tmp_path / "stratovirt.pid"
    pid_path.write_text(str(sleeper.pid))
    with pytest.raises(NotFoundError, match=str(sleeper.pid)):
        await detect_pid(str(pid_path), "/usr/bin/stratovirt")


@pytest.mark.asyncio
async def test_waits_for_pid_file(tmp_path, sleeper):
    pid_path = tmp_path / "stratovirt.pid"

    async def write_later():
        await asyncio.sleep(0.05)
        pid_path.write_text(str(sleeper.pid))

    writer = asyncio.create_task(write_later())
    pid = await asyncio.wait_for(detect_pid(pid_path, "sleep"), 10)
    await writer
    assert pid == sleeper.pid


@pytest.mark.asyncio
async def test_garbage_pid_file_times_out(tmp_path, few_attempts):
    pid_path = tmp_path / "stratovirt.pid"
    pid_path.write_text("not-a-pid")
    with pytest.raises(SandboxError, match="timeout waiting for the pid file") as excinfo:
        await detect_pid(str(pid_path), "sleep")
    assert not isinstance(excinfo.value, NotFoundError)


@pytest.mark.asyncio
async def test_missing_pid_file_times_out(tmp_path, few_attempts):
    with pytest.raises(SandboxError, match="timeout"):
        await detect_pid(str(tmp_path / "absent.pid"), "sleep")


@pytest.mark.asyncio
async def test_vanished_process_raises(tmp_path):
    pid_path = tmp_path / "stratovirt.pid"
    pid_path.write_text(str(2**32 - 1))
    with pytest.raises(SandboxError, match="failed to get stratovirt process"):
        await detect_pid(str(pid_path), "sleep")