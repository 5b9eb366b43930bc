"""Tests for the QEMU driver."""

import stat
from pathlib import Path

import pytest

from vm_test_manager.models.config import (
    DisplayLocal,
    DisplayVnc,
    RuntimeOptions,
    VmConfig,
)
from vm_test_manager.testing.factories import VmConfigFactory
from vm_test_manager.vm import qemu


class TestDisplayArgs:
    """Tests for display_args."""

    def test_headless(self) -> None:
        """No display by default."""
        assert qemu.display_args(RuntimeOptions()) == ["-display", "none"]

    def test_local_window(self) -> None:
        """A local display opens a window."""
        args = qemu.display_args(RuntimeOptions(display=DisplayLocal()))

        assert args == ["-display", "gtk"]

    def test_vnc_display_number(self) -> None:
        """The VNC display number is the port offset from 5900."""
        args = qemu.display_args(RuntimeOptions(display=DisplayVnc(port=5903)))

        assert args == ["-display", "none", "-vnc", "127.0.0.1:3"]

    def test_vnc_port_below_base(self) -> None:
        """Ports below 5900 cannot be expressed as a display number."""
        with pytest.raises(ValueError, match="at least 5900"):
            qemu.display_args(RuntimeOptions(display=DisplayVnc(port=80)))


def test_build_qemu_args(vm_config: VmConfig) -> None:
    """Forwards the runner and SSH ports and attaches the test bridge."""
    config = vm_config.model_copy(update={"disks": ["/images/extra.img"]})

    args = qemu.build_qemu_args(
        config, RuntimeOptions(), Path("/tmp/overlay.qcow2"), 40001, 40002
    )

    assert args[0] == "qemu-system-x86_64"
    assert "file=/tmp/overlay.qcow2,if=virtio" in args
    assert "file=/images/extra.img,if=virtio,readonly=on" in args
    netdev = args[args.index("-netdev") + 1]
    assert "hostfwd=tcp:127.0.0.1:40001-:8087" in netdev
    assert "hostfwd=tcp:127.0.0.1:40002-:22" in netdev
    assert "bridge,id=lan,br=br-vmtest" in args
    assert args[-2:] == ["-display", "none"]


def test_build_qemu_args_aarch64() -> None:
    """ARM guests use the virt machine."""
    config = VmConfigFactory.build(architecture="aarch64")

    args = qemu.build_qemu_args(config, RuntimeOptions(), Path("disk"), 1, 2)

    assert args[0] == "qemu-system-aarch64"
    assert "virt,accel=kvm:tcg" in args


def test_free_port_is_bindable() -> None:
    """Returns a usable port number."""
    assert 0 < qemu.free_port() < 65536


@pytest.fixture
def fake_qemu(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A stand-in emulator that ignores its arguments and keeps running."""
    script = tmp_path / "fake-qemu"
    script.write_text("#!/bin/sh\nexec sleep 30\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    monkeypatch.setitem(qemu.QEMU_BINARIES, "x64", str(script))
    monkeypatch.setattr(qemu, "STARTUP_GRACE", 0.2)
    return script


class TestBoot:
    """Tests for booting and stopping the emulator process."""

    async def test_runs_until_context_exit(
        self, fake_qemu: Path, vm_config: VmConfig
    ) -> None:
        """The process is running inside the context and stopped after it."""
        runtime_opts = RuntimeOptions(keep_changes=True)

        async with qemu.boot(vm_config, runtime_opts, "debian") as instance:
            assert instance.process.returncode is None
            assert instance.runner_url.host == "127.0.0.1"
            assert instance.runner_url.port == instance.runner_port
            assert instance.ssh_address == ("127.0.0.1", instance.ssh_port)

        assert instance.process.returncode is not None

    async def test_early_exit_is_an_error(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        vm_config: VmConfig,
    ) -> None:
        """An emulator that dies during startup fails the boot with its output."""
        script = tmp_path / "broken-qemu"
        script.write_text("#!/bin/sh\necho 'Could not access KVM' >&2\nexit 1\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR)
        monkeypatch.setitem(qemu.QEMU_BINARIES, "x64", str(script))

        with pytest.raises(RuntimeError, match="Could not access KVM"):
            async with qemu.boot(vm_config, RuntimeOptions(keep_changes=True), "x"):
                pass  # pragma: no cover
