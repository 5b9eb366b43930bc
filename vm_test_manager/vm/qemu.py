"""QEMU driver: boots a VM from a base image behind a throwaway overlay."""

import asyncio
import logging
import socket
import tempfile
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from pathlib import Path

from yarl import URL

from vm_test_manager.models.config import (
    DisplayLocal,
    DisplayNone,
    DisplayVnc,
    RuntimeOptions,
    VmConfig,
)
from vm_test_manager.vm.base import Instance
from vm_test_manager.vm.manifest import DriverManifest
from vm_test_manager.vm.network import BRIDGE_NAME

log = logging.getLogger(__name__)

QEMU_BINARIES = {
    "x64": "qemu-system-x86_64",
    "aarch64": "qemu-system-aarch64",
}
RUNNER_GUEST_PORT = 8087
SSH_GUEST_PORT = 22
VNC_BASE_PORT = 5900
LOCALHOST = "127.0.0.1"
STARTUP_GRACE = 2.0
SHUTDOWN_TIMEOUT = 10.0


def free_port() -> int:
    """Ask the kernel for an unused TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((LOCALHOST, 0))
        port: int = sock.getsockname()[1]
        return port


def display_args(runtime_opts: RuntimeOptions) -> Sequence[str]:
    """QEMU arguments selecting how the guest display is shown."""
    match runtime_opts.display:
        case DisplayNone():
            return ["-display", "none"]
        case DisplayLocal():
            return ["-display", "gtk"]
        case DisplayVnc(port=port):
            if port < VNC_BASE_PORT:
                raise ValueError(f"VNC port must be at least {VNC_BASE_PORT}: {port}")
            return ["-display", "none", "-vnc", f"{LOCALHOST}:{port - VNC_BASE_PORT}"]


def build_qemu_args(
    vm_config: VmConfig,
    runtime_opts: RuntimeOptions,
    disk: Path,
    runner_port: int,
    ssh_port: int,
) -> Sequence[str]:
    """Build the full QEMU command line for one VM."""
    args = [QEMU_BINARIES[vm_config.architecture], "-m", "4096", "-smp", "2"]
    if vm_config.architecture == "x64":
        args += ["-machine", "q35,accel=kvm:tcg", "-cpu", "host"]
    else:
        args += ["-machine", "virt,accel=kvm:tcg", "-cpu", "max"]

    args += ["-drive", f"file={disk},if=virtio"]
    for extra in vm_config.disks:
        args += ["-drive", f"file={extra},if=virtio,readonly=on"]

    forwards = (
        f"hostfwd=tcp:{LOCALHOST}:{runner_port}-:{RUNNER_GUEST_PORT},"
        f"hostfwd=tcp:{LOCALHOST}:{ssh_port}-:{SSH_GUEST_PORT}"
    )
    args += [
        "-netdev",
        f"user,id=mgmt,{forwards}",
        "-device",
        "virtio-net-pci,netdev=mgmt",
        "-netdev",
        f"bridge,id=lan,br={BRIDGE_NAME}",
        "-device",
        "virtio-net-pci,netdev=lan",
    ]
    args += display_args(runtime_opts)
    return args


async def create_overlay(image: Path, directory: Path) -> Path:
    """Create a qcow2 overlay so the base image is left untouched."""
    overlay = directory / "overlay.qcow2"
    process = await asyncio.create_subprocess_exec(
        "qemu-img",
        "create",
        "-f",
        "qcow2",
        "-F",
        "qcow2",
        "-b",
        str(image.resolve()),
        str(overlay),
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await process.communicate()

    if process.returncode != 0:
        raise RuntimeError(f"qemu-img failed: {stderr.decode().strip()}")
    return overlay


@dataclass(kw_only=True)
class QemuInstance(Instance):
    """A running QEMU process."""

    process: asyncio.subprocess.Process = field(repr=False)
    runner_port: int
    ssh_port: int

    @property
    def runner_url(self) -> URL:
        return URL.build(scheme="http", host=LOCALHOST, port=self.runner_port)

    @property
    def ssh_address(self) -> tuple[str, int]:
        return (LOCALHOST, self.ssh_port)

    async def wait(self) -> None:
        await self.process.wait()

    async def terminate(self) -> None:
        """Stop QEMU, escalating to SIGKILL if it does not exit in time."""
        if self.process.returncode is not None:
            return
        with suppress(ProcessLookupError):
            self.process.terminate()
        try:
            await asyncio.wait_for(self.process.wait(), timeout=SHUTDOWN_TIMEOUT)
        except TimeoutError:
            log.warning("QEMU did not exit after SIGTERM, killing it")
            self.process.kill()
            await self.process.wait()


@asynccontextmanager
async def boot(
    vm_config: VmConfig, runtime_opts: RuntimeOptions, name: str
) -> AsyncGenerator[QemuInstance]:
    """Start QEMU for ``vm_config`` and stop it when the context exits."""
    with tempfile.TemporaryDirectory(prefix=f"vm-{name}-") as workdir:
        image = Path(vm_config.image_path)
        if runtime_opts.keep_changes:
            log.warning("Changes will be written to the base image %s", image)
            disk = image
        else:
            disk = await create_overlay(image, Path(workdir))

        runner_port, ssh_port = free_port(), free_port()
        instance_args = build_qemu_args(
            vm_config, runtime_opts, disk, runner_port=runner_port, ssh_port=ssh_port
        )
        log.debug("Running %s", " ".join(instance_args))

        stderr_path = Path(workdir) / "qemu.log"
        with stderr_path.open("wb") as stderr:
            process = await asyncio.create_subprocess_exec(
                *instance_args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=stderr,
            )

        try:
            await asyncio.wait_for(process.wait(), timeout=STARTUP_GRACE)
        except TimeoutError:
            pass
        else:
            output = stderr_path.read_text(errors="replace").strip()
            raise RuntimeError(f"QEMU exited with {process.returncode}: {output}")

        instance = QemuInstance(
            process=process,
            runner_port=runner_port,
            ssh_port=ssh_port,
        )
        try:
            yield instance
        finally:
            await instance.terminate()


qemu_manifest = DriverManifest(instance_factory=boot)
