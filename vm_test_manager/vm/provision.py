"""Install the test runner and app packages into a booted VM."""

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Literal

import asyncssh

from vm_test_manager.errors import ManagerError
from vm_test_manager.models.config import (
    NoopProvisioner,
    OsType,
    SshProvisioner,
    VmConfig,
)
from vm_test_manager.package import AppManifest
from vm_test_manager.vm.base import Instance

log = logging.getLogger(__name__)

type ProvisioningPhase = Literal["upload", "install", "start"]

RUNNER_BINARIES: Mapping[OsType, Sequence[str]] = {
    "linux": ("test-runner", "connection-checker"),
    "windows": ("test-runner.exe", "connection-checker.exe"),
    "macos": ("test-runner", "connection-checker"),
}
INSTALL_COMMANDS: Mapping[OsType, str] = {
    "linux": "sudo install -D -m 0755 {artifacts}/test-runner /usr/local/bin/test-runner",
    "windows": (
        'powershell -NoProfile -Command "Copy-Item -Force '
        '{artifacts}\\test-runner.exe C:\\test-runner.exe"'
    ),
    "macos": "sudo install -m 0755 {artifacts}/test-runner /usr/local/bin/test-runner",
}
START_COMMANDS: Mapping[OsType, str] = {
    "linux": "sudo systemctl restart test-runner",
    "windows": "schtasks /run /tn test-runner",
    "macos": "sudo launchctl kickstart -k system/net.vmtest.test-runner",
}


class ProvisioningError(ManagerError):
    """Raised when provisioning fails, tagged with the failing phase."""

    def __init__(self, phase: ProvisioningPhase, message: str) -> None:
        super().__init__(f"Provisioning failed during {phase}: {message}")
        self.phase = phase


async def provision(
    vm_config: VmConfig,
    instance: Instance,
    manifest: AppManifest,
    runner_dir: Path,
) -> str:
    """Provision ``instance`` and return the artifacts directory in the guest."""
    match vm_config.provisioner:
        case NoopProvisioner():
            log.info("Provisioner is noop, assuming the runner is part of the image")
            return vm_config.artifacts_dir()
        case SshProvisioner() as ssh:
            return await provision_ssh(vm_config, ssh, instance, manifest, runner_dir)


async def provision_ssh(
    vm_config: VmConfig,
    ssh: SshProvisioner,
    instance: Instance,
    manifest: AppManifest,
    runner_dir: Path,
) -> str:
    """Upload runner and packages over SSH, install the runner and start it."""
    artifacts_dir = vm_config.artifacts_dir()
    files = upload_list(vm_config, manifest, runner_dir)

    log.info("Provisioning over SSH (%s@%s:%d)", ssh.user, *instance.ssh_address)
    async with await open_ssh(instance, ssh, "upload") as conn:
        try:
            async with conn.start_sftp_client() as sftp:
                await sftp.makedirs(artifacts_dir, exist_ok=True)
                for path in files:
                    log.debug("Uploading %s to %s", path, artifacts_dir)
                    await sftp.put(str(path), artifacts_dir)
        except (OSError, asyncssh.Error) as exc:
            raise ProvisioningError("upload", str(exc)) from exc

        install = INSTALL_COMMANDS[vm_config.os_type].format(artifacts=artifacts_dir)
        await run_phase(conn, "install", install)
        await run_phase(conn, "start", START_COMMANDS[vm_config.os_type])

    log.info("Provisioning finished, artifacts in %s", artifacts_dir)
    return artifacts_dir


def upload_list(
    vm_config: VmConfig, manifest: AppManifest, runner_dir: Path
) -> Sequence[Path]:
    """Local files that must be copied into the guest."""
    files: list[Path] = []
    for binary in RUNNER_BINARIES[vm_config.os_type]:
        path = runner_dir / binary
        if not path.is_file():
            raise ProvisioningError("upload", f"Runner binary {path} does not exist")
        files.append(path)

    files.append(manifest.app_package_path)
    if manifest.app_package_to_upgrade_from_path is not None:
        files.append(manifest.app_package_to_upgrade_from_path)
    if manifest.gui_package_path is not None:
        files.append(manifest.gui_package_path)
    return files


async def run_phase(
    conn: asyncssh.SSHClientConnection, phase: ProvisioningPhase, command: str
) -> str:
    """Run ``command`` in the guest, raising ProvisioningError on failure."""
    log.debug("Running %s command: %s", phase, command)
    try:
        result = await conn.run(command, check=False)
    except (OSError, asyncssh.Error) as exc:
        raise ProvisioningError(phase, str(exc)) from exc

    if result.exit_status != 0:
        stderr = str(result.stderr or "").strip()
        raise ProvisioningError(
            phase, f"'{command}' exited with {result.exit_status}: {stderr}"
        )
    return str(result.stdout or "")


async def open_ssh(
    instance: Instance, ssh: SshProvisioner, phase: ProvisioningPhase
) -> asyncssh.SSHClientConnection:
    """Connect to the guest with the stored credentials."""
    host, port = instance.ssh_address
    try:
        return await asyncssh.connect(
            host,
            port,
            username=ssh.user,
            password=ssh.password.get_secret_value(),
            known_hosts=None,
        )
    except (OSError, asyncssh.Error) as exc:
        raise ProvisioningError(phase, f"SSH connection failed: {exc}") from exc
