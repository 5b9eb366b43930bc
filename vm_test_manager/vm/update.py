"""Apply OS updates to a running VM."""

import logging

from vm_test_manager.models.config import SshProvisioner, VmConfig
from vm_test_manager.vm.base import Instance
from vm_test_manager.vm.provision import ProvisioningError, open_ssh, run_phase

log = logging.getLogger(__name__)

UPDATE_COMMANDS = {
    ("linux", "deb"): (
        "sudo apt-get update && "
        "sudo DEBIAN_FRONTEND=noninteractive apt-get -y upgrade"
    ),
    ("linux", "rpm"): "sudo dnf -y upgrade",
    ("macos", None): "sudo softwareupdate --install --all",
}


def update_command(vm_config: VmConfig) -> str:
    """The package manager invocation that updates this guest."""
    package_type = None
    if vm_config.os_type == "linux":
        package_type = vm_config.package_type or "deb"
    try:
        return UPDATE_COMMANDS[(vm_config.os_type, package_type)]
    except KeyError:
        raise ProvisioningError(
            "install", f"Updating {vm_config.os_type} guests is not supported"
        ) from None


async def update_packages(vm_config: VmConfig, instance: Instance) -> str:
    """Run the OS update command over SSH and return its output.

    The guest runs on a throwaway overlay, so nothing is persisted to the
    base image.
    """
    if not isinstance(vm_config.provisioner, SshProvisioner):
        raise ProvisioningError(
            "install", "Updates require the 'ssh' provisioner with credentials"
        )
    ssh = vm_config.provisioner
    command = update_command(vm_config)
    log.info("Updating packages on %s:%d", *instance.ssh_address)
    async with await open_ssh(instance, ssh, "install") as conn:
        return await run_phase(conn, "install", command)
