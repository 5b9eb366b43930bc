"""Booting and releasing VMs through the registered driver."""

import logging
from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack, asynccontextmanager

from vm_test_manager.config_store import ConfigNotFoundError
from vm_test_manager.errors import ManagerError
from vm_test_manager.models.config import ConfigFile, VmConfig
from vm_test_manager.vm.base import Instance
from vm_test_manager.vm.loading import load_driver_manifest

log = logging.getLogger(__name__)


class VmStartError(ManagerError):
    """Raised when the driver fails to boot a VM."""


def get_vm_config(config: ConfigFile, name: str) -> VmConfig:
    """Look up a VM config by name, raising ConfigNotFoundError if absent."""
    if (vm_config := config.get_vm(name)) is None:
        raise ConfigNotFoundError(name)
    return vm_config


@asynccontextmanager
async def run(config: ConfigFile, name: str) -> AsyncGenerator[Instance]:
    """Boot the named VM and release it when the context exits.

    Release happens on every exit path, including exceptions raised by the
    code running inside the context.
    """
    vm_config = get_vm_config(config, name)
    manifest = load_driver_manifest(vm_config.vm_type)

    log.info(
        "Starting VM '%s' (type=%s, os=%s, display=%s)",
        name,
        vm_config.vm_type,
        vm_config.os_type,
        type(config.runtime_opts.display).__name__,
    )
    async with AsyncExitStack() as stack:
        try:
            instance = await stack.enter_async_context(
                manifest.instance_factory(vm_config, config.runtime_opts, name)
            )
        except Exception as exc:
            raise VmStartError(f"Failed to start VM '{name}': {exc}") from exc

        log.info("VM '%s' is running", name)
        try:
            yield instance
        finally:
            log.info("Releasing VM '%s'", name)
