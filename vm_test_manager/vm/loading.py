"""VM drivers installed as ``vm_test_manager.drivers`` entry points."""

import logging
from collections.abc import Mapping, Sequence
from functools import cache
from importlib.metadata import EntryPoint, entry_points

from vm_test_manager.errors import ManagerError
from vm_test_manager.vm.manifest import DriverManifest

log = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "vm_test_manager.drivers"


class DriverNotFoundError(ManagerError):
    """Raised when no usable driver is installed for a VM type."""

    def __init__(self, vm_type: str, installed: Sequence[str]) -> None:
        super().__init__(
            f"No VM driver for vm_type '{vm_type}' "
            f"(installed drivers: {', '.join(installed) or 'none'})"
        )
        self.vm_type = vm_type
        self.installed = installed


@cache
def installed_drivers() -> Mapping[str, EntryPoint]:
    """Driver entry points by VM type, read once per process."""
    return {entry.name: entry for entry in entry_points(group=ENTRY_POINT_GROUP)}


def load_driver_manifest(vm_type: str) -> DriverManifest:
    """Import the driver registered for ``vm_type``.

    Raises:
        DriverNotFoundError: If nothing is registered under ``vm_type`` or the
            entry point does not name a DriverManifest

    """
    drivers = installed_drivers()
    if (entry := drivers.get(vm_type)) is None:
        raise DriverNotFoundError(vm_type, sorted(drivers))

    manifest = entry.load()
    if not isinstance(manifest, DriverManifest):
        log.error("Entry point %s does not point to a DriverManifest", entry.value)
        raise DriverNotFoundError(vm_type, sorted(drivers))

    log.debug("Loaded VM driver '%s' from %s", vm_type, entry.value)
    return manifest
