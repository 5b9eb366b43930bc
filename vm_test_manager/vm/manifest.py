"""Driver manifest definition for the VM driver plugin system."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from vm_test_manager.models.config import RuntimeOptions, VmConfig
from vm_test_manager.vm.base import Instance


@dataclass(frozen=True, kw_only=True)
class DriverManifest:
    """Manifest describing a VM driver plugin.

    ``instance_factory`` boots a VM from a config and yields its instance;
    leaving the context tears the VM down.
    """

    instance_factory: Callable[
        [VmConfig, RuntimeOptions, str], AbstractAsyncContextManager[Instance]
    ]
