"""VM lifecycle: drivers, provisioning and the host side of the test network."""

from vm_test_manager.vm.base import Instance
from vm_test_manager.vm.lifecycle import VmStartError, get_vm_config, run

__all__ = ["Instance", "VmStartError", "get_vm_config", "run"]
