"""Abstract handle to a running virtual machine."""

from abc import ABC, abstractmethod

from yarl import URL


class Instance(ABC):
    """One running VM, owned by whoever entered the driver's context manager.

    Drivers release every VM-side resource (disk overlay, display, process)
    when that context exits, so an instance is never released twice.
    """

    @property
    @abstractmethod
    def runner_url(self) -> URL:
        """Base URL of the test runner's HTTP API inside the guest."""

    @property
    @abstractmethod
    def ssh_address(self) -> tuple[str, int]:
        """Host and port that reach the guest's SSH server."""

    @abstractmethod
    async def wait(self) -> None:
        """Block until the VM halts or its display window is closed."""
