"""Read-only context handed to every test case."""

from dataclasses import dataclass
from ipaddress import IPv4Address
from pathlib import PurePath, PurePosixPath, PureWindowsPath

from vm_test_manager.certificate import Certificate
from vm_test_manager.models.config import HostPair, OsType


@dataclass(frozen=True, kw_only=True)
class TestContext:
    """Everything a test needs to know about the run.

    Built once after provisioning succeeds and never modified afterwards.
    """

    __test__ = False

    account: str
    artifacts_dir: str
    app_package_filename: str
    app_package_to_upgrade_from_filename: str | None
    gui_package_filename: str | None
    host: HostPair
    bridge_gateway: IPv4Address
    socks_port: int
    os_type: OsType
    certificate: Certificate

    @property
    def socks_proxy(self) -> str:
        """Proxy URL for the side channel that bypasses the tunnel."""
        return f"socks5://{self.bridge_gateway}:{self.socks_port}"

    def artifact_path(self, filename: str) -> str:
        """Guest path of an uploaded artifact."""
        base: PurePath
        if self.os_type == "windows":
            base = PureWindowsPath(self.artifacts_dir)
        else:
            base = PurePosixPath(self.artifacts_dir)
        return str(base / filename)
