"""Models for persisted VM configurations and per-run overlays."""

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import PurePosixPath, PureWindowsPath
from typing import Annotated, Literal, get_args

from pydantic import Field, SecretStr, field_serializer

from vm_test_manager.models.base import Model

type OsType = Literal["linux", "windows", "macos"]
type PackageType = Literal["deb", "rpm"]
type Architecture = Literal["x64", "aarch64"]
type TargetHost = Literal["mullvad.net", "stagemole.eu", "devmole.eu"]


@dataclass(frozen=True, kw_only=True)
class HostPair:
    """API and connectivity-check domains of one target environment."""

    api: str
    conncheck: str


def host_pair(domain: str) -> HostPair:
    """API and connectivity check domains for an environment domain."""
    return HostPair(api=f"api.{domain}", conncheck=f"ipv4.am.i.{domain}")


TARGET_HOSTS: Mapping[TargetHost, HostPair] = {
    domain: host_pair(domain)
    for domain in get_args(TargetHost.__value__)
}
DEFAULT_HOST: TargetHost = "mullvad.net"


class SshProvisioner(Model):
    """Install the runner and packages over SSH using stored credentials."""

    kind: Literal["ssh"] = "ssh"
    user: str
    password: SecretStr

    @field_serializer("password", when_used="json")
    def _dump_password(self, value: SecretStr) -> str:
        return value.get_secret_value()


class NoopProvisioner(Model):
    """The runner is pre-baked into the image; nothing is installed."""

    kind: Literal["noop"] = "noop"


Provisioner = Annotated[SshProvisioner | NoopProvisioner, Field(discriminator="kind")]


@dataclass(frozen=True)
class DisplayNone:
    """Run the VM headless."""


@dataclass(frozen=True)
class DisplayLocal:
    """Show the VM in a local window."""


@dataclass(frozen=True)
class DisplayVnc:
    """Expose the VM display through a VNC server."""

    port: int


Display = DisplayNone | DisplayLocal | DisplayVnc


@dataclass(frozen=True, kw_only=True)
class RuntimeOptions:
    """Per-invocation overlay applied to a cloned config, never persisted."""

    display: Display = DisplayNone()
    keep_changes: bool = False


DEFAULT_RUNNER_DIRS: Mapping[tuple[OsType, Architecture], str] = {
    ("linux", "x64"): "./target/x86_64-unknown-linux-gnu/release",
    ("linux", "aarch64"): "./target/aarch64-unknown-linux-gnu/release",
    ("windows", "x64"): "./target/x86_64-pc-windows-gnu/release",
    ("windows", "aarch64"): "./target/aarch64-pc-windows-msvc/release",
    ("macos", "x64"): "./target/x86_64-apple-darwin/release",
    ("macos", "aarch64"): "./target/aarch64-apple-darwin/release",
}


class VmConfig(Model):
    """A named, persisted VM configuration."""

    vm_type: Literal["qemu"] = "qemu"
    image_path: str = Field(..., description="Path to the base disk image")
    os_type: OsType = Field(..., description="Guest operating system")
    package_type: PackageType | None = Field(
        default=None, description="Package format used on Linux guests"
    )
    architecture: Architecture = "x64"
    provisioner: Provisioner = Field(default_factory=NoopProvisioner)
    runner_dir: str | None = Field(
        default=None, description="Directory with the test runner binaries"
    )
    disks: list[str] = Field(default_factory=list, description="Extra disk images")

    def get_default_runner_dir(self) -> str:
        """Runner directory from the config, or the build output for this target."""
        if self.runner_dir is not None:
            return self.runner_dir
        return DEFAULT_RUNNER_DIRS[(self.os_type, self.architecture)]

    def artifacts_dir(self) -> str:
        """Directory inside the guest where the runner and packages live."""
        match self.os_type:
            case "windows":
                return str(PureWindowsPath("C:/testing"))
            case "linux" | "macos":
                return str(PurePosixPath("/opt/testing"))


class ConfigFile(Model):
    """Everything stored in the config file, plus the transient overlay."""

    vms: dict[str, VmConfig] = Field(default_factory=dict)
    host: TargetHost | None = Field(
        default=None, description="Default target environment"
    )
    runtime_opts: RuntimeOptions = Field(default_factory=RuntimeOptions, exclude=True)

    def get_vm(self, name: str) -> VmConfig | None:
        """Return the named VM config, if any."""
        return self.vms.get(name)

    def get_host(self) -> HostPair:
        """Resolve the configured target environment to its domains."""
        return TARGET_HOSTS[self.host or DEFAULT_HOST]

    def with_vm(self, name: str, vm_config: VmConfig) -> "ConfigFile":
        """Return a copy in which ``name`` maps to ``vm_config``."""
        return self.model_copy(update={"vms": {**self.vms, name: vm_config}})

    def without_vm(self, name: str) -> "ConfigFile":
        """Return a copy without ``name``."""
        vms = {key: value for key, value in self.vms.items() if key != name}
        return self.model_copy(update={"vms": vms})
