"""Tests for OS updates."""

import pytest

from vm_test_manager.models.config import RuntimeOptions, SshProvisioner, VmConfig
from vm_test_manager.testing.factories import VmConfigFactory
from vm_test_manager.testing.fakes import (
    FakeCompletedProcess,
    FakeInstance,
    FakeSshConnection,
)
from vm_test_manager.vm.provision import ProvisioningError
from vm_test_manager.vm.update import UPDATE_COMMANDS, update_command, update_packages


@pytest.mark.parametrize(
    ("os_type", "package_type", "key"),
    [
        ("linux", "deb", ("linux", "deb")),
        ("linux", None, ("linux", "deb")),
        ("linux", "rpm", ("linux", "rpm")),
        ("macos", None, ("macos", None)),
    ],
)
def test_update_command(
    os_type: str, package_type: str | None, key: tuple[str, str | None]
) -> None:
    """Each guest uses its own package manager."""
    vm_config = VmConfigFactory.build(os_type=os_type, package_type=package_type)

    assert update_command(vm_config) == UPDATE_COMMANDS[key]


def test_windows_is_not_supported() -> None:
    """There is no update command for Windows guests."""
    with pytest.raises(ProvisioningError, match="not supported"):
        update_command(VmConfigFactory.build(os_type="windows", package_type=None))


async def test_update_requires_ssh(vm_config: VmConfig) -> None:
    """Updates need credentials to log in with."""
    instance = FakeInstance(name="debian", runtime_opts=RuntimeOptions())

    with pytest.raises(ProvisioningError, match="ssh"):
        await update_packages(vm_config, instance)


async def test_update_runs_command(
    monkeypatch: pytest.MonkeyPatch, ssh_vm_config: VmConfig
) -> None:
    """Runs the update over SSH and returns its output."""
    command = UPDATE_COMMANDS[("linux", "deb")]
    conn = FakeSshConnection(
        results={command: FakeCompletedProcess(stdout="0 upgraded")}
    )
    seen: list[SshProvisioner] = []

    async def fake_open_ssh(
        instance: FakeInstance, ssh: SshProvisioner, phase: str
    ) -> FakeSshConnection:
        seen.append(ssh)
        return conn

    monkeypatch.setattr("vm_test_manager.vm.update.open_ssh", fake_open_ssh)
    instance = FakeInstance(name="debian", runtime_opts=RuntimeOptions())

    output = await update_packages(ssh_vm_config, instance)

    assert output == "0 upgraded"
    assert conn.commands == [command]
    assert seen[0].user == "tester"
