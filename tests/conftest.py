"""Shared fixtures."""

from pathlib import Path

import pytest

from vm_test_manager.config_store import ConfigStore
from vm_test_manager.models.config import ConfigFile, SshProvisioner, VmConfig
from vm_test_manager.testing.factories import VmConfigFactory
from vm_test_manager.testing.fakes import FakeDriver


@pytest.fixture
def vm_config() -> VmConfig:
    """A Linux VM config with the noop provisioner."""
    return VmConfigFactory.build()


@pytest.fixture
def ssh_vm_config() -> VmConfig:
    """A Linux VM config with the ssh provisioner."""
    return VmConfigFactory.build(
        provisioner=SshProvisioner(user="tester", password="secret")
    )


@pytest.fixture
def config_file(vm_config: VmConfig) -> ConfigFile:
    """Config containing one VM named 'debian'."""
    return ConfigFile(vms={"debian": vm_config})


@pytest.fixture
async def store(tmp_path: Path, config_file: ConfigFile) -> ConfigStore:
    """Store persisted to a temporary file, holding the 'debian' VM."""
    store = await ConfigStore.load_or_default(tmp_path / "config.json")
    await store.edit(lambda _: config_file)
    return store


@pytest.fixture
def fake_driver(monkeypatch: pytest.MonkeyPatch) -> FakeDriver:
    """Route every VM boot to an in-memory driver."""
    driver = FakeDriver()
    monkeypatch.setattr(
        "vm_test_manager.vm.lifecycle.load_driver_manifest",
        lambda key: driver.manifest,
    )
    return driver
