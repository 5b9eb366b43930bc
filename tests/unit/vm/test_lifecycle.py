"""Tests for VM lifecycle."""

import pytest

from vm_test_manager import vm
from vm_test_manager.config_store import ConfigNotFoundError
from vm_test_manager.models.config import ConfigFile, RuntimeOptions, VmConfig
from vm_test_manager.testing.fakes import FakeDriver


class TestGetVmConfig:
    """Tests for get_vm_config."""

    def test_returns_named_config(
        self, config_file: ConfigFile, vm_config: VmConfig
    ) -> None:
        """Finds the config by name."""
        assert vm.get_vm_config(config_file, "debian") == vm_config

    def test_unknown_name(self, config_file: ConfigFile) -> None:
        """Unknown names raise ConfigNotFoundError."""
        with pytest.raises(ConfigNotFoundError, match="'nope'"):
            vm.get_vm_config(config_file, "nope")


class TestRun:
    """Tests for vm.run."""

    async def test_releases_after_normal_exit(
        self, config_file: ConfigFile, fake_driver: FakeDriver
    ) -> None:
        """The instance is released when the context exits."""
        async with vm.run(config_file, "debian") as instance:
            assert instance.runner_url is not None
            assert not fake_driver.instances[0].released

        assert fake_driver.instances[0].released

    async def test_releases_when_body_raises(
        self, config_file: ConfigFile, fake_driver: FakeDriver
    ) -> None:
        """The instance is released on error paths too."""
        with pytest.raises(RuntimeError, match="test body failed"):
            async with vm.run(config_file, "debian"):
                raise RuntimeError("test body failed")

        assert fake_driver.instances[0].released

    async def test_passes_runtime_options(
        self, config_file: ConfigFile, fake_driver: FakeDriver
    ) -> None:
        """The driver receives the per-run overlay."""
        runtime_opts = RuntimeOptions(keep_changes=True)
        config = config_file.model_copy(update={"runtime_opts": runtime_opts})

        async with vm.run(config, "debian"):
            pass

        assert fake_driver.instances[0].runtime_opts == runtime_opts
        assert fake_driver.instances[0].name == "debian"

    async def test_boot_failure_is_wrapped(
        self, config_file: ConfigFile, fake_driver: FakeDriver
    ) -> None:
        """Driver errors become VmStartError naming the VM."""
        fake_driver.boot_error = FileNotFoundError("qemu-system-x86_64")

        with pytest.raises(vm.VmStartError, match="Failed to start VM 'debian'"):
            async with vm.run(config_file, "debian"):
                pass  # pragma: no cover

    async def test_unknown_vm_does_not_boot(
        self, config_file: ConfigFile, fake_driver: FakeDriver
    ) -> None:
        """Nothing is booted for an unknown name."""
        with pytest.raises(ConfigNotFoundError):
            async with vm.run(config_file, "nope"):
                pass  # pragma: no cover

        assert fake_driver.instances == []

