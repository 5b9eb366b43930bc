"""Persisted store of named VM configurations."""

import asyncio
import logging
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from vm_test_manager.errors import ManagerError
from vm_test_manager.models.config import ConfigFile, RuntimeOptions, VmConfig

log = logging.getLogger(__name__)

CONFIG_ENV_VAR = "VM_TEST_MANAGER_CONFIG"


class ConfigNotFoundError(ManagerError):
    """Raised when a VM configuration name is not in the store."""

    def __init__(self, name: str) -> None:
        super().__init__(f"No VM configuration named '{name}'")
        self.name = name


class ConfigLoadError(ManagerError):
    """Raised when the config file exists but cannot be read or parsed."""


def default_config_path() -> Path:
    """Location of the config file, overridable through the environment."""
    if override := os.environ.get(CONFIG_ENV_VAR):
        return Path(override)
    return Path.home() / ".config" / "vm-test-manager" / "config.json"


@dataclass(kw_only=True)
class ConfigStore:
    """Named VM configs backed by a JSON file.

    The in-memory ``config`` is only replaced after a successful write, so a
    failed edit leaves both the file and the snapshot untouched.
    """

    path: Path
    config: ConfigFile = field(default_factory=ConfigFile)

    @classmethod
    async def load_or_default(cls, path: Path | None = None) -> "ConfigStore":
        """Read the config file, or start empty when it does not exist."""
        path = path or default_config_path()
        try:
            text = await asyncio.to_thread(path.read_text)
        except FileNotFoundError:
            log.debug("No config file at %s, using an empty store", path)
            return cls(path=path)
        except OSError as exc:
            raise ConfigLoadError(f"Failed to read config file {path}: {exc}") from exc

        try:
            config = ConfigFile.model_validate_json(text)
        except ValidationError as exc:
            raise ConfigLoadError(f"Invalid config file {path}: {exc}") from exc
        return cls(path=path, config=config)

    def get(self, name: str) -> VmConfig | None:
        """Return the named config, if any."""
        return self.config.get_vm(name)

    def require(self, name: str) -> VmConfig:
        """Return the named config or raise ConfigNotFoundError."""
        if (vm_config := self.get(name)) is None:
            raise ConfigNotFoundError(name)
        return vm_config

    async def edit(self, mutator: Callable[[ConfigFile], ConfigFile]) -> None:
        """Apply ``mutator`` and persist the result atomically."""
        updated = mutator(self.config)
        await asyncio.to_thread(self._write, updated)
        self.config = updated

    def snapshot(self, runtime_opts: RuntimeOptions) -> ConfigFile:
        """Clone the current config with a per-run overlay applied."""
        return self.config.model_copy(update={"runtime_opts": runtime_opts})

    def _write(self, config: ConfigFile) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as tmp:
                tmp.write(config.model_dump_json(indent=2))
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        log.debug("Wrote config file %s", self.path)


async def set_config(store: ConfigStore, name: str, vm_config: VmConfig) -> None:
    """Create or replace the named VM config."""
    await store.edit(lambda config: config.with_vm(name, vm_config))


async def remove_config(store: ConfigStore, name: str) -> bool:
    """Remove the named VM config. Returns False when there was nothing to remove."""
    if store.get(name) is None:
        return False
    await store.edit(lambda config: config.without_vm(name))
    return True
