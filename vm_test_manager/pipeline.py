"""The full test run: boot, provision, bridge, test, tear down."""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from vm_test_manager import runner, vm
from vm_test_manager.cases import registry as builtin_registry
from vm_test_manager.cases.base import TestRegistry
from vm_test_manager.certificate import load_certificate
from vm_test_manager.models.config import (
    ConfigFile,
    DisplayLocal,
    NoopProvisioner,
    VmConfig,
)
from vm_test_manager.models.context import TestContext
from vm_test_manager.models.result import RunResult
from vm_test_manager.package import get_app_manifest
from vm_test_manager.summary import SummaryLogger
from vm_test_manager.vm.base import Instance
from vm_test_manager.vm.network import SOCKS5_PORT, Bridge, BridgeError, bridge
from vm_test_manager.vm.provision import provision
from vm_test_manager.vm.socks import SocksServer

log = logging.getLogger(__name__)


class PipelineState(StrEnum):
    """Stages of a test run, in the order they are reached."""

    IDLE = "idle"
    CONFIG_RESOLVED = "config-resolved"
    VM_RUNNING = "vm-running"
    PROVISIONED = "provisioned"
    CONTEXT_INITIALIZED = "context-initialized"
    BRIDGE_ESTABLISHED = "bridge-established"
    TESTS_EXECUTING = "tests-executing"
    TEARDOWN = "teardown"
    DONE = "done"


@dataclass(frozen=True, kw_only=True)
class PipelineOptions:
    """Validated inputs of a test run."""

    vm: str
    account: str
    app_package: str
    app_package_to_upgrade_from: str | None = None
    gui_package: str | None = None
    package_dir: Path | None = None
    certificate_path: Path | None = None
    test_filters: Sequence[str] = ()
    verbose: bool = False
    test_report: Path | None = None
    runner_dir: Path | None = None


@dataclass(kw_only=True)
class Pipeline:
    """One test run against one VM.

    ``config`` is a per-run snapshot that already carries the runtime
    overlay (display mode, keep-changes).
    """

    config: ConfigFile
    options: PipelineOptions
    registry: TestRegistry = field(default_factory=lambda: builtin_registry)
    resolve_bridge: Callable[[], Awaitable[Bridge]] = bridge
    socks_port: int = SOCKS5_PORT
    state: PipelineState = PipelineState.IDLE
    context: TestContext | None = None

    async def run(self) -> RunResult:
        """Run every stage and return the aggregate test result.

        The first fatal error is raised as soon as it happens. Failing tests
        are not an error here; the caller decides what they mean.
        """
        vm_config = vm.get_vm_config(self.config, self.options.vm)
        self._advance(PipelineState.CONFIG_RESOLVED)

        async with vm.run(self.config, self.options.vm) as instance:
            self._advance(PipelineState.VM_RUNNING)

            context = await self._provision(vm_config, instance)

            proxy = await self._start_side_channel(context)
            self._advance(PipelineState.BRIDGE_ESTABLISHED)

            try:
                result = await self._execute_tests(vm_config, instance, context)
            finally:
                await self._teardown(proxy, instance)

        self._advance(PipelineState.DONE)
        return result

    async def _provision(self, vm_config: VmConfig, instance: Instance) -> TestContext:
        manifest = get_app_manifest(
            vm_config,
            self.options.app_package,
            self.options.app_package_to_upgrade_from,
            self.options.gui_package,
            self.options.package_dir,
        )
        certificate = load_certificate(self.options.certificate_path)
        runner_dir = self.options.runner_dir or Path(vm_config.get_default_runner_dir())

        artifacts_dir = await provision(vm_config, instance, manifest, runner_dir)
        self._advance(PipelineState.PROVISIONED)

        network = await self.resolve_bridge()
        self.context = TestContext(
            account=self.options.account,
            artifacts_dir=artifacts_dir,
            app_package_filename=manifest.app_package_path.name,
            app_package_to_upgrade_from_filename=_file_name(
                manifest.app_package_to_upgrade_from_path
            ),
            gui_package_filename=_file_name(manifest.gui_package_path),
            host=self.config.get_host(),
            bridge_gateway=network.gateway,
            socks_port=self.socks_port,
            os_type=vm_config.os_type,
            certificate=certificate,
        )
        self._advance(PipelineState.CONTEXT_INITIALIZED)
        return self.context

    async def _start_side_channel(self, context: TestContext) -> SocksServer:
        proxy = SocksServer(host=str(context.bridge_gateway), port=self.socks_port)
        try:
            await proxy.start()
        except OSError as exc:
            raise BridgeError(
                f"Failed to start SOCKS5 proxy on "
                f"{context.bridge_gateway}:{self.socks_port}: {exc}"
            ) from exc
        return proxy

    async def _execute_tests(
        self, vm_config: VmConfig, instance: Instance, context: TestContext
    ) -> RunResult:
        self._advance(PipelineState.TESTS_EXECUTING)
        tests = self.registry.resolve(self.options.test_filters)
        log.info("Running %d test(s)", len(tests))

        summary_logger = None
        if self.options.test_report is not None:
            summary_logger = await SummaryLogger.create(
                self.options.vm, vm_config.os_type, self.options.test_report
            )

        return await runner.run(
            instance,
            tests,
            context,
            skip_wait=isinstance(vm_config.provisioner, NoopProvisioner),
            quiet=not self.options.verbose,
            summary_logger=summary_logger,
        )

    async def _teardown(self, proxy: SocksServer, instance: Instance) -> None:
        """Stop the proxy and wait for the window; errors here are only logged."""
        self._advance(PipelineState.TEARDOWN)
        try:
            await proxy.close()
        except Exception as exc:
            log.error("Failed to stop SOCKS5 proxy: %s", exc, exc_info=exc)

        if isinstance(self.config.runtime_opts.display, DisplayLocal):
            log.info("Tests finished, close the VM window to exit")
            try:
                await instance.wait()
            except Exception as exc:
                log.error("Failed waiting for the VM to exit: %s", exc, exc_info=exc)

    def _advance(self, state: PipelineState) -> None:
        log.debug("Pipeline state: %s -> %s", self.state, state)
        self.state = state


def _file_name(path: Path | None) -> str | None:
    return path.name if path is not None else None
