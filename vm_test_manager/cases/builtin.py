"""Built-in test cases, run in the order they are declared here."""

import logging
from collections.abc import Sequence

from vm_test_manager.cases.base import TestRegistry, TestSkipped
from vm_test_manager.models.context import TestContext
from vm_test_manager.runner_client import RunnerClient

log = logging.getLogger(__name__)

registry = TestRegistry()


def install_command(ctx: TestContext, filename: str) -> tuple[str, Sequence[str]]:
    """Program and arguments that install a package in the guest."""
    path = ctx.artifact_path(filename)
    if ctx.os_type == "windows":
        return path, ["/S"]
    if ctx.os_type == "macos":
        return "/usr/sbin/installer", ["-pkg", path, "-target", "/"]
    if filename.endswith(".rpm"):
        return "/usr/bin/rpm", ["-U", "--replacepkgs", path]
    return "/usr/bin/dpkg", ["-i", path]


async def install_package(ctx: TestContext, runner: RunnerClient, filename: str) -> None:
    program, args = install_command(ctx, filename)
    result = await runner.exec(program, args)
    if result.code != 0:
        raise AssertionError(
            f"Installing {filename} failed with {result.code}: {result.stderr.strip()}"
        )


@registry.case(priority=-300)
async def test_runner_os(ctx: TestContext, runner: RunnerClient) -> None:
    """The runner reports the OS the VM was configured with."""
    info = await runner.get_os()
    assert info.os == ctx.os_type, f"runner reports {info.os}, expected {ctx.os_type}"


@registry.case(priority=-200)
async def test_upgrade_app(ctx: TestContext, runner: RunnerClient) -> None:
    """Install the old version, then upgrade it to the version under test."""
    if ctx.app_package_to_upgrade_from_filename is None:
        raise TestSkipped("No package to upgrade from was given")

    await install_package(ctx, runner, ctx.app_package_to_upgrade_from_filename)
    old_version = await runner.get_app_version()
    log.info("Installed old app version %s", old_version)

    await install_package(ctx, runner, ctx.app_package_filename)
    new_version = await runner.get_app_version()
    assert new_version is not None, "app is not installed after upgrade"
    assert new_version != old_version, f"version did not change from {old_version}"


@registry.case(priority=-100)
async def test_install_new_app(ctx: TestContext, runner: RunnerClient) -> None:
    """Install the app under test."""
    await install_package(ctx, runner, ctx.app_package_filename)
    version = await runner.get_app_version()
    assert version is not None, "app is not installed"
    log.info("Installed app version %s", version)


@registry.case()
async def test_side_channel_egress(ctx: TestContext, runner: RunnerClient) -> None:
    """The guest reaches the connectivity check through the host proxy."""
    url = f"https://{ctx.host.conncheck}/json"
    response = await runner.http_get(url, proxy=ctx.socks_proxy)
    assert response.status == 200, f"GET {url} via proxy returned {response.status}"


@registry.case(priority=50)
async def test_ui_e2e(ctx: TestContext, runner: RunnerClient) -> None:
    """Run the GUI test package against the installed app."""
    if ctx.gui_package_filename is None:
        raise TestSkipped("No GUI test package available")

    result = await runner.exec(ctx.artifact_path(ctx.gui_package_filename))
    if result.code != 0:
        raise AssertionError(f"GUI tests failed with {result.code}:\n{result.stdout}")
