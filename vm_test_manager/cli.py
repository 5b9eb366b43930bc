"""CLI entry point for the VM test manager."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable, Mapping, Sequence
from pathlib import Path

from pydantic import SecretStr, ValidationError

from vm_test_manager import vm
from vm_test_manager.cases import TestDescriptor, get_test_descriptions
from vm_test_manager.config_store import ConfigStore, remove_config, set_config
from vm_test_manager.errors import ManagerError
from vm_test_manager.models.config import (
    TARGET_HOSTS,
    Display,
    DisplayLocal,
    DisplayNone,
    DisplayVnc,
    NoopProvisioner,
    Provisioner,
    RuntimeOptions,
    SshProvisioner,
    VmConfig,
)
from vm_test_manager.pipeline import Pipeline, PipelineOptions
from vm_test_manager.runner import TestExecutionFailure
from vm_test_manager.summary import format_reports, load_reports
from vm_test_manager.vm.update import update_packages

log = logging.getLogger("vm_test_manager")

type Command = Callable[[ConfigStore, argparse.Namespace], Awaitable[int]]


def resolve_display(display: bool, vnc: int | None) -> Display:
    """Derive the display mode from the mutually exclusive display flags.

    Raises:
        ValueError: If both a local display and VNC were requested

    """
    match (display, vnc):
        case (True, None):
            return DisplayLocal()
        case (False, None):
            return DisplayNone()
        case (False, int(port)):
            return DisplayVnc(port=port)
        case _:
            raise ValueError("--display and --vnc cannot be used together")


def format_test_list(tests: Sequence[TestDescriptor]) -> Sequence[str]:
    """Rows of ``priority<TAB>name`` in registry order."""
    return [f"{test.priority}\t{test.name}" for test in tests]


def build_vm_config(args: argparse.Namespace) -> VmConfig:
    """Build a VM config from the ``set`` command's arguments."""
    provisioner: Provisioner
    if args.provisioner == "ssh":
        if args.ssh_user is None or args.ssh_password is None:
            raise ValueError("--ssh-user and --ssh-password are required for ssh")
        provisioner = SshProvisioner(
            user=args.ssh_user, password=SecretStr(args.ssh_password)
        )
    else:
        provisioner = NoopProvisioner()

    return VmConfig(
        vm_type=args.vm_type,
        image_path=str(Path(args.image).resolve()),
        os_type=args.os_type,
        package_type=args.package_type,
        architecture=args.architecture,
        provisioner=provisioner,
        runner_dir=args.runner_dir,
        disks=[str(Path(disk).resolve()) for disk in args.disks],
    )


async def cmd_set(store: ConfigStore, args: argparse.Namespace) -> int:
    """Create or replace a VM config."""
    try:
        vm_config = build_vm_config(args)
    except (ValueError, ValidationError) as exc:
        log.error("Invalid VM config: %s", exc)
        return 2
    await set_config(store, args.vm, vm_config)
    print(f'Saved configuration "{args.vm}"')
    return 0


async def cmd_remove(store: ConfigStore, args: argparse.Namespace) -> int:
    """Remove a VM config; a missing config is not an error."""
    if not await remove_config(store, args.vm):
        print("No such configuration")
        return 0
    print(f'Removed configuration "{args.vm}"')
    return 0


async def cmd_list(store: ConfigStore, args: argparse.Namespace) -> int:
    """Print every stored VM config."""
    print("Available configurations:")
    for name, vm_config in store.config.vms.items():
        dumped = json.dumps(vm_config.model_dump(), indent=2, default=str)
        print(f"{name}: {dumped}")
    return 0


async def cmd_run_vm(store: ConfigStore, args: argparse.Namespace) -> int:
    """Boot a VM and wait until it is shut down."""
    display: Display = DisplayLocal()
    if args.vnc is not None:
        display = DisplayVnc(port=args.vnc)
    config = store.snapshot(
        RuntimeOptions(display=display, keep_changes=args.keep_changes)
    )
    async with vm.run(config, args.vm) as instance:
        log.info("VM is running, shut it down or close its window to exit")
        await instance.wait()
    return 0


async def cmd_list_tests(store: ConfigStore, args: argparse.Namespace) -> int:
    """Print every registered test with its priority."""
    print("priority\tname")
    for row in format_test_list(get_test_descriptions()):
        print(row)
    return 0


async def cmd_run_tests(store: ConfigStore, args: argparse.Namespace) -> int:
    """Run the full pipeline and turn failing tests into a non-zero exit."""
    config = store.snapshot(RuntimeOptions(display=args.display_mode))
    if args.host is not None:
        log.debug("Target host from --host: %s", args.host)
        config = config.model_copy(update={"host": args.host})
    host = config.get_host()
    log.debug("Target hosts: api=%s conncheck=%s", host.api, host.conncheck)

    options = PipelineOptions(
        vm=args.vm,
        account=args.account,
        app_package=args.app_package,
        app_package_to_upgrade_from=args.app_package_to_upgrade_from,
        gui_package=args.gui_package,
        package_dir=args.package_dir,
        certificate_path=args.openvpn_certificate,
        test_filters=tuple(args.test_filters),
        verbose=args.verbose,
        test_report=args.test_report,
        runner_dir=args.runner_dir,
    )
    result = await Pipeline(config=config, options=options).run()
    if not result.success:
        raise TestExecutionFailure(result)
    return 0


async def cmd_format_test_reports(store: ConfigStore, args: argparse.Namespace) -> int:
    """Print an HTML summary of one or more reports."""
    reports = load_reports(args.reports)
    if not reports:
        log.error("No readable test reports")
        return 1
    print(format_reports(reports))
    return 0


async def cmd_update(store: ConfigStore, args: argparse.Namespace) -> int:
    """Update the OS packages of a VM image (changes are not persisted)."""
    config = store.snapshot(RuntimeOptions())
    vm_config = vm.get_vm_config(config, args.name)
    async with vm.run(config, args.name) as instance:
        output = await update_packages(vm_config, instance)
    log.info("Update command finished with output: %s", output)
    log.info("Note: updates have not been persisted to the image")
    return 0


COMMANDS: Mapping[str, Command] = {
    "set": cmd_set,
    "remove": cmd_remove,
    "list": cmd_list,
    "run-vm": cmd_run_vm,
    "list-tests": cmd_list_tests,
    "run-tests": cmd_run_tests,
    "format-test-reports": cmd_format_test_reports,
    "update": cmd_update,
}


async def run(args: argparse.Namespace, config_path: Path | None = None) -> int:
    """Run one command and return the exit code."""
    try:
        store = await ConfigStore.load_or_default(config_path)
        return await COMMANDS[args.command](store, args)
    except ManagerError as exc:
        log.error("%s", exc)
        log.debug("Failure details", exc_info=exc)
        return 1


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with every subcommand."""
    parser = argparse.ArgumentParser(
        description="Run app integration tests inside throwaway VMs"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    set_cmd = commands.add_parser("set", help="Create or edit a VM config")
    set_cmd.add_argument("vm", help="Name of the VM config")
    set_cmd.add_argument("--vm-type", default="qemu", choices=["qemu"])
    set_cmd.add_argument("--image", required=True, help="Path to the base disk image")
    set_cmd.add_argument(
        "--os-type", required=True, choices=["linux", "windows", "macos"]
    )
    set_cmd.add_argument("--package-type", choices=["deb", "rpm"])
    set_cmd.add_argument("--architecture", default="x64", choices=["x64", "aarch64"])
    set_cmd.add_argument("--provisioner", default="noop", choices=["noop", "ssh"])
    set_cmd.add_argument("--ssh-user", help="User for the ssh provisioner")
    set_cmd.add_argument("--ssh-password", help="Password for the ssh provisioner")
    set_cmd.add_argument("--runner-dir", help="Default test runner directory")
    set_cmd.add_argument(
        "--disks", nargs="*", default=[], help="Additional disk images"
    )

    remove_cmd = commands.add_parser("remove", help="Remove a VM config")
    remove_cmd.add_argument("vm", help="Name of the VM config")

    commands.add_parser("list", help="List available VM configs")

    run_vm_cmd = commands.add_parser(
        "run-vm", help="Spawn a VM without running any tests"
    )
    run_vm_cmd.add_argument("vm", help="Name of the VM config")
    run_vm_cmd.add_argument("--vnc", type=int, help="Run a VNC server on this port")
    run_vm_cmd.add_argument(
        "--keep-changes",
        action="store_true",
        help="Make permanent changes to the image",
    )

    commands.add_parser("list-tests", help="List all tests and their priority")

    tests_cmd = commands.add_parser("run-tests", help="Spawn a VM and run tests")
    tests_cmd.add_argument("--vm", required=True, help="Name of the VM config")
    tests_cmd.add_argument(
        "--display", action="store_true", help="Show the guest display"
    )
    tests_cmd.add_argument("--vnc", type=int, help="Run a VNC server on this port")
    tests_cmd.add_argument(
        "--host",
        choices=sorted(TARGET_HOSTS),
        help="Environment whose API and connectivity check domains are used",
    )
    tests_cmd.add_argument(
        "--account", "-a", required=True, help="Account number to use for testing"
    )
    tests_cmd.add_argument(
        "--app-package",
        required=True,
        help="Path, file name, version or git hash of the app package",
    )
    tests_cmd.add_argument(
        "--app-package-to-upgrade-from",
        help="Package to upgrade from; the upgrade test is skipped without it",
    )
    tests_cmd.add_argument("--gui-package", help="Package used for GUI tests")
    tests_cmd.add_argument(
        "--package-dir", type=Path, help="Directory to search for packages"
    )
    tests_cmd.add_argument(
        "--openvpn-certificate",
        type=Path,
        help="CA certificate for the app under test (defaults to the built-in one)",
    )
    tests_cmd.add_argument(
        "--verbose", "-v", action="store_true", help="Print results live"
    )
    tests_cmd.add_argument(
        "--test-report", type=Path, help="Write structured results to this path"
    )
    tests_cmd.add_argument(
        "--runner-dir", type=Path, help="Directory containing the test runner"
    )
    tests_cmd.add_argument(
        "test_filters",
        nargs="*",
        help="Names of tests to run, in this order (default: all tests)",
    )

    reports_cmd = commands.add_parser(
        "format-test-reports",
        help="Output an HTML summary of one or more test reports",
    )
    reports_cmd.add_argument("reports", type=Path, nargs="+")

    update_cmd = commands.add_parser("update", help="Update the system image")
    update_cmd.add_argument("name", help="Name of the VM config")

    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse and validate arguments, rejecting invalid flag combinations."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "run-tests":
        try:
            args.display_mode = resolve_display(args.display, args.vnc)
        except ValueError as exc:
            parser.error(str(exc))
    return args


def main() -> None:
    """CLI entry point."""
    args = parse_args()

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(run(args))
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
