"""Resolve user-supplied package identifiers to files on disk."""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from vm_test_manager.errors import ManagerError
from vm_test_manager.models.config import VmConfig

log = logging.getLogger(__name__)

GUI_PACKAGE_PREFIX = "app-e2e-tests"
VERSION_PATTERN = re.compile(r"\d{4}\.\d+(?:-beta\d+)?(?:-dev-[0-9a-f]+)?")


class ManifestResolutionError(ManagerError):
    """Raised when a package identifier cannot be resolved to a file."""


@dataclass(frozen=True, kw_only=True)
class AppManifest:
    """Absolute paths of the packages installed into the VM."""

    app_package_path: Path
    app_package_to_upgrade_from_path: Path | None = None
    gui_package_path: Path | None = None


def get_app_manifest(
    vm_config: VmConfig,
    app_package: str,
    app_package_to_upgrade_from: str | None = None,
    gui_package: str | None = None,
    package_dir: Path | None = None,
) -> AppManifest:
    """Resolve the app package and the optional upgrade and GUI packages.

    Each identifier is either a path to an existing file, or a fragment of a
    file name (version, git hash, tag) looked up in ``package_dir``, which
    defaults to the current directory.
    """
    package_dir = package_dir or Path.cwd()
    extensions = package_extensions(vm_config)

    app_package_path = find_package(app_package, package_dir, extensions)
    log.info("App package: %s", app_package_path)

    upgrade_path = None
    if app_package_to_upgrade_from is not None:
        upgrade_path = find_package(app_package_to_upgrade_from, package_dir, extensions)
        log.info("App package to upgrade from: %s", upgrade_path)

    if gui_package is not None:
        gui_path = find_package(gui_package, package_dir, (), gui=True)
    else:
        gui_path = find_gui_package_for(app_package_path, package_dir)
    if gui_path is None:
        log.warning("No GUI test package found, GUI tests will fail")
    else:
        log.info("GUI package: %s", gui_path)

    return AppManifest(
        app_package_path=app_package_path,
        app_package_to_upgrade_from_path=upgrade_path,
        gui_package_path=gui_path,
    )


def package_extensions(vm_config: VmConfig) -> Sequence[str]:
    """File extensions of installable app packages for the guest OS."""
    match vm_config.os_type:
        case "linux":
            return (f".{vm_config.package_type or 'deb'}",)
        case "windows":
            return (".exe",)
        case "macos":
            return (".pkg",)


def find_package(
    identifier: str,
    package_dir: Path,
    extensions: Sequence[str],
    *,
    gui: bool = False,
) -> Path:
    """Resolve one identifier, raising ManifestResolutionError if it is not unique."""
    direct = Path(identifier)
    if direct.is_file():
        return direct.resolve()

    candidates = [
        path
        for path in matching_packages(package_dir, extensions, gui=gui)
        if identifier in path.name
    ]
    if not candidates:
        raise ManifestResolutionError(
            f"No package matching '{identifier}' in {package_dir.resolve()}"
        )
    if len(candidates) > 1:
        names = ", ".join(path.name for path in candidates)
        raise ManifestResolutionError(
            f"Package identifier '{identifier}' is ambiguous: {names}"
        )
    return candidates[0].resolve()


def find_gui_package_for(app_package_path: Path, package_dir: Path) -> Path | None:
    """Find the GUI test package built from the same version as the app package."""
    if (match := VERSION_PATTERN.search(app_package_path.name)) is None:
        log.debug("Cannot determine version of %s", app_package_path.name)
        return None
    version = match.group(0)

    for path in matching_packages(package_dir, (), gui=True):
        if version in path.name:
            return path.resolve()
    return None


def matching_packages(
    package_dir: Path, extensions: Sequence[str], *, gui: bool
) -> Sequence[Path]:
    """List package files in ``package_dir`` sorted by name."""
    if not package_dir.is_dir():
        raise ManifestResolutionError(f"Package directory {package_dir} does not exist")

    packages: list[Path] = []
    for path in sorted(package_dir.iterdir()):
        if not path.is_file():
            continue
        if path.name.startswith(GUI_PACKAGE_PREFIX) != gui:
            continue
        if extensions and not path.name.endswith(tuple(extensions)):
            continue
        packages.append(path)
    return packages
