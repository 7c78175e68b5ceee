"""Protocols and contexts for manifest sources, type handlers and registry lookup.

Adding a new source location or package type is a new implementation of one
of these protocols plus one entry in the resolver's source list or a
HandlerRegistry - dispatch code does not change.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from .schema import PackageManifest
from .schema import PackageType
from .schema import RegistryPackage


@dataclass(frozen=True)
class FetchContext:
    """Scratch space for one resolution attempt.

    The caller owns ``temp_dir`` and deletes it after the install, whatever
    the outcome.
    """

    temp_dir: Path


@dataclass(frozen=True)
class InstallContext:
    """Where to install, and optionally where downloaded package files live."""

    project_path: Path
    package_path: Path | None = None


@dataclass(frozen=True)
class UninstallContext:
    project_path: Path


@runtime_checkable
class ManifestSource(Protocol):
    """Protocol for manifest sources.

    Sources are tried by ManifestResolver in ascending ``priority`` order.
    """

    name: str
    priority: int

    def can_fetch(self, pkg: RegistryPackage) -> bool:
        """Quick applicability check. Must not perform I/O."""
        ...

    async def fetch(self, pkg: RegistryPackage, context: FetchContext) -> dict[str, Any] | None:
        """Fetch the raw manifest document.

        Returns:
            Parsed cpm.yaml mapping, or None when this source cannot supply it.
            Expected misses (timeouts, HTTP errors, parse errors) return None.
        """
        ...


@runtime_checkable
class PackageHandler(Protocol):
    """Protocol for installing/uninstalling one package type on one platform."""

    package_type: PackageType

    async def install(self, manifest: PackageManifest, context: InstallContext) -> list[Path]:
        """Install package artifacts.

        Returns:
            Paths written
        """
        ...

    async def uninstall(self, package_name: str, context: UninstallContext) -> list[Path]:
        """Remove package artifacts. Finding nothing to remove is not an error.

        Returns:
            Paths removed (or modified, for shared config files)
        """
        ...


@runtime_checkable
class PackageLookup(Protocol):
    """Registry lookup supplied by the app."""

    async def get_package(self, name: str) -> RegistryPackage | None:
        """Look up a package by its full name (``@scope/name``)."""
        ...
