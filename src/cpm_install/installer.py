"""Package installation orchestration.

Apps inject policy: the registry lookup, the target adapters, the project
path and (optionally) the resolver chain. This module only sequences them:

    name -> validate -> normalize -> registry lookup -> scratch directory
         -> resolve manifest -> install on each adapter -> remove scratch
"""

import logging
import shutil
import tempfile
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from .adapters import PlatformAdapter
from .exceptions import PackageNameError
from .exceptions import PackageNotFoundError
from .protocols import FetchContext
from .protocols import PackageLookup
from .resolver import ManifestResolver
from .resolver import create_default_resolver
from .schema import InstalledPackage
from .schema import InstallResult
from .schema import PackageManifest
from .utils import normalize_package_name
from .utils import validate_package_name

logger = logging.getLogger(__name__)


class InstallReport(BaseModel):
    """Outcome of install_package (immutable)."""

    model_config = ConfigDict(frozen=True)

    manifest: PackageManifest
    source_name: str
    results: list[InstallResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[InstallResult]:
        return [result for result in self.results if result.success]

    @property
    def failed(self) -> list[InstallResult]:
        return [result for result in self.results if not result.success]

    @property
    def files_written(self) -> list[Path]:
        return [path for result in self.succeeded for path in result.files_written]


def _checked_name(name: str) -> str:
    validation = validate_package_name(name)
    if not validation.valid:
        raise PackageNameError(f"Invalid package name: {validation.error}", context={"name": name})
    return normalize_package_name(name)


async def install_package(
    name: str,
    *,
    lookup: PackageLookup,
    adapters: list[PlatformAdapter],
    project_path: Path,
    resolver: ManifestResolver | None = None,
    scratch_root: Path | None = None,
) -> InstallReport:
    """
    Install a package on every given platform.

    Adapters run one after another; a failure on one platform is reported in
    its InstallResult and does not stop the others.

    Args:
        name: Package name as typed ("nextjs-rules" or "@scope/nextjs-rules")
        lookup: Registry lookup (e.g. RegistryClient)
        adapters: Target platform adapters
        project_path: Project directory (used by project-scoped platforms)
        resolver: Manifest resolver (default chain if omitted)
        scratch_root: Parent for the scratch directory (system temp if omitted)

    Returns:
        InstallReport with the manifest, winning source and per-platform results

    Raises:
        PackageNameError: If the name is invalid
        PackageNotFoundError: If the registry has no such package
        ResolutionError: If no source produced a manifest
        ManifestValidationError: If the resolved manifest is invalid

    Example:
        >>> report = await install_package(
        ...     "nextjs-rules",
        ...     lookup=RegistryClient(),
        ...     adapters=[create_claude_code_adapter()],
        ...     project_path=Path.cwd(),
        ... )
        >>> print(report.source_name, report.files_written)
    """
    normalized = _checked_name(name)

    pkg = await lookup.get_package(normalized)
    if pkg is None:
        raise PackageNotFoundError(f"Package {normalized} not found", context={"name": normalized})

    resolver = resolver or create_default_resolver()
    temp_dir = Path(tempfile.mkdtemp(prefix="cpm-", dir=scratch_root))
    logger.info(f"Installing {pkg.name}@{pkg.version}")

    try:
        manifest, source_name = await resolver.resolve_with_source(pkg, FetchContext(temp_dir=temp_dir))
        logger.debug(f"Manifest for {pkg.name} came from {source_name}")

        results: list[InstallResult] = []
        for adapter in adapters:
            results.append(await adapter.install(manifest, project_path, temp_dir))
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    for result in results:
        if not result.success:
            logger.warning(f"Install of {pkg.name} failed on {result.platform}: {result.error}")

    return InstallReport(manifest=manifest, source_name=source_name, results=results)


async def uninstall_package(name: str, *, adapters: list[PlatformAdapter], project_path: Path) -> list[InstallResult]:
    """
    Remove a package from every given platform.

    Raises:
        PackageNameError: If the name is invalid
    """
    normalized = _checked_name(name)
    logger.info(f"Uninstalling {normalized}")
    return [await adapter.uninstall(normalized, project_path) for adapter in adapters]


async def list_installed(*, adapters: list[PlatformAdapter], project_path: Path) -> list[InstalledPackage]:
    """Installed packages across the given platforms."""
    items: list[InstalledPackage] = []
    for adapter in adapters:
        items.extend(await adapter.list_installed(project_path))
    return items
