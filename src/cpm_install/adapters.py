"""Platform adapters - Install a resolved manifest for one AI assistant.

An adapter is configuration, not a subclass: the platform's handlers,
content directories, MCP config path and unsupported types are injected by
the factory functions below. Adapters never raise; every outcome comes back
as an InstallResult.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .config import PlatformPaths
from .discovery import scan_directory
from .discovery import scan_mcp_servers
from .exceptions import PackageError
from .exceptions import PackageNameError
from .handlers import CursorRulesHandler
from .handlers import HandlerRegistry
from .handlers import McpHandler
from .handlers import RulesHandler
from .handlers import SkillHandler
from .protocols import InstallContext
from .protocols import PackageHandler
from .protocols import UninstallContext
from .schema import InstalledPackage
from .schema import InstallResult
from .schema import PackageManifest
from .schema import PackageType
from .schema import Platform
from .schema import get_universal
from .security import sanitize_folder_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentDirectory:
    """A directory of per-package folders, located relative to the project."""

    package_type: PackageType
    resolve: Callable[[Path], Path]


class PlatformAdapter:
    """
    Dispatch installs to the handler registered for the manifest's type.

    Dispatch order:
    1. Types the platform does not support are skipped with a warning
    2. A registered handler for the type
    3. Structural detection: a skill payload, an mcp payload, then inline rules
    4. Nothing applicable: skipped with a warning

    Skips are successful results with no files written.
    """

    def __init__(
        self,
        platform: Platform,
        display_name: str,
        registry: HandlerRegistry,
        content_dirs: list[ContentDirectory],
        mcp_config_path: Path | None = None,
        unsupported_types: tuple[str, ...] = (),
    ):
        self.platform = platform
        self.display_name = display_name
        self.registry = registry
        self.content_dirs = content_dirs
        self.mcp_config_path = mcp_config_path
        self.unsupported_types = unsupported_types

    def _result(self, files: list[Path] | None = None, error: str | None = None) -> InstallResult:
        return InstallResult(success=error is None, platform=self.platform, files_written=files or [], error=error)

    def _select_handler(self, manifest: PackageManifest) -> PackageHandler | None:
        if self.registry.has_handler(manifest.type):
            return self.registry.get_handler(manifest.type)

        universal = get_universal(manifest)
        candidates = (
            ("skill", getattr(manifest, "skill", None) is not None),
            ("mcp", getattr(manifest, "mcp", None) is not None),
            ("rules", universal is not None and bool(universal.rules)),
        )
        for package_type, present in candidates:
            if present and self.registry.has_handler(package_type):
                return self.registry.get_handler(package_type)
        return None

    async def install(
        self, manifest: PackageManifest, project_path: Path, package_path: Path | None = None
    ) -> InstallResult:
        """
        Install a manifest for this platform.

        Args:
            manifest: Validated manifest
            project_path: Project the install is for (project-scoped platforms write here)
            package_path: Directory holding downloaded package files, if any

        Returns:
            InstallResult; handler errors become ``success=False``
        """
        if manifest.type in self.unsupported_types:
            logger.warning(
                f'Package "{manifest.name}" is a {manifest.type} package. '
                f"{manifest.type.capitalize()} packages are not supported on {self.display_name}, skipping."
            )
            return self._result()

        try:
            handler = self._select_handler(manifest)
            if handler is None:
                logger.warning(f'Package type "{manifest.type}" is not yet supported on {self.display_name}')
                return self._result()

            files = await handler.install(manifest, InstallContext(project_path=project_path, package_path=package_path))
        except Exception as e:
            logger.debug(f"Install of {manifest.name} on {self.platform} failed: {e}")
            return self._result(error=str(e))

        logger.info(f"Installed {manifest.name} for {self.display_name} ({len(files)} files)")
        return self._result(files)

    async def uninstall(self, package_name: str, project_path: Path) -> InstallResult:
        """Remove a package's artifacts from every handler's location."""
        try:
            sanitize_folder_name(package_name)
        except PackageNameError as e:
            return self._result(error=str(e))

        removed: list[Path] = []
        context = UninstallContext(project_path=project_path)
        try:
            for handler in self.registry.handlers():
                removed.extend(await handler.uninstall(package_name, context))
        except Exception as e:
            return InstallResult(success=False, platform=self.platform, files_written=removed, error=str(e))

        if removed:
            logger.info(f"Uninstalled {package_name} from {self.display_name}")
        return self._result(removed)

    async def list_installed(self, project_path: Path) -> list[InstalledPackage]:
        items: list[InstalledPackage] = []
        for content_dir in self.content_dirs:
            items.extend(scan_directory(content_dir.resolve(project_path), content_dir.package_type, self.platform))
        if self.mcp_config_path is not None:
            items.extend(scan_mcp_servers(self.mcp_config_path, self.platform))
        return items

    def ensure_dirs(self, project_path: Path) -> None:
        for content_dir in self.content_dirs:
            content_dir.resolve(project_path).mkdir(parents=True, exist_ok=True)


def create_claude_code_adapter(paths: PlatformPaths | None = None) -> PlatformAdapter:
    """Claude Code: user-level rules and skills under ~/.claude, MCP in ~/.claude.json."""
    paths = paths or PlatformPaths.from_home()
    registry = HandlerRegistry(
        [
            RulesHandler(paths.claude_rules_dir),
            SkillHandler(paths.claude_skills_dir),
            McpHandler(paths.claude_mcp_config),
        ]
    )
    return PlatformAdapter(
        platform="claude-code",
        display_name="Claude Code",
        registry=registry,
        content_dirs=[
            ContentDirectory("rules", lambda _project: paths.claude_rules_dir),
            ContentDirectory("skill", lambda _project: paths.claude_skills_dir),
        ],
        mcp_config_path=paths.claude_mcp_config,
    )


def create_cursor_adapter(paths: PlatformPaths | None = None) -> PlatformAdapter:
    """Cursor: project-level .mdc rules, MCP in ~/.cursor/mcp.json, no skills."""
    paths = paths or PlatformPaths.from_home()
    registry = HandlerRegistry(
        [
            CursorRulesHandler(paths.cursor_rules_dir),
            McpHandler(paths.cursor_mcp_config),
        ]
    )
    return PlatformAdapter(
        platform="cursor",
        display_name="Cursor",
        registry=registry,
        content_dirs=[ContentDirectory("rules", paths.cursor_rules_dir)],
        mcp_config_path=paths.cursor_mcp_config,
        unsupported_types=("skill",),
    )


_FACTORIES: dict[str, Callable[[PlatformPaths | None], PlatformAdapter]] = {
    "claude-code": create_claude_code_adapter,
    "cursor": create_cursor_adapter,
}


def get_adapter(platform: str, paths: PlatformPaths | None = None) -> PlatformAdapter:
    """
    Build the adapter for a platform.

    Raises:
        PackageError: If the platform is unknown
    """
    factory = _FACTORIES.get(platform)
    if factory is None:
        raise PackageError(f"No adapter for platform: {platform}", context={"platform": platform})
    return factory(paths)
