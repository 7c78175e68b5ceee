"""Type handlers - Write one package type's artifacts for one platform.

Each handler owns a single location (a content directory or a shared MCP
config file) injected at construction. Handlers validate untrusted content
before writing anything, and never leave an empty package folder behind.

Handlers are plain classes sharing the helpers in this module; adapters
choose which ones to register.
"""

import json
import logging
import shutil
from collections.abc import Callable
from collections.abc import Iterable
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from .constants import METADATA_FILE_NAME
from .exceptions import PackageError
from .exceptions import SecurityError
from .lock import file_lock
from .protocols import InstallContext
from .protocols import PackageHandler
from .protocols import UninstallContext
from .schema import McpManifest
from .schema import PackageManifest
from .schema import PackageMetadata
from .schema import PackageType
from .schema import SkillManifest
from .schema import get_universal
from .security import is_path_within_directory
from .security import sanitize_file_name
from .security import sanitize_folder_name
from .security import validate_globs
from .security import validate_mcp_config

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """
    Map package types to handlers for one platform.

    Registering a second handler for a type replaces the first.

    Example:
        >>> registry = HandlerRegistry([RulesHandler(rules_dir), McpHandler(config_path)])
        >>> registry.get_handler("rules")
    """

    def __init__(self, handlers: Iterable[PackageHandler] = ()):
        self._handlers: dict[str, PackageHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: PackageHandler) -> None:
        self._handlers[handler.package_type] = handler

    def get_handler(self, package_type: str) -> PackageHandler:
        """
        Raises:
            PackageError: If no handler is registered for the type
        """
        handler = self._handlers.get(package_type)
        if handler is None:
            raise PackageError(
                f"No handler registered for package type: {package_type}",
                context={"package_type": package_type},
            )
        return handler

    def has_handler(self, package_type: str) -> bool:
        return package_type in self._handlers

    def registered_types(self) -> list[str]:
        return list(self._handlers)

    def handlers(self) -> list[PackageHandler]:
        """Distinct handler instances (one handler may serve several types)."""
        unique: list[PackageHandler] = []
        for handler in self._handlers.values():
            if not any(handler is seen for seen in unique):
                unique.append(handler)
        return unique


# --- Shared helpers ----------------------------------------------------------


def write_package_metadata(package_dir: Path, manifest: PackageManifest) -> Path | None:
    """
    Write ``.cpm.json`` into an installed package folder.

    Metadata only feeds listing, so a failed write is logged and skipped.

    Returns:
        Path of the metadata file, or None if it could not be written
    """
    metadata = PackageMetadata(
        name=manifest.name,
        version=manifest.version,
        type=manifest.type,
        installed_at=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
    )
    metadata_path = package_dir / METADATA_FILE_NAME
    try:
        metadata_path.write_text(json.dumps(metadata.model_dump(by_alias=True), indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        logger.warning(f"Could not write metadata: {e}")
        return None
    return metadata_path


def render_front_matter(fields: dict[str, Any]) -> str:
    """YAML front matter block; values are serialized, never interpolated."""
    body = yaml.safe_dump(fields, sort_keys=False, default_flow_style=None, allow_unicode=True)
    return f"---\n{body}---\n"


def get_inline_content(manifest: PackageManifest) -> str | None:
    """Inline rules (or prompt) content carried by the manifest."""
    universal = get_universal(manifest)
    if universal is None:
        return None
    return universal.rules or universal.prompt or None


def get_prompt_content(manifest: PackageManifest) -> str | None:
    """Inline prompt (or rules) content; skills read the prompt first."""
    universal = get_universal(manifest)
    if universal is None:
        return None
    return universal.prompt or universal.rules or None


def copy_markdown_files(
    source_dir: Path,
    dest_dir: Path,
    *,
    suffix: str = ".md",
    render: Callable[[str], str] | None = None,
) -> list[Path]:
    """
    Copy top-level ``*.md`` files from a downloaded package.

    Files failing the name sanitizer, landing outside ``dest_dir``, or that
    are symlinks are skipped with a warning.

    Args:
        source_dir: Extracted package directory
        dest_dir: Installed package folder
        suffix: Extension for written files (".mdc" for Cursor)
        render: Optional transform applied to each file's text

    Returns:
        Files written
    """
    written: list[Path] = []

    for src_path in sorted(source_dir.iterdir()):
        if not src_path.name.endswith(".md"):
            continue

        validation = sanitize_file_name(src_path.name)
        if not validation.valid:
            logger.warning(f"Skipping unsafe file: {src_path.name} ({validation.error})")
            continue

        dest_path = dest_dir / (validation.sanitized.removesuffix(".md") + suffix)
        if not is_path_within_directory(dest_path, dest_dir):
            logger.warning(f"Blocked path traversal attempt: {src_path.name}")
            continue

        if src_path.is_symlink():
            logger.warning(f"Blocked symlink in package: {src_path.name}")
            continue

        if not src_path.is_file():
            continue

        if render is None:
            shutil.copyfile(src_path, dest_path)
        else:
            try:
                text = src_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable file: {src_path.name} ({e})")
                continue
            dest_path.write_text(render(text), encoding="utf-8")
        written.append(dest_path)

    return written


def _has_package_files(context: InstallContext) -> bool:
    return context.package_path is not None and context.package_path.is_dir()


@contextmanager
def _package_folder(package_dir: Path) -> Iterator[Path]:
    """Create a package folder; remove it again if the install fails before finishing."""
    created = not package_dir.exists()
    package_dir.mkdir(parents=True, exist_ok=True)
    try:
        yield package_dir
    except Exception:
        if created:
            shutil.rmtree(package_dir, ignore_errors=True)
        raise


def _finish_install(package_dir: Path, manifest: PackageManifest, written: list[Path]) -> list[Path]:
    if not written:
        logger.warning(
            f'No content found for "{manifest.name}". The package may be missing content files or inline content.'
        )
        shutil.rmtree(package_dir, ignore_errors=True)
        return []

    metadata_path = write_package_metadata(package_dir, manifest)
    if metadata_path is not None:
        written.append(metadata_path)
    return written


def _remove_package_dir(base_dir: Path, package_name: str) -> list[Path]:
    package_dir = base_dir / sanitize_folder_name(package_name)
    if not package_dir.exists():
        return []
    shutil.rmtree(package_dir)
    return [package_dir]


# --- Content handlers --------------------------------------------------------


class RulesHandler:
    """Rules packages as plain markdown under ``<rules_dir>/<folder>/``."""

    package_type: PackageType = "rules"

    def __init__(self, rules_dir: Path):
        self.rules_dir = rules_dir

    async def install(self, manifest: PackageManifest, context: InstallContext) -> list[Path]:
        package_dir = self.rules_dir / sanitize_folder_name(manifest.name)
        with _package_folder(package_dir):
            written: list[Path] = []
            if _has_package_files(context):
                written = copy_markdown_files(context.package_path, package_dir)

            if not written:
                content = get_inline_content(manifest)
                if content:
                    rules_path = package_dir / "RULES.md"
                    rules_path.write_text(
                        f"# {manifest.name}\n\n{manifest.description}\n\n{content.strip()}\n", encoding="utf-8"
                    )
                    written.append(rules_path)

            return _finish_install(package_dir, manifest, written)

    async def uninstall(self, package_name: str, context: UninstallContext) -> list[Path]:
        return _remove_package_dir(self.rules_dir, package_name)


def format_skill_markdown(manifest: SkillManifest) -> str:
    """SKILL.md for a skill manifest: front matter registering the command, then instructions."""
    front_matter = render_front_matter(
        {
            "name": manifest.name,
            "command": manifest.skill.command,
            "description": manifest.skill.description or manifest.description,
            "version": manifest.version,
        }
    )
    content = get_prompt_content(manifest) or ""
    return (
        f"{front_matter}\n# {manifest.name}\n\n{manifest.description}\n\n## Instructions\n\n{content.strip()}\n"
    )


class SkillHandler:
    """Skill packages (slash commands) under ``<skills_dir>/<folder>/SKILL.md``."""

    package_type: PackageType = "skill"

    def __init__(self, skills_dir: Path):
        self.skills_dir = skills_dir

    async def install(self, manifest: PackageManifest, context: InstallContext) -> list[Path]:
        package_dir = self.skills_dir / sanitize_folder_name(manifest.name)
        with _package_folder(package_dir):
            written: list[Path] = []
            if _has_package_files(context):
                written = copy_markdown_files(context.package_path, package_dir)

            if not written:
                skill_path = package_dir / "SKILL.md"
                if isinstance(manifest, SkillManifest):
                    skill_path.write_text(format_skill_markdown(manifest), encoding="utf-8")
                    written.append(skill_path)
                else:
                    content = get_prompt_content(manifest)
                    if content:
                        skill_path.write_text(
                            f"# {manifest.name}\n\n{manifest.description}\n\n{content.strip()}\n", encoding="utf-8"
                        )
                        written.append(skill_path)

            return _finish_install(package_dir, manifest, written)

    async def uninstall(self, package_name: str, context: UninstallContext) -> list[Path]:
        return _remove_package_dir(self.skills_dir, package_name)


def to_mdc(description: str, globs: list[str], content: str) -> str:
    """Wrap rules text in Cursor's .mdc front matter."""
    front_matter = render_front_matter({"description": description, "globs": globs, "alwaysApply": not globs})
    return f"{front_matter}{content.strip()}\n"


class CursorRulesHandler:
    """
    Rules packages as Cursor ``.mdc`` files in the project.

    Args:
        rules_dir_for: Maps a project path to its Cursor rules directory
    """

    package_type: PackageType = "rules"

    def __init__(self, rules_dir_for: Callable[[Path], Path]):
        self.rules_dir_for = rules_dir_for

    async def install(self, manifest: PackageManifest, context: InstallContext) -> list[Path]:
        universal = get_universal(manifest)
        globs = list(universal.globs or []) if universal is not None else []

        # Globs end up in front matter Cursor acts on, so reject before creating anything
        if globs:
            validation = validate_globs(globs)
            if not validation.valid:
                raise SecurityError(
                    f"Glob security validation failed: {validation.error}",
                    context={"package": manifest.name, "globs": globs},
                )

        description = manifest.description or manifest.name
        package_dir = self.rules_dir_for(context.project_path) / sanitize_folder_name(manifest.name)
        with _package_folder(package_dir):
            written: list[Path] = []
            if _has_package_files(context):
                written = copy_markdown_files(
                    context.package_path,
                    package_dir,
                    suffix=".mdc",
                    render=lambda text: to_mdc(description, globs, text),
                )

            if not written:
                content = get_inline_content(manifest)
                if content:
                    rules_path = package_dir / "RULES.mdc"
                    rules_path.write_text(to_mdc(description, globs, content), encoding="utf-8")
                    written.append(rules_path)

            return _finish_install(package_dir, manifest, written)

    async def uninstall(self, package_name: str, context: UninstallContext) -> list[Path]:
        return _remove_package_dir(self.rules_dir_for(context.project_path), package_name)


# --- MCP ---------------------------------------------------------------------


def _backup_corrupt_config(config_path: Path) -> None:
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
    backup_path = config_path.with_name(f"{config_path.name}.backup.{stamp}")
    try:
        shutil.copy2(config_path, backup_path)
        logger.warning(f"Could not parse {config_path}, backup saved to {backup_path}")
    except OSError:
        logger.warning(f"Could not parse {config_path}, creating new config")


def _read_config_for_update(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}

    try:
        config = json.loads(config_path.read_text(encoding="utf-8"))
    except ValueError:
        config = None

    if not isinstance(config, dict):
        _backup_corrupt_config(config_path)
        return {}
    return config


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


def mcp_server_entry(manifest: McpManifest) -> dict[str, Any]:
    """``mcpServers`` value for a manifest; absent args/env are omitted."""
    entry: dict[str, Any] = {"command": manifest.mcp.command}
    if manifest.mcp.args is not None:
        entry["args"] = list(manifest.mcp.args)
    if manifest.mcp.env is not None:
        entry["env"] = dict(manifest.mcp.env)
    return entry


class McpHandler:
    """
    MCP server packages as entries in a shared JSON config.

    The config file is shared with the assistant itself, so every
    read-modify-write happens under the advisory file lock and unrelated
    keys are preserved.

    Args:
        config_path: ``~/.claude.json`` for Claude Code, ``~/.cursor/mcp.json`` for Cursor
    """

    package_type: PackageType = "mcp"

    def __init__(self, config_path: Path):
        self.config_path = config_path

    async def install(self, manifest: PackageManifest, context: InstallContext) -> list[Path]:
        if not isinstance(manifest, McpManifest):
            return []

        validation = validate_mcp_config(manifest.mcp)
        if not validation.valid:
            raise SecurityError(
                f"MCP security validation failed: {validation.error}",
                context={"package": manifest.name},
            )

        server_name = sanitize_folder_name(manifest.name)
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        async with file_lock(self.config_path):
            config = _read_config_for_update(self.config_path)
            servers = config.get("mcpServers")
            if not isinstance(servers, dict):
                servers = {}
            config["mcpServers"] = {**servers, server_name: mcp_server_entry(manifest)}
            _write_json(self.config_path, config)

        logger.debug(f"Registered MCP server {server_name} in {self.config_path}")
        return [self.config_path]

    async def uninstall(self, package_name: str, context: UninstallContext) -> list[Path]:
        server_name = sanitize_folder_name(package_name)
        if not self.config_path.exists():
            return []

        async with file_lock(self.config_path):
            try:
                config = json.loads(self.config_path.read_text(encoding="utf-8"))
            except ValueError as e:
                logger.warning(f"Could not update MCP config {self.config_path}: {e}")
                return []

            servers = config.get("mcpServers") if isinstance(config, dict) else None
            if not isinstance(servers, dict) or server_name not in servers:
                return []

            config["mcpServers"] = {key: value for key, value in servers.items() if key != server_name}
            _write_json(self.config_path, config)

        logger.debug(f"Removed MCP server {server_name} from {self.config_path}")
        return [self.config_path]
