"""Installed package discovery - Read back what handlers wrote.

Content packages are folders under a content directory (optionally carrying
a ``.cpm.json`` metadata file); MCP packages are keys of ``mcpServers`` in a
shared config file. Discovery never fails: unreadable entries are skipped.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from .constants import METADATA_FILE_NAME
from .schema import InstalledPackage
from .schema import PackageMetadata
from .schema import PackageType
from .schema import Platform

logger = logging.getLogger(__name__)


def read_package_metadata(package_dir: Path) -> PackageMetadata | None:
    """
    Read ``.cpm.json`` from an installed package folder.

    Returns:
        Parsed metadata, or None if missing or unreadable
    """
    metadata_path = package_dir / METADATA_FILE_NAME
    if not metadata_path.is_file():
        return None

    try:
        return PackageMetadata.model_validate_json(metadata_path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.debug(f"Ignoring unreadable metadata {metadata_path}: {e}")
        return None


def scan_directory(directory: Path, package_type: PackageType, platform: Platform | None = None) -> list[InstalledPackage]:
    """
    List installed packages in a content directory.

    One entry per subdirectory; symlinks are skipped. The package name comes
    from metadata when present, otherwise the folder name.

    Example:
        >>> for pkg in scan_directory(Path.home() / ".claude" / "rules", "rules", "claude-code"):
        ...     print(pkg.name, pkg.version)
    """
    if not directory.is_dir():
        return []

    items: list[InstalledPackage] = []
    for entry in sorted(directory.iterdir()):
        if entry.is_symlink() or not entry.is_dir():
            continue

        metadata = read_package_metadata(entry)
        items.append(
            InstalledPackage(
                name=metadata.name if metadata else entry.name,
                folder_name=entry.name,
                type=package_type,
                version=metadata.version if metadata else None,
                path=entry,
                platform=platform,
            )
        )

    return items


def scan_mcp_servers(config_path: Path, platform: Platform) -> list[InstalledPackage]:
    """List MCP servers registered in a shared config file."""
    if not config_path.is_file():
        return []

    try:
        config = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug(f"Ignoring unreadable MCP config {config_path}: {e}")
        return []

    servers = config.get("mcpServers") if isinstance(config, dict) else None
    if not isinstance(servers, dict):
        return []

    return [
        InstalledPackage(name=name, folder_name=name, type="mcp", path=config_path, platform=platform)
        for name in servers
    ]
