"""Configuration: filesystem locations, environment overrides, and ~/.cpm/config.json.

Locations are policy, so they are computed here once and injected into
handlers and adapters rather than looked up from inside them.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError

from .constants import DEFAULT_PACKAGES_URL
from .constants import DEFAULT_REGISTRY_URL
from .constants import VALID_PLATFORMS
from .exceptions import PackageError
from .lock import file_lock
from .schema import Platform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlatformPaths:
    """Where each supported assistant keeps its files.

    Example:
        >>> paths = PlatformPaths.from_home(Path.home())
        >>> paths.claude_mcp_config
        PosixPath('/home/dev/.claude.json')
    """

    home: Path

    @classmethod
    def from_home(cls, home: Path | None = None) -> "PlatformPaths":
        return cls(home=home if home is not None else Path.home())

    @property
    def claude_home(self) -> Path:
        return self.home / ".claude"

    @property
    def claude_rules_dir(self) -> Path:
        return self.claude_home / "rules"

    @property
    def claude_skills_dir(self) -> Path:
        return self.claude_home / "skills"

    @property
    def claude_mcp_config(self) -> Path:
        return self.home / ".claude.json"

    @property
    def cursor_home(self) -> Path:
        return self.home / ".cursor"

    @property
    def cursor_mcp_config(self) -> Path:
        return self.cursor_home / "mcp.json"

    @property
    def cpm_dir(self) -> Path:
        return self.home / ".cpm"

    @property
    def cpm_config(self) -> Path:
        return self.cpm_dir / "config.json"

    def cursor_rules_dir(self, project_path: Path) -> Path:
        return project_path / ".cursor" / "rules"


@dataclass(frozen=True)
class Settings:
    """Remote endpoints (overridable through the environment)."""

    registry_url: str = DEFAULT_REGISTRY_URL
    packages_url: str = DEFAULT_PACKAGES_URL

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            registry_url=os.environ.get("CPM_REGISTRY_URL") or DEFAULT_REGISTRY_URL,
            packages_url=(os.environ.get("CPM_PACKAGES_URL") or DEFAULT_PACKAGES_URL).rstrip("/"),
        )


class CpmConfig(BaseModel):
    """User configuration stored at ~/.cpm/config.json."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    default_platform: str | None = Field(default=None, alias="defaultPlatform")


def is_valid_platform(value: str) -> bool:
    return value in VALID_PLATFORMS


def read_config(config_path: Path) -> CpmConfig:
    """Load config; a missing or unreadable file yields defaults."""
    if not config_path.exists():
        return CpmConfig()

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
        return CpmConfig.model_validate(data)
    except (OSError, ValueError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable config {config_path}: {e}")
        return CpmConfig()


async def write_config(config_path: Path, config: CpmConfig) -> None:
    """Save config under the advisory lock."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    async with file_lock(config_path):
        data = config.model_dump(by_alias=True, exclude_none=True)
        config_path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    logger.debug(f"Saved config {config_path}")


def get_default_platform(config: CpmConfig) -> Platform | None:
    if config.default_platform and is_valid_platform(config.default_platform):
        return config.default_platform  # type: ignore[return-value]
    return None


def resolve_platforms(option: str | None, config: CpmConfig | None = None) -> list[Platform]:
    """
    Pick target platforms: explicit option, then configured default, then claude-code.

    Raises:
        PackageError: If ``option`` names an unknown platform
    """
    if option and option != "all":
        if not is_valid_platform(option):
            raise PackageError(
                f"Invalid platform: {option}. Valid platforms: {', '.join(VALID_PLATFORMS)}",
                context={"platform": option},
            )
        return [option]  # type: ignore[list-item]

    if option == "all":
        return list(VALID_PLATFORMS)  # type: ignore[arg-type]

    default = get_default_platform(config) if config is not None else None
    return [default or "claude-code"]
