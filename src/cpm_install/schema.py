"""Package manifest schema - Parse cpm.yaml documents into typed manifests.

A manifest is a tagged union keyed by ``type``. Rules, skill and mcp packages
carry their own payloads; agent/hook/workflow/template/bundle share one
lenient shape. Payload fields that do not belong to the declared type are
dropped during validation, so a mismatched payload reads as "no content"
rather than being reinterpreted.
"""

import re
from pathlib import Path
from typing import Annotated
from typing import Any
from typing import Literal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import TypeAdapter
from pydantic import ValidationError
from pydantic import field_validator

from .constants import PATH_TYPE_PREFIXES
from .exceptions import ManifestValidationError
from .exceptions import PackageError

PackageType = Literal["rules", "mcp", "skill", "agent", "hook", "workflow", "template", "bundle"]
Platform = Literal["claude-code", "cursor"]

SKILL_COMMAND_PATTERN = r"^/[A-Za-z0-9][A-Za-z0-9_:.-]*$"


class Author(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    email: str | None = None
    url: str | None = None


class UniversalContent(BaseModel):
    """Content shared by every content-bearing package type."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    rules: str | None = None
    prompt: str | None = None
    globs: list[str] | None = None


class SkillConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    command: str = Field(min_length=1)
    description: str = Field(min_length=1)

    @field_validator("command")
    @classmethod
    def _slash_command(cls, value: str) -> str:
        if not re.fullmatch(SKILL_COMMAND_PATTERN, value):
            raise ValueError(f"skill command must be a slash command like '/review', got {value!r}")
        return value


class McpConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    transport: Literal["stdio", "http"] | None = None
    command: str = Field(min_length=1)
    args: list[str] | None = None
    env: dict[str, str] | None = None


class _ManifestBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    description: str = Field(min_length=1)
    author: str | Author | None = None
    repository: str | None = None
    license: str | None = None
    keywords: list[str] | None = None


class RulesManifest(_ManifestBase):
    type: Literal["rules"]
    universal: UniversalContent | None = None


class SkillManifest(_ManifestBase):
    type: Literal["skill"]
    skill: SkillConfig
    universal: UniversalContent | None = None


class McpManifest(_ManifestBase):
    type: Literal["mcp"]
    mcp: McpConfig


class GenericManifest(_ManifestBase):
    """Agent, hook, workflow, template and bundle packages (no type-specific fields yet)."""

    type: Literal["agent", "hook", "workflow", "template", "bundle"]
    universal: UniversalContent | None = None


PackageManifest = Annotated[
    RulesManifest | SkillManifest | McpManifest | GenericManifest,
    Field(discriminator="type"),
]

_manifest_adapter: TypeAdapter[PackageManifest] = TypeAdapter(PackageManifest)


def validate_manifest(raw: Any) -> PackageManifest:
    """
    Validate a parsed cpm.yaml document as a PackageManifest.

    Args:
        raw: Output of yaml.safe_load (or an equivalent dict)

    Returns:
        Typed manifest (one of the union members)

    Raises:
        ManifestValidationError: Naming the first offending field
    """
    try:
        return _manifest_adapter.validate_python(raw)
    except ValidationError as e:
        first = e.errors()[0]
        loc = [str(part) for part in first.get("loc", ())]
        # Discriminated unions prefix the location with the tag value
        if isinstance(raw, dict) and loc and loc[0] == str(raw.get("type")):
            loc = loc[1:]
        field = ".".join(loc) or "type"
        raise ManifestValidationError(
            f"Invalid manifest: {field} - {first.get('msg', 'invalid value')}",
            context={"field": field},
        ) from e


def get_universal(manifest: PackageManifest) -> UniversalContent | None:
    """Universal content of a manifest, or None for types that cannot carry it."""
    return getattr(manifest, "universal", None)


def is_rules_manifest(manifest: PackageManifest) -> bool:
    return isinstance(manifest, RulesManifest)


def is_skill_manifest(manifest: PackageManifest) -> bool:
    return isinstance(manifest, SkillManifest)


def is_mcp_manifest(manifest: PackageManifest) -> bool:
    return isinstance(manifest, McpManifest)


class RegistryPackage(BaseModel):
    """Registry entry for a package (what the registry lookup returns)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    version: str
    description: str = ""
    author: str = ""
    type: PackageType | None = None
    path: str | None = None
    repository: str | None = None
    tarball: str | None = None
    keywords: list[str] | None = None
    license: str | None = None


def get_type_from_path(path: str) -> PackageType | None:
    """Derive package type from a registry path like ``rules/cpm/nextjs``."""
    for prefix, package_type in PATH_TYPE_PREFIXES.items():
        if path.startswith(prefix):
            return package_type  # type: ignore[return-value]
    return None


def resolve_package_type(pkg: RegistryPackage) -> PackageType:
    """Explicit type, or one derived from the registry path."""
    if pkg.type:
        return pkg.type
    if pkg.path:
        derived = get_type_from_path(pkg.path)
        if derived:
            return derived
    raise PackageError(f"Cannot determine type for package: {pkg.name}", context={"package": pkg.name})


class PackageMetadata(BaseModel):
    """Contents of the per-package ``.cpm.json`` file."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    version: str
    type: str
    installed_at: str = Field(alias="installedAt")


class InstalledPackage(BaseModel):
    """Package found on disk or in a shared config (never persisted)."""

    model_config = ConfigDict(frozen=True)

    name: str
    folder_name: str
    type: PackageType
    version: str | None = None
    path: Path
    platform: Platform | None = None


class InstallResult(BaseModel):
    """Uniform result of an adapter install/uninstall."""

    model_config = ConfigDict(frozen=True)

    success: bool
    platform: Platform
    files_written: list[Path] = Field(default_factory=list)
    error: str | None = None
