"""Security validators for untrusted package content.

Every check here is pure. Handlers call these before writing anything:

- validate_mcp_config: command allowlist, argument and environment blocklists
- sanitize_file_name / sanitize_folder_name: names taken from packages
- is_path_within_directory / resolve_secure_path: containment after joining
- validate_glob / validate_globs: globs written into rule front matter

Validation failures that callers are expected to handle come back as
ValidationResult values. Only sanitize_folder_name raises, because a bad
package name leaves no sensible folder to fall back to.
"""

import os
import posixpath
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import unquote

from pydantic import BaseModel

from .constants import ALLOWED_MCP_COMMANDS
from .constants import BLOCKED_GLOB_PATTERNS
from .constants import BLOCKED_MCP_ARG_PATTERNS
from .constants import BLOCKED_MCP_ENV_KEYS
from .constants import UNSAFE_FILE_CHARS
from .constants import UNSAFE_FOLDER_CHARS
from .exceptions import PackageNameError


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None


@dataclass(frozen=True)
class FileNameValidation(ValidationResult):
    sanitized: str = ""


_OK = ValidationResult(valid=True)


# --- MCP configuration -------------------------------------------------------


def allowed_commands() -> tuple[str, ...]:
    """Commands an MCP server configuration may run."""
    return ALLOWED_MCP_COMMANDS


def _is_allowed_command(command: str) -> bool:
    # Only bare names: "/tmp/evil/npx" may be a symlink to a shell
    if "/" in command or "\\" in command:
        return False
    return command in ALLOWED_MCP_COMMANDS


def _find_blocked_pattern(args: list[str]) -> re.Pattern[str] | None:
    for arg in args:
        for pattern in BLOCKED_MCP_ARG_PATTERNS:
            if pattern.search(arg):
                return pattern

    # Patterns split across adjacent arguments only show up once joined
    joined = " ".join(args)
    for pattern in BLOCKED_MCP_ARG_PATTERNS:
        if pattern.search(joined):
            return pattern

    return None


def _find_blocked_env_key(env: Mapping[str, str]) -> str | None:
    blocked = {key.upper() for key in BLOCKED_MCP_ENV_KEYS}
    for key in env:
        if key.upper() in blocked:
            return key
    return None


def validate_mcp_config(config: BaseModel | Mapping[str, Any] | None) -> ValidationResult:
    """
    Validate an MCP server configuration before it is written anywhere.

    Checks, in order:
    1. command is present, bare (no path separators) and allowlisted
    2. args contain no blocked pattern, per element and joined with spaces
    3. env contains no key that redirects interpreter behaviour (case-insensitive)

    Args:
        config: McpConfig model or mapping with command/args/env

    Returns:
        ValidationResult naming the first rule violated

    Example:
        >>> validate_mcp_config({"command": "npx", "args": ["-y", "@supabase/mcp"]}).valid
        True
        >>> validate_mcp_config({"command": "/usr/bin/npx"}).valid
        False
    """
    if isinstance(config, BaseModel):
        config = config.model_dump()

    command = (config or {}).get("command")
    if not command or not isinstance(command, str):
        return ValidationResult(valid=False, error="MCP command is required")

    if not _is_allowed_command(command):
        return ValidationResult(
            valid=False,
            error=f"MCP command '{command}' is not allowed. Allowed: {', '.join(ALLOWED_MCP_COMMANDS)}",
        )

    args = config.get("args") or []
    if args:
        blocked = _find_blocked_pattern([str(arg) for arg in args])
        if blocked is not None:
            return ValidationResult(
                valid=False,
                error=f"MCP arguments contain blocked pattern: {blocked.pattern}",
            )

    env = config.get("env") or {}
    if env:
        blocked_key = _find_blocked_env_key(env)
        if blocked_key is not None:
            return ValidationResult(
                valid=False,
                error=(
                    f"MCP environment variable '{blocked_key}' is not allowed. "
                    "It could be used to bypass command security restrictions."
                ),
            )

    return _OK


# --- File and folder names ---------------------------------------------------


def sanitize_file_name(file_name: str, allowed_extensions: tuple[str, ...] = (".md",)) -> FileNameValidation:
    """
    Validate and clean a single file name taken from a package.

    Directory components are stripped first, so "../../evil.md" becomes
    "evil.md". Hidden files, null bytes and disallowed extensions are rejected.

    Args:
        file_name: File name (or path) from the package
        allowed_extensions: Extensions accepted in this context

    Returns:
        FileNameValidation with ``sanitized`` set when valid

    Example:
        >>> sanitize_file_name("RULES.md").sanitized
        'RULES.md'
        >>> sanitize_file_name(".secret").valid
        False
    """
    if not file_name or not isinstance(file_name, str):
        return FileNameValidation(valid=False, error="File name cannot be empty")

    base_name = re.split(r"[\\/]", file_name)[-1]
    if not base_name:
        return FileNameValidation(valid=False, error="File name cannot be empty")

    if "\0" in base_name:
        return FileNameValidation(valid=False, error="File name contains null bytes")

    if base_name.startswith("."):
        return FileNameValidation(valid=False, error="Hidden files not allowed")

    sanitized = UNSAFE_FILE_CHARS.sub("_", base_name)

    if ".." in sanitized:
        return FileNameValidation(valid=False, error="Path traversal detected in file name")

    if not sanitized.endswith(tuple(allowed_extensions)):
        return FileNameValidation(
            valid=False,
            error=f"Only {', '.join(allowed_extensions)} files allowed",
        )

    return FileNameValidation(valid=True, sanitized=sanitized)


def sanitize_folder_name(name: str) -> str:
    """
    Turn a package name into a single safe folder name.

    Args:
        name: Package name, possibly scoped or percent-encoded

    Returns:
        Folder name (scope removed)

    Raises:
        PackageNameError: If nothing safe remains or traversal is detected

    Example:
        >>> sanitize_folder_name("@cpm/nextjs-rules")
        'nextjs-rules'
    """
    if not name or not isinstance(name, str):
        raise PackageNameError("Package name cannot be empty")

    try:
        decoded = unquote(name, errors="strict")
    except UnicodeDecodeError:
        decoded = name

    if "\0" in decoded:
        raise PackageNameError("Invalid package name: contains null bytes", context={"name": name})

    if "/" in decoded:
        sanitized = decoded.split("/")[-1] or decoded
    else:
        sanitized = decoded.removeprefix("@")

    sanitized = sanitized.replace("..", "")
    sanitized = re.sub(r"%2e%2e", "", sanitized, flags=re.IGNORECASE)
    sanitized = re.sub(r"%2f", "", sanitized, flags=re.IGNORECASE)
    sanitized = re.sub(r"%5c", "", sanitized, flags=re.IGNORECASE)
    sanitized = UNSAFE_FOLDER_CHARS.sub("", sanitized)

    if not sanitized or sanitized.startswith("."):
        raise PackageNameError(f"Invalid package name: {name}", context={"name": name})

    normalized = posixpath.normpath(sanitized)
    if normalized != sanitized or ".." in normalized or "/" in normalized:
        raise PackageNameError(f"Invalid package name (path traversal detected): {name}", context={"name": name})

    if posixpath.dirname(posixpath.normpath(posixpath.join("/test", sanitized))) != "/test":
        raise PackageNameError(f"Invalid package name (path traversal detected): {name}", context={"name": name})

    return sanitized


# --- Paths -------------------------------------------------------------------


def is_path_within_directory(path: str | Path, directory: str | Path) -> bool:
    """
    Check that ``path`` is ``directory`` or lies under it.

    Both are made absolute and normalized. The prefix comparison includes a
    trailing separator, so "/a/dir2" is not inside "/a/dir".

    Example:
        >>> is_path_within_directory("/home/user/dir/x", "/home/user/dir")
        True
        >>> is_path_within_directory("/home/user/directory/x", "/home/user/dir")
        False
    """
    resolved_path = os.path.abspath(path)
    resolved_dir = os.path.abspath(directory)
    if resolved_path == resolved_dir:
        return True
    return resolved_path.startswith(os.path.join(resolved_dir, ""))


def resolve_secure_path(base_path: str | Path, relative_path: str | Path) -> Path | None:
    """Join ``relative_path`` onto ``base_path``; None if the result escapes."""
    resolved = os.path.abspath(os.path.join(base_path, relative_path))
    if not is_path_within_directory(resolved, base_path):
        return None
    return Path(resolved)


# --- Globs -------------------------------------------------------------------


def validate_glob(glob: str) -> ValidationResult:
    """Reject glob patterns that target secrets, keys, VCS internals or system files."""
    if not glob or not isinstance(glob, str):
        return ValidationResult(valid=False, error="Glob pattern cannot be empty")

    if "\0" in glob:
        return ValidationResult(valid=False, error="Glob pattern contains null bytes")

    for pattern, reason in BLOCKED_GLOB_PATTERNS:
        if pattern.search(glob):
            return ValidationResult(valid=False, error=f'Glob pattern "{glob}" is blocked: {reason}')

    return _OK


def validate_globs(globs: list[str]) -> ValidationResult:
    """First failing glob, or valid."""
    for glob in globs:
        result = validate_glob(glob)
        if not result.valid:
            return result
    return _OK
