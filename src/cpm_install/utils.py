"""Package name utilities: validation of user-supplied names and default scoping."""

import re
from urllib.parse import unquote

from .constants import DEFAULT_SCOPE
from .constants import MAX_PACKAGE_NAME_LENGTH
from .security import ValidationResult

# npm-style: optional @scope/, then lowercase name characters
PACKAGE_NAME_PATTERN = re.compile(r"^(@[a-z0-9-~][a-z0-9-._~]*/)?[a-z0-9-~][a-z0-9-._~]*$")

PATH_TRAVERSAL_MARKERS = ("..", "\\", "%2e", "%2E", "%5c", "%5C", "%2f", "%2F")


def _has_path_traversal(value: str) -> bool:
    return any(marker in value for marker in PATH_TRAVERSAL_MARKERS)


def validate_package_name(name: str) -> ValidationResult:
    """
    Validate a package name as typed by a user.

    Args:
        name: Package name, e.g. "nextjs-rules" or "@cpm/nextjs-rules"

    Returns:
        ValidationResult with the reason when invalid

    Example:
        >>> validate_package_name("@cpm/nextjs-rules").valid
        True
        >>> validate_package_name("../etc/passwd").valid
        False
    """
    if not name or not isinstance(name, str):
        return ValidationResult(valid=False, error="Package name cannot be empty")

    try:
        decoded = unquote(name, errors="strict")
    except UnicodeDecodeError:
        decoded = name

    if len(decoded) > MAX_PACKAGE_NAME_LENGTH:
        return ValidationResult(
            valid=False, error=f"Package name too long (max {MAX_PACKAGE_NAME_LENGTH} characters)"
        )

    if "\0" in decoded or _has_path_traversal(decoded) or _has_path_traversal(name):
        return ValidationResult(valid=False, error="Invalid characters in package name")

    if not PACKAGE_NAME_PATTERN.fullmatch(name.lower()):
        return ValidationResult(valid=False, error="Invalid package name format")

    return ValidationResult(valid=True)


def normalize_package_name(name: str) -> str:
    """Add the default scope to unscoped names ("nextjs-rules" -> "@cpm/nextjs-rules")."""
    if name.startswith("@"):
        return name
    return f"{DEFAULT_SCOPE}/{name}"
