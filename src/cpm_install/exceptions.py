"""Package installation exceptions.

Soft failures (a source miss, a skipped file, a corrupt config) never raise;
everything here is a hard failure that aborts the current operation.
"""


class PackageError(Exception):
    """Base exception for package operations."""

    def __init__(self, message: str, context: dict | None = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (package name, paths, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class PackageNameError(PackageError):
    """Package name is empty, malformed, or attempts path traversal."""


class PackageNotFoundError(PackageError):
    """Registry has no entry for the requested package."""


class RegistryError(PackageError):
    """Registry could not be fetched or parsed."""


class ResolutionError(PackageError):
    """No manifest source produced a manifest."""


class ManifestValidationError(PackageError):
    """Manifest is structurally invalid for its declared type."""


class SecurityError(PackageError):
    """Security validation rejected a command, argument, environment variable, or glob."""


class LockTimeoutError(PackageError):
    """Advisory lock could not be acquired within the retry budget."""
