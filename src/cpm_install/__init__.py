"""cpm-install - Resolve, validate and install AI assistant packages.

Public API. Apps inject policy (paths, registry, target platforms); this
package provides the mechanism.
"""

from .adapters import ContentDirectory
from .adapters import PlatformAdapter
from .adapters import create_claude_code_adapter
from .adapters import create_cursor_adapter
from .adapters import get_adapter
from .config import CpmConfig
from .config import PlatformPaths
from .config import Settings
from .config import read_config
from .config import resolve_platforms
from .config import write_config
from .discovery import read_package_metadata
from .discovery import scan_directory
from .discovery import scan_mcp_servers
from .embedded import get_embedded_manifest
from .embedded import list_embedded_packages
from .exceptions import LockTimeoutError
from .exceptions import ManifestValidationError
from .exceptions import PackageError
from .exceptions import PackageNameError
from .exceptions import PackageNotFoundError
from .exceptions import RegistryError
from .exceptions import ResolutionError
from .exceptions import SecurityError
from .handlers import CursorRulesHandler
from .handlers import HandlerRegistry
from .handlers import McpHandler
from .handlers import RulesHandler
from .handlers import SkillHandler
from .handlers import write_package_metadata
from .installer import InstallReport
from .installer import install_package
from .installer import list_installed
from .installer import uninstall_package
from .lock import acquire_lock
from .lock import file_lock
from .protocols import FetchContext
from .protocols import InstallContext
from .protocols import ManifestSource
from .protocols import PackageHandler
from .protocols import PackageLookup
from .protocols import UninstallContext
from .registry import RegistryClient
from .resolver import ManifestResolver
from .resolver import create_default_resolver
from .schema import InstalledPackage
from .schema import InstallResult
from .schema import PackageManifest
from .schema import PackageMetadata
from .schema import RegistryPackage
from .schema import validate_manifest
from .security import ValidationResult
from .security import is_path_within_directory
from .security import sanitize_file_name
from .security import sanitize_folder_name
from .security import validate_glob
from .security import validate_globs
from .security import validate_mcp_config
from .sources import EmbeddedSource
from .sources import RegistrySource
from .sources import RepositorySource
from .sources import TarballSource
from .utils import normalize_package_name
from .utils import validate_package_name

__all__ = [
    # Schema
    "PackageManifest",
    "RegistryPackage",
    "PackageMetadata",
    "InstalledPackage",
    "InstallResult",
    "validate_manifest",
    # Resolution
    "ManifestResolver",
    "create_default_resolver",
    "ManifestSource",
    "FetchContext",
    "RepositorySource",
    "TarballSource",
    "EmbeddedSource",
    "RegistrySource",
    "get_embedded_manifest",
    "list_embedded_packages",
    # Security
    "ValidationResult",
    "validate_mcp_config",
    "sanitize_file_name",
    "sanitize_folder_name",
    "is_path_within_directory",
    "validate_glob",
    "validate_globs",
    # Handlers
    "PackageHandler",
    "InstallContext",
    "UninstallContext",
    "HandlerRegistry",
    "RulesHandler",
    "SkillHandler",
    "CursorRulesHandler",
    "McpHandler",
    "write_package_metadata",
    # Adapters
    "PlatformAdapter",
    "ContentDirectory",
    "create_claude_code_adapter",
    "create_cursor_adapter",
    "get_adapter",
    # Discovery
    "read_package_metadata",
    "scan_directory",
    "scan_mcp_servers",
    # Installation
    "install_package",
    "uninstall_package",
    "list_installed",
    "InstallReport",
    "PackageLookup",
    "RegistryClient",
    # Locking
    "acquire_lock",
    "file_lock",
    # Configuration
    "PlatformPaths",
    "Settings",
    "CpmConfig",
    "read_config",
    "write_config",
    "resolve_platforms",
    # Exceptions
    "PackageError",
    "PackageNameError",
    "PackageNotFoundError",
    "RegistryError",
    "ResolutionError",
    "ManifestValidationError",
    "SecurityError",
    "LockTimeoutError",
    # Utilities
    "validate_package_name",
    "normalize_package_name",
]

__version__ = "0.1.0"
