"""Shared constants: timeouts, limits, package types, and security lists.

This is the only place the allowlist/blocklists are defined.
"""

import re

# Seconds
MANIFEST_FETCH_TIMEOUT = 5.0
TARBALL_DOWNLOAD_TIMEOUT = 30.0
REGISTRY_FETCH_TIMEOUT = 10.0

MAX_PACKAGE_NAME_LENGTH = 214
MAX_TARBALL_BYTES = 50 * 1024 * 1024
REGISTRY_CACHE_TTL = 5 * 60.0

DEFAULT_SCOPE = "@cpm"
MANIFEST_FILE_NAME = "cpm.yaml"
METADATA_FILE_NAME = ".cpm.json"

DEFAULT_REGISTRY_URL = "https://raw.githubusercontent.com/cpmai-dev/packages/main/registry.json"
DEFAULT_PACKAGES_URL = "https://raw.githubusercontent.com/cpmai-dev/packages/main"

PACKAGE_TYPES = ("rules", "mcp", "skill", "agent", "hook", "workflow", "template", "bundle")

# Registry path prefix -> package type
PATH_TYPE_PREFIXES = {
    "skills/": "skill",
    "rules/": "rules",
    "mcp/": "mcp",
    "agents/": "agent",
    "hooks/": "hook",
    "workflows/": "workflow",
    "templates/": "template",
    "bundles/": "bundle",
}

VALID_PLATFORMS = ("claude-code", "cursor")

ALLOWED_MCP_COMMANDS = ("npx", "node", "python", "python3", "deno", "bun", "uvx")

BLOCKED_MCP_ARG_PATTERNS = (
    re.compile(r"--eval", re.IGNORECASE),
    re.compile(r"-e(?:\s|$)"),
    re.compile(r"^-e\S"),
    re.compile(r"-c(?:\s|$)"),
    re.compile(r"^-c\S"),
    re.compile(r"\bcurl\b", re.IGNORECASE),
    re.compile(r"\bwget\b", re.IGNORECASE),
    re.compile(r"\brm(?:\s|$)", re.IGNORECASE),
    re.compile(r"\bsudo\b", re.IGNORECASE),
    re.compile(r"\bchmod\b", re.IGNORECASE),
    re.compile(r"\bchown\b", re.IGNORECASE),
    re.compile(r"[|;&`$]"),
    re.compile(r"--inspect", re.IGNORECASE),
    re.compile(r"--allow-all", re.IGNORECASE),
    re.compile(r"--allow-run", re.IGNORECASE),
    re.compile(r"--allow-write", re.IGNORECASE),
    re.compile(r"--allow-net", re.IGNORECASE),
    re.compile(r"^https?://", re.IGNORECASE),
)

# Variables that change how an allowed interpreter loads code
BLOCKED_MCP_ENV_KEYS = (
    "PATH",
    "LD_PRELOAD",
    "LD_LIBRARY_PATH",
    "DYLD_INSERT_LIBRARIES",
    "DYLD_LIBRARY_PATH",
    "NODE_OPTIONS",
    "NODE_PATH",
    "PYTHONPATH",
    "PYTHONSTARTUP",
    "PYTHONHOME",
    "RUBYOPT",
    "PERL5OPT",
    "BASH_ENV",
    "ENV",
    "CDPATH",
    "HOME",
    "USERPROFILE",
    "NPM_CONFIG_REGISTRY",
    "NPM_CONFIG_PREFIX",
    "NPM_CONFIG_GLOBALCONFIG",
    "DENO_DIR",
    "BUN_INSTALL",
)

BLOCKED_GLOB_PATTERNS = (
    (re.compile(r"\.env\b", re.IGNORECASE), "targets environment/secret files"),
    (re.compile(r"\.secret", re.IGNORECASE), "targets secret files"),
    (re.compile(r"credentials", re.IGNORECASE), "targets credential files"),
    (re.compile(r"\.pem$", re.IGNORECASE), "targets PEM certificate/key files"),
    (re.compile(r"\.key$", re.IGNORECASE), "targets key files"),
    (re.compile(r"\.p12$", re.IGNORECASE), "targets PKCS12 certificate files"),
    (re.compile(r"\.pfx$", re.IGNORECASE), "targets PFX certificate files"),
    (re.compile(r"\.ssh/", re.IGNORECASE), "targets SSH directory"),
    (re.compile(r"id_rsa", re.IGNORECASE), "targets SSH private keys"),
    (re.compile(r"id_ed25519", re.IGNORECASE), "targets SSH private keys"),
    (re.compile(r"\.gnupg/", re.IGNORECASE), "targets GPG directory"),
    (re.compile(r"\.git/"), "targets git internals"),
    (re.compile(r"\.claude\.json$", re.IGNORECASE), "targets Claude Code config"),
    (re.compile(r"\.npmrc$", re.IGNORECASE), "targets npm config (may contain tokens)"),
    (re.compile(r"\.pypirc$", re.IGNORECASE), "targets PyPI config (may contain tokens)"),
    (re.compile(r"/etc/"), "targets system configuration"),
    (re.compile(r"/passwd"), "targets system password file"),
    (re.compile(r"/shadow"), "targets system shadow file"),
    (re.compile(r"\.\./"), "contains path traversal"),
)

UNSAFE_FILE_CHARS = re.compile(r'[<>:"|?*]')
UNSAFE_FOLDER_CHARS = re.compile(r'[<>:"|?*\\]')
