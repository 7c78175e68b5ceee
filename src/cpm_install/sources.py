"""Manifest sources - each knows how to fetch a cpm.yaml document from one kind of location.

Default priority order (lower is tried first):
1. RepositorySource - single cpm.yaml over HTTPS from GitHub (fast, most current)
2. TarballSource - download and extract the package archive (full contents)
3. EmbeddedSource - manifests bundled with this package (no network)
4. RegistrySource - minimal manifest synthesized from registry fields (always succeeds)

Sources never raise for an expected miss. Timeouts, HTTP errors and
unparseable documents all come back as None so the resolver can move on.
"""

import logging
import re
import shutil
import tarfile
import zlib
from pathlib import Path
from typing import Any
from urllib.parse import quote
from urllib.parse import urlparse

import httpx
import yaml

from .constants import DEFAULT_PACKAGES_URL
from .constants import MANIFEST_FETCH_TIMEOUT
from .constants import MANIFEST_FILE_NAME
from .constants import MAX_TARBALL_BYTES
from .constants import TARBALL_DOWNLOAD_TIMEOUT
from .embedded import get_embedded_manifest
from .exceptions import PackageError
from .protocols import FetchContext
from .schema import RegistryPackage
from .schema import resolve_package_type
from .security import is_path_within_directory
from .security import resolve_secure_path
from .security import sanitize_file_name

logger = logging.getLogger(__name__)

_GITHUB_REPO = re.compile(r"github\.com/([^/]+)/([^/#?]+)")


def parse_manifest_text(text: str) -> dict[str, Any] | None:
    """Parse cpm.yaml text; None if it is not YAML or not a mapping."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.debug(f"Manifest is not valid YAML: {e}")
        return None
    if not isinstance(data, dict):
        return None
    return data


def parse_github_repository(url: str | None) -> tuple[str, str] | None:
    """(owner, repo) for a GitHub repository URL."""
    if not url:
        return None
    match = _GITHUB_REPO.search(url)
    if not match:
        return None
    owner, repo = match.groups()
    return owner, repo.removesuffix(".git")


def _is_safe_registry_path(path: str) -> bool:
    return ".." not in path and not path.startswith("/") and "\\" not in path


class RepositorySource:
    """
    Fetch cpm.yaml straight from GitHub.

    Two layouts are supported:
    - Packages monorepo: registry ``path`` "mcp/cpm/supabase" ->
      <packages_url>/packages/mcp/cpm/supabase/cpm.yaml
    - Standalone repo: ``repository`` "https://github.com/owner/repo" ->
      raw.githubusercontent.com/owner/repo/main/cpm.yaml

    If the manifest lists auxiliary ``files``, they are downloaded from the
    same directory into the scratch directory. Unsafe or unreachable files
    are skipped.
    """

    name = "repository"
    priority = 1

    def __init__(
        self,
        packages_url: str = DEFAULT_PACKAGES_URL,
        *,
        timeout: float = MANIFEST_FETCH_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.packages_url = packages_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def can_fetch(self, pkg: RegistryPackage) -> bool:
        return bool(pkg.path) or parse_github_repository(pkg.repository) is not None

    async def fetch(self, pkg: RegistryPackage, context: FetchContext) -> dict[str, Any] | None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            if pkg.path:
                if _is_safe_registry_path(pkg.path):
                    base_url = f"{self.packages_url}/packages/{pkg.path.strip('/')}"
                    manifest = await self._fetch_from(client, base_url, context)
                    if manifest is not None:
                        return manifest
                else:
                    logger.warning(f"Ignoring unsafe registry path for {pkg.name}: {pkg.path}")

            repo = parse_github_repository(pkg.repository)
            if repo is not None:
                owner, name = repo
                base_url = f"https://raw.githubusercontent.com/{owner}/{name}/main"
                return await self._fetch_from(client, base_url, context)

        return None

    async def _fetch_from(
        self, client: httpx.AsyncClient, base_url: str, context: FetchContext
    ) -> dict[str, Any] | None:
        url = f"{base_url}/{MANIFEST_FILE_NAME}"
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.debug(f"Could not fetch {url}: {e}")
            return None

        manifest = parse_manifest_text(response.text)
        if manifest is None:
            return None

        files = manifest.get("files")
        if isinstance(files, list) and files:
            await self._fetch_files(client, base_url, files, context.temp_dir)

        return manifest

    async def _fetch_files(self, client: httpx.AsyncClient, base_url: str, files: list, temp_dir: Path) -> None:
        temp_dir.mkdir(parents=True, exist_ok=True)

        for file_name in files:
            validation = sanitize_file_name(str(file_name))
            if not validation.valid:
                logger.warning(f"Skipping unsafe file: {file_name} ({validation.error})")
                continue

            dest_path = resolve_secure_path(temp_dir, validation.sanitized)
            if dest_path is None:
                logger.warning(f"Blocked path traversal attempt: {file_name}")
                continue

            url = f"{base_url}/{quote(validation.sanitized)}"
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning(f"Skipping {file_name}: {e}")
                continue

            dest_path.write_text(response.text, encoding="utf-8")
            logger.debug(f"Downloaded {file_name} to {dest_path}")


def extract_tarball(tarball_path: Path, dest_dir: Path, strip: int = 1) -> list[Path]:
    """
    Extract a tarball into ``dest_dir`` with zip-slip protection.

    The first ``strip`` path components are removed (GitHub release archives
    wrap everything in "package-1.0.0/"). Entries that would land outside
    ``dest_dir``, absolute entries, and anything other than regular files and
    directories (symlinks, hard links, devices) are skipped with a warning.

    Returns:
        Files written
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    extracted: list[Path] = []

    with tarfile.open(tarball_path, "r:*") as tar:
        for member in tar:
            name = member.name.replace("\\", "/")
            if name.startswith("/"):
                logger.warning(f"Blocked absolute path in tarball: {member.name}")
                continue

            parts = [part for part in name.split("/") if part not in ("", ".")][strip:]
            if not parts:
                continue

            if not (member.isfile() or member.isdir()):
                logger.warning(f"Skipping non-regular tarball entry: {member.name}")
                continue

            target = dest_dir.joinpath(*parts)
            if not is_path_within_directory(target, dest_dir):
                logger.warning(f"Blocked path traversal in tarball: {member.name}")
                continue

            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
                continue

            source = tar.extractfile(member)
            if source is None:
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with source, open(target, "wb") as out:
                shutil.copyfileobj(source, out)
            extracted.append(target)

    return extracted


class TarballSource:
    """
    Download the package tarball over HTTPS and read cpm.yaml from it.

    The extracted package files stay in the scratch directory, where the
    content handlers pick them up.
    """

    name = "tarball"
    priority = 2

    def __init__(
        self,
        *,
        timeout: float = TARBALL_DOWNLOAD_TIMEOUT,
        max_bytes: int = MAX_TARBALL_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._transport = transport

    def can_fetch(self, pkg: RegistryPackage) -> bool:
        return bool(pkg.tarball)

    async def fetch(self, pkg: RegistryPackage, context: FetchContext) -> dict[str, Any] | None:
        if not pkg.tarball:
            return None

        if urlparse(pkg.tarball).scheme != "https":
            logger.warning(f"Refusing non-HTTPS tarball URL for {pkg.name}: {pkg.tarball}")
            return None

        body = await self._download(pkg.tarball)
        if body is None:
            return None

        context.temp_dir.mkdir(parents=True, exist_ok=True)
        tarball_path = context.temp_dir / "package.tar.gz"
        tarball_path.write_bytes(body)

        try:
            extract_tarball(tarball_path, context.temp_dir)
        except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
            logger.debug(f"Could not extract tarball for {pkg.name}: {e}")
            return None

        manifest_path = context.temp_dir / MANIFEST_FILE_NAME
        if not manifest_path.is_file():
            logger.debug(f"Tarball for {pkg.name} has no {MANIFEST_FILE_NAME}")
            return None

        try:
            text = manifest_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Could not read {MANIFEST_FILE_NAME} from tarball for {pkg.name}: {e}")
            return None

        return parse_manifest_text(text)

    async def _download(self, url: str) -> bytes | None:
        chunks: list[bytes] = []
        size = 0
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, transport=self._transport
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    async for chunk in response.aiter_bytes():
                        size += len(chunk)
                        if size > self.max_bytes:
                            logger.warning(
                                f"Tarball too large ({size / (1024 * 1024):.1f} MB, "
                                f"limit {self.max_bytes / (1024 * 1024):.0f} MB): {url}"
                            )
                            return None
                        chunks.append(chunk)
        except httpx.HTTPError as e:
            logger.debug(f"Could not download {url}: {e}")
            return None

        return b"".join(chunks)


class EmbeddedSource:
    """Manifests bundled with this package; work offline."""

    name = "embedded"
    priority = 3

    def can_fetch(self, pkg: RegistryPackage) -> bool:
        return get_embedded_manifest(pkg.name) is not None

    async def fetch(self, pkg: RegistryPackage, context: FetchContext) -> dict[str, Any] | None:
        return get_embedded_manifest(pkg.name)


class RegistrySource:
    """
    Synthesize a minimal manifest from registry fields.

    Last resort: always applies and always produces a document (rules
    content, a skill prompt, or an ``npx`` MCP entry) generated from the
    package name and description.
    """

    name = "registry"
    priority = 4

    def can_fetch(self, pkg: RegistryPackage) -> bool:
        return True

    async def fetch(self, pkg: RegistryPackage, context: FetchContext) -> dict[str, Any] | None:
        return self.create_manifest(pkg)

    @staticmethod
    def create_manifest(pkg: RegistryPackage) -> dict[str, Any]:
        try:
            package_type = resolve_package_type(pkg)
        except PackageError:
            package_type = "rules"

        description = pkg.description or pkg.name
        content = f"# {pkg.name}\n\n{description}"
        base: dict[str, Any] = {
            "name": pkg.name,
            "version": pkg.version,
            "description": description,
            "author": {"name": pkg.author} if pkg.author else None,
            "repository": pkg.repository,
            "keywords": pkg.keywords,
        }

        if package_type == "mcp":
            return {**base, "type": "mcp", "mcp": {"command": "npx", "args": []}}

        if package_type == "skill":
            short_name = re.sub(r"^@[^/]+/", "", pkg.name)
            return {
                **base,
                "type": "skill",
                "skill": {"command": f"/{short_name}", "description": description},
                "universal": {"prompt": content},
            }

        return {**base, "type": "rules", "universal": {"rules": content}}
