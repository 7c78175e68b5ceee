"""Manifest resolver - Try manifest sources in priority order until one answers.

Sources are policy: apps pass their own list, or use create_default_resolver()
for the standard chain (repository, tarball, embedded, registry).
"""

import logging

import httpx

from .config import Settings
from .exceptions import ResolutionError
from .protocols import FetchContext
from .protocols import ManifestSource
from .schema import PackageManifest
from .schema import RegistryPackage
from .schema import validate_manifest
from .sources import EmbeddedSource
from .sources import RegistrySource
from .sources import RepositorySource
from .sources import TarballSource

logger = logging.getLogger(__name__)


class ManifestResolver:
    """
    Resolve a registry entry to a validated manifest.

    Sources are tried one at a time in ascending priority. The first source
    that returns a document wins; later sources are never consulted. The
    winning document is then validated, so a malformed manifest is a hard
    failure rather than a reason to fall through to the next source.

    Example:
        >>> resolver = ManifestResolver([EmbeddedSource(), RegistrySource()])
        >>> manifest = await resolver.resolve(pkg, FetchContext(temp_dir=tmp))
    """

    def __init__(self, sources: list[ManifestSource]):
        # sorted() is stable, so equal priorities keep caller order
        self._sources = sorted(sources, key=lambda source: source.priority)

    @property
    def source_names(self) -> list[str]:
        return [source.name for source in self._sources]

    async def resolve(self, pkg: RegistryPackage, context: FetchContext) -> PackageManifest:
        """
        Resolve manifest for a package.

        Raises:
            ManifestValidationError: If the winning document is invalid
            ResolutionError: If no source produced a document
        """
        manifest, _ = await self.resolve_with_source(pkg, context)
        return manifest

    async def resolve_with_source(self, pkg: RegistryPackage, context: FetchContext) -> tuple[PackageManifest, str]:
        """Like resolve(), also returning the name of the source that answered."""
        for source in self._sources:
            if not source.can_fetch(pkg):
                continue

            document = await source.fetch(pkg, context)
            if document is None:
                logger.debug(f"Source {source.name} had no manifest for {pkg.name}")
                continue

            logger.debug(f"Resolved {pkg.name} from {source.name}")
            return validate_manifest(document), source.name

        raise ResolutionError(f"No manifest found for package: {pkg.name}", context={"package": pkg.name})


def create_default_resolver(
    settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None
) -> ManifestResolver:
    """Standard chain: repository, tarball, embedded, registry."""
    settings = settings or Settings.from_env()
    return ManifestResolver(
        [
            RepositorySource(settings.packages_url, transport=transport),
            TarballSource(transport=transport),
            EmbeddedSource(),
            RegistrySource(),
        ]
    )
