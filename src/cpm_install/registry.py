"""Registry client - Look up package entries in the published registry.json."""

import logging
import time

import httpx
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError

from .constants import DEFAULT_REGISTRY_URL
from .constants import REGISTRY_CACHE_TTL
from .constants import REGISTRY_FETCH_TIMEOUT
from .exceptions import PackageError
from .exceptions import RegistryError
from .schema import PackageType
from .schema import RegistryPackage
from .schema import resolve_package_type

logger = logging.getLogger(__name__)


class RegistryData(BaseModel):
    """Top-level shape of registry.json."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    version: int | str | None = None
    updated: str | None = None
    packages: list[RegistryPackage] = Field(default_factory=list)


class RegistryClient:
    """
    Fetch and query the package registry (implements PackageLookup).

    The registry document is kept in memory for ``cache_ttl`` seconds.

    Example:
        >>> client = RegistryClient()
        >>> pkg = await client.get_package("@cpm/nextjs-rules")
    """

    def __init__(
        self,
        url: str = DEFAULT_REGISTRY_URL,
        *,
        timeout: float = REGISTRY_FETCH_TIMEOUT,
        cache_ttl: float = REGISTRY_CACHE_TTL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._transport = transport
        self._cache: RegistryData | None = None
        self._cached_at = 0.0

    async def fetch(self, force_refresh: bool = False) -> RegistryData:
        """
        Registry document, from memory when fresh.

        Raises:
            RegistryError: If the registry cannot be fetched or parsed
        """
        if not force_refresh and self._cache is not None and time.monotonic() - self._cached_at < self.cache_ttl:
            return self._cache

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, transport=self._transport
            ) as client:
                response = await client.get(self.url)
                response.raise_for_status()
            data = RegistryData.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            raise RegistryError(f"Failed to fetch registry: {e}", context={"url": self.url}) from e

        logger.debug(f"Fetched registry with {len(data.packages)} packages")
        self._cache = data
        self._cached_at = time.monotonic()
        return data

    async def get_package(self, name: str) -> RegistryPackage | None:
        data = await self.fetch()
        for pkg in data.packages:
            if pkg.name == name:
                return pkg
        return None

    async def search(
        self, query: str | None = None, package_type: PackageType | None = None, limit: int | None = None
    ) -> list[RegistryPackage]:
        """
        Packages matching a free-text query and/or type.

        The query is matched case-insensitively against name, description
        and keywords.
        """
        data = await self.fetch()
        results: list[RegistryPackage] = []

        for pkg in data.packages:
            if query:
                needle = query.lower()
                haystack = [pkg.name, pkg.description, *(pkg.keywords or [])]
                if not any(needle in field.lower() for field in haystack):
                    continue
            if package_type:
                try:
                    if resolve_package_type(pkg) != package_type:
                        continue
                except PackageError:
                    continue
            results.append(pkg)

        return results[:limit] if limit is not None else results
