"""Tests for manifest sources (HTTP stubbed with httpx.MockTransport)."""

import io
import tarfile

import httpx
import pytest
import yaml
from cpm_install import EmbeddedSource
from cpm_install import FetchContext
from cpm_install import ManifestResolver
from cpm_install import RegistryPackage
from cpm_install import RegistrySource
from cpm_install import RepositorySource
from cpm_install import TarballSource
from cpm_install import validate_manifest
from cpm_install.sources import extract_tarball
from cpm_install.sources import parse_github_repository

PACKAGES_URL = "https://packages.example.test"

RULES_MANIFEST = {
    "name": "@cpm/nextjs-rules",
    "version": "1.0.0",
    "description": "Next.js rules",
    "type": "rules",
    "universal": {"rules": "Use the App Router"},
}


def _transport(routes: dict[str, httpx.Response | Exception], calls: list[str] | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if calls is not None:
            calls.append(url)
        outcome = routes.get(url)
        if outcome is None:
            return httpx.Response(404)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return httpx.MockTransport(handler)


def _yaml_response(data) -> httpx.Response:
    return httpx.Response(200, text=yaml.safe_dump(data))


def _tarball(members: list[tuple[str, bytes]], symlinks: list[tuple[str, str]] = ()) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, data in members:
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
        for name, target in symlinks:
            info = tarfile.TarInfo(name=name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tar.addfile(info)
    return buffer.getvalue()


def test_parse_github_repository():
    assert parse_github_repository("https://github.com/owner/repo") == ("owner", "repo")
    assert parse_github_repository("https://github.com/owner/repo.git") == ("owner", "repo")
    assert parse_github_repository("https://gitlab.com/owner/repo") is None
    assert parse_github_repository(None) is None


# --- RepositorySource --------------------------------------------------------


@pytest.mark.asyncio
async def test_repository_fetches_from_packages_path(tmp_path):
    """Registry path maps to <packages_url>/packages/<path>/cpm.yaml."""
    url = f"{PACKAGES_URL}/packages/rules/cpm/nextjs-rules/cpm.yaml"
    source = RepositorySource(PACKAGES_URL, transport=_transport({url: _yaml_response(RULES_MANIFEST)}))
    pkg = RegistryPackage(name="@cpm/nextjs-rules", version="1.0.0", path="rules/cpm/nextjs-rules")

    assert source.can_fetch(pkg)
    document = await source.fetch(pkg, FetchContext(temp_dir=tmp_path))

    assert document == RULES_MANIFEST


@pytest.mark.asyncio
async def test_repository_falls_back_to_github_repo(tmp_path):
    """A miss on the packages path tries the standalone repository."""
    url = "https://raw.githubusercontent.com/acme/rules/main/cpm.yaml"
    calls: list[str] = []
    source = RepositorySource(PACKAGES_URL, transport=_transport({url: _yaml_response(RULES_MANIFEST)}, calls))
    pkg = RegistryPackage(
        name="@cpm/nextjs-rules", version="1.0.0", path="rules/cpm/nextjs-rules", repository="https://github.com/acme/rules"
    )

    document = await source.fetch(pkg, FetchContext(temp_dir=tmp_path))

    assert document["name"] == "@cpm/nextjs-rules"
    assert calls == [f"{PACKAGES_URL}/packages/rules/cpm/nextjs-rules/cpm.yaml", url]


def test_repository_applicability():
    source = RepositorySource(PACKAGES_URL)
    assert not source.can_fetch(RegistryPackage(name="a", version="1"))
    assert not source.can_fetch(RegistryPackage(name="a", version="1", repository="https://gitlab.com/a/b"))
    assert source.can_fetch(RegistryPackage(name="a", version="1", repository="https://github.com/a/b"))


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["../../etc", "/absolute/path", "rules\\cpm\\x", "rules/../../x"])
async def test_repository_rejects_unsafe_paths(tmp_path, path):
    """Unsafe registry paths are a miss without any request."""
    calls: list[str] = []
    source = RepositorySource(PACKAGES_URL, transport=_transport({}, calls))

    document = await source.fetch(RegistryPackage(name="a", version="1", path=path), FetchContext(temp_dir=tmp_path))

    assert document is None
    assert calls == []


@pytest.mark.asyncio
async def test_repository_timeout_is_a_miss(tmp_path):
    url = f"{PACKAGES_URL}/packages/rules/cpm/slow/cpm.yaml"
    source = RepositorySource(PACKAGES_URL, transport=_transport({url: httpx.ConnectTimeout("timed out")}))

    document = await source.fetch(
        RegistryPackage(name="slow", version="1", path="rules/cpm/slow"), FetchContext(temp_dir=tmp_path)
    )

    assert document is None


@pytest.mark.asyncio
@pytest.mark.parametrize("body", ["key: [unclosed", "- just\n- a list\n", "plain string"])
async def test_repository_unparseable_document_is_a_miss(tmp_path, body):
    url = f"{PACKAGES_URL}/packages/rules/cpm/bad/cpm.yaml"
    source = RepositorySource(PACKAGES_URL, transport=_transport({url: httpx.Response(200, text=body)}))

    document = await source.fetch(
        RegistryPackage(name="bad", version="1", path="rules/cpm/bad"), FetchContext(temp_dir=tmp_path)
    )

    assert document is None


@pytest.mark.asyncio
async def test_repository_downloads_listed_files(tmp_path):
    """Listed auxiliary files land in the scratch directory; unsafe or missing ones are skipped."""
    base = f"{PACKAGES_URL}/packages/rules/cpm/multi"
    manifest = {**RULES_MANIFEST, "files": ["RULES.md", "../../evil.md", ".hidden.md", "missing.md", "run.sh"]}
    routes = {
        f"{base}/cpm.yaml": _yaml_response(manifest),
        f"{base}/RULES.md": httpx.Response(200, text="# Rules\n"),
    }
    calls: list[str] = []
    scratch = tmp_path / "scratch"
    source = RepositorySource(PACKAGES_URL, transport=_transport(routes, calls))

    document = await source.fetch(
        RegistryPackage(name="multi", version="1", path="rules/cpm/multi"), FetchContext(temp_dir=scratch)
    )

    assert document is not None
    assert (scratch / "RULES.md").read_text() == "# Rules\n"
    assert not (tmp_path / "evil.md").exists()
    assert not (scratch / ".hidden.md").exists()
    assert not (scratch / "missing.md").exists()
    assert f"{base}/run.sh" not in calls


# --- TarballSource -----------------------------------------------------------


@pytest.mark.asyncio
async def test_tarball_extracts_and_reads_manifest(tmp_path):
    """Archive is stripped of its top directory and cpm.yaml is read from the root."""
    url = "https://downloads.example.test/nextjs-rules-1.0.0.tar.gz"
    archive = _tarball(
        [
            ("nextjs-rules-1.0.0/cpm.yaml", yaml.safe_dump(RULES_MANIFEST).encode()),
            ("nextjs-rules-1.0.0/RULES.md", b"# Rules\n"),
            ("nextjs-rules-1.0.0/docs/extra.md", b"extra\n"),
        ]
    )
    source = TarballSource(transport=_transport({url: httpx.Response(200, content=archive)}))
    pkg = RegistryPackage(name="@cpm/nextjs-rules", version="1.0.0", tarball=url)

    assert source.can_fetch(pkg)
    document = await source.fetch(pkg, FetchContext(temp_dir=tmp_path))

    assert document == RULES_MANIFEST
    assert (tmp_path / "package.tar.gz").exists()
    assert (tmp_path / "RULES.md").read_text() == "# Rules\n"
    assert (tmp_path / "docs" / "extra.md").exists()


@pytest.mark.asyncio
async def test_tarball_rejects_non_https(tmp_path):
    calls: list[str] = []
    source = TarballSource(transport=_transport({}, calls))
    pkg = RegistryPackage(name="a", version="1", tarball="http://downloads.example.test/a.tar.gz")

    assert await source.fetch(pkg, FetchContext(temp_dir=tmp_path)) is None
    assert calls == []


@pytest.mark.asyncio
async def test_tarball_size_limit(tmp_path):
    url = "https://downloads.example.test/big.tar.gz"
    source = TarballSource(max_bytes=10, transport=_transport({url: httpx.Response(200, content=b"x" * 100)}))

    assert await source.fetch(RegistryPackage(name="a", version="1", tarball=url), FetchContext(temp_dir=tmp_path)) is None
    assert not (tmp_path / "package.tar.gz").exists()


@pytest.mark.asyncio
async def test_tarball_without_manifest_is_a_miss(tmp_path):
    url = "https://downloads.example.test/a.tar.gz"
    archive = _tarball([("a-1.0.0/README.md", b"readme")])
    source = TarballSource(transport=_transport({url: httpx.Response(200, content=archive)}))

    assert await source.fetch(RegistryPackage(name="a", version="1", tarball=url), FetchContext(temp_dir=tmp_path)) is None


@pytest.mark.asyncio
async def test_tarball_corrupt_archive_is_a_miss(tmp_path):
    url = "https://downloads.example.test/a.tar.gz"
    source = TarballSource(transport=_transport({url: httpx.Response(200, content=b"not a tarball")}))

    assert await source.fetch(RegistryPackage(name="a", version="1", tarball=url), FetchContext(temp_dir=tmp_path)) is None


@pytest.mark.asyncio
async def test_tarball_truncated_archive_is_a_miss(tmp_path):
    """A gzip stream cut short is a miss, not an exception."""
    url = "https://downloads.example.test/cut.tar.gz"
    body = _tarball([("pkg/cpm.yaml", b"name: a\n" * 200), ("pkg/RULES.md", b"# rules\n" * 200)])
    source = TarballSource(transport=_transport({url: httpx.Response(200, content=body[: len(body) // 2])}))

    assert await source.fetch(RegistryPackage(name="a", version="1", tarball=url), FetchContext(temp_dir=tmp_path)) is None


@pytest.mark.asyncio
async def test_tarball_undecodable_manifest_is_a_miss(tmp_path):
    url = "https://downloads.example.test/binary.tar.gz"
    body = _tarball([("pkg/cpm.yaml", b"name: \xff\xfe")])
    source = TarballSource(transport=_transport({url: httpx.Response(200, content=body)}))

    assert await source.fetch(RegistryPackage(name="a", version="1", tarball=url), FetchContext(temp_dir=tmp_path)) is None


@pytest.mark.asyncio
async def test_broken_tarball_falls_through_to_registry(tmp_path):
    """Later sources still answer when the tarball is unusable."""
    url = "https://downloads.example.test/cut.tar.gz"
    body = _tarball([("pkg/cpm.yaml", b"name: a\n" * 200)])
    resolver = ManifestResolver(
        [TarballSource(transport=_transport({url: httpx.Response(200, content=body[: len(body) // 2])})), RegistrySource()]
    )
    pkg = RegistryPackage(name="@cpm/a", version="1.0.0", description="A", type="rules", tarball=url)

    _, source_name = await resolver.resolve_with_source(pkg, FetchContext(temp_dir=tmp_path))

    assert source_name == "registry"


@pytest.mark.asyncio
async def test_tarball_http_error_is_a_miss(tmp_path):
    url = "https://downloads.example.test/gone.tar.gz"
    source = TarballSource(transport=_transport({url: httpx.Response(500)}))

    assert await source.fetch(RegistryPackage(name="a", version="1", tarball=url), FetchContext(temp_dir=tmp_path)) is None


def test_extract_tarball_blocks_traversal_and_links(tmp_path):
    """Members escaping the destination, absolute members and links are never written."""
    dest = tmp_path / "nested" / "scratch"
    dest.mkdir(parents=True)
    archive_path = tmp_path / "evil.tar.gz"
    archive_path.write_bytes(
        _tarball(
            [
                ("pkg/RULES.md", b"ok"),
                ("pkg/../../escape.md", b"escaped"),
                ("pkg/../../../escape-root.md", b"escaped"),
                ("/abs/absolute.md", b"absolute"),
            ],
            symlinks=[("pkg/link.md", "/etc/passwd")],
        )
    )

    written = extract_tarball(archive_path, dest)

    assert written == [dest / "RULES.md"]
    assert not (tmp_path / "nested" / "escape.md").exists()
    assert not (tmp_path / "escape.md").exists()
    assert not (tmp_path / "escape-root.md").exists()
    assert not (dest / "link.md").exists()
    assert not (dest / "absolute.md").exists()


# --- EmbeddedSource / RegistrySource ----------------------------------------


@pytest.mark.asyncio
async def test_embedded_source(tmp_path):
    source = EmbeddedSource()
    pkg = RegistryPackage(name="@official/nextjs-rules", version="1.0.0")

    assert source.can_fetch(pkg)
    assert not source.can_fetch(RegistryPackage(name="@cpm/unknown", version="1.0.0"))

    document = await source.fetch(pkg, FetchContext(temp_dir=tmp_path))
    assert document["type"] == "rules"

    # Callers get their own copy
    document["name"] = "mutated"
    again = await source.fetch(pkg, FetchContext(temp_dir=tmp_path))
    assert again["name"] == "@official/nextjs-rules"


@pytest.mark.asyncio
async def test_registry_source_synthesizes_rules(tmp_path):
    source = RegistrySource()
    pkg = RegistryPackage(name="@cpm/style", version="2.0.0", description="House style", type="rules", author="Jane")

    assert source.can_fetch(pkg)
    document = await source.fetch(pkg, FetchContext(temp_dir=tmp_path))
    manifest = validate_manifest(document)

    assert manifest.type == "rules"
    assert manifest.version == "2.0.0"
    assert manifest.universal.rules == "# @cpm/style\n\nHouse style"
    assert manifest.author.name == "Jane"


@pytest.mark.asyncio
async def test_registry_source_synthesizes_skill(tmp_path):
    pkg = RegistryPackage(name="@cpm/code-review", version="1.0.0", description="Review code", path="skills/cpm/code-review")

    manifest = validate_manifest(await RegistrySource().fetch(pkg, FetchContext(temp_dir=tmp_path)))

    assert manifest.type == "skill"
    assert manifest.skill.command == "/code-review"
    assert "Review code" in manifest.universal.prompt


@pytest.mark.asyncio
async def test_registry_source_synthesizes_mcp(tmp_path):
    pkg = RegistryPackage(name="@cpm/supabase", version="1.0.0", description="Supabase", type="mcp")

    manifest = validate_manifest(await RegistrySource().fetch(pkg, FetchContext(temp_dir=tmp_path)))

    assert manifest.type == "mcp"
    assert manifest.mcp.command == "npx"
    assert manifest.mcp.args == []


@pytest.mark.asyncio
async def test_registry_source_defaults(tmp_path):
    """Missing description falls back to the name; unknown type to rules."""
    pkg = RegistryPackage(name="@cpm/bare", version="1.0.0")

    manifest = validate_manifest(await RegistrySource().fetch(pkg, FetchContext(temp_dir=tmp_path)))

    assert manifest.type == "rules"
    assert manifest.description == "@cpm/bare"
    assert manifest.author is None


def test_source_priorities():
    priorities = [RepositorySource().priority, TarballSource().priority, EmbeddedSource().priority, RegistrySource().priority]
    assert priorities == [1, 2, 3, 4]
