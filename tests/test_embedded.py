"""Tests for bundled manifests."""

import pytest
from cpm_install import get_embedded_manifest
from cpm_install import list_embedded_packages
from cpm_install import validate_manifest


def test_bundled_packages_listed():
    names = list_embedded_packages()

    assert "@official/nextjs-rules" in names
    assert names == sorted(names)


@pytest.mark.parametrize("name", list_embedded_packages())
def test_bundled_manifests_validate(name):
    """Every bundled document is a valid manifest under its own key."""
    manifest = validate_manifest(get_embedded_manifest(name))
    assert manifest.name == name


def test_returns_independent_copies():
    first = get_embedded_manifest("@official/nextjs-rules")
    first["universal"]["rules"] = "tampered"

    assert get_embedded_manifest("@official/nextjs-rules")["universal"]["rules"] != "tampered"


def test_unknown_package():
    assert get_embedded_manifest("@official/does-not-exist") is None
