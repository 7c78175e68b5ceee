"""Tests for package name utilities."""

import pytest
from cpm_install import normalize_package_name
from cpm_install import validate_package_name


@pytest.mark.parametrize(
    "name",
    ["nextjs-rules", "@cpm/nextjs-rules", "@official/typescript-strict", "pkg.v2", "under_score", "@Org/Name"],
)
def test_valid_names(name):
    assert validate_package_name(name).valid


def test_empty_name():
    result = validate_package_name("")
    assert not result.valid
    assert result.error == "Package name cannot be empty"


def test_name_too_long():
    result = validate_package_name("a" * 215)
    assert not result.valid
    assert "too long" in result.error


@pytest.mark.parametrize(
    "name",
    ["../etc/passwd", "@cpm/..", "pkg\\evil", "%2e%2e/secret", "@cpm%2fevil", "pkg%00", "a\0b"],
)
def test_traversal_and_encoded_names(name):
    result = validate_package_name(name)
    assert not result.valid
    assert result.error == "Invalid characters in package name"


@pytest.mark.parametrize("name", ["has space", "@/missing-scope", "@cpm/a/b", "pkg!", "@cpm/"])
def test_malformed_names(name):
    result = validate_package_name(name)
    assert not result.valid
    assert result.error == "Invalid package name format"


def test_trailing_newline_rejected():
    assert not validate_package_name("pkg\n").valid


def test_normalize():
    assert normalize_package_name("nextjs-rules") == "@cpm/nextjs-rules"
    assert normalize_package_name("@official/nextjs-rules") == "@official/nextjs-rules"
